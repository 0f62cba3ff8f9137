# evoting/config.py
# Central place for settings and constants
import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# --- Database Config ---
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "kirinyaga_evoting")
# Multi-document transactions need a replica set; standalone servers use the
# unique-index fence with compensating cleanup instead.
MONGO_TRANSACTIONS = _env_flag("MONGO_TRANSACTIONS")
MONGO_SERVER_SELECTION_TIMEOUT_MS = int(os.getenv("MONGO_SERVER_SELECTION_TIMEOUT_MS", "5000"))
# Vote records of an un-voted voter older than this are treated as abandoned
STALE_BALLOT_SECONDS = int(os.getenv("STALE_BALLOT_SECONDS", "60"))

VOTERS_COLLECTION_NAME = "voters"
CANDIDATES_COLLECTION_NAME = "candidates"
VOTES_COLLECTION_NAME = "votes"
SETTINGS_COLLECTION_NAME = "system_settings"
ADMINS_COLLECTION_NAME = "admins"
AUDIT_COLLECTION_NAME = "audit_logs"

# --- Security & JWT Config ---
# In production, use secure, environment-variable-based secrets
SECRET_KEY = os.getenv("SECRET_KEY", "a_very_secret_key_for_dev_only")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]

# --- Election Config ---
COUNTY_NAME = "Kirinyaga"
COUNTY_CODE = "KGY"
SYSTEM_VERSION = "1.0.0"
MIN_VOTER_AGE = 18
MAX_VOTER_AGE = 100

# --- Email (Brevo transactional API) ---
BREVO_API_KEY = os.getenv("BREVO_API_KEY", "")
BREVO_API_URL = os.getenv("BREVO_API_URL", "https://api.brevo.com/v3/smtp/email")
MAIL_FROM_EMAIL = os.getenv("MAIL_FROM_EMAIL", "elections@kirinyaga.go.ke")
MAIL_FROM_NAME = os.getenv("MAIL_FROM_NAME", "Kirinyaga County Elections")
EMAIL_TIMEOUT_SECONDS = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))

# --- Uploads ---
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
CANDIDATE_PHOTO_DIR = os.path.join(UPLOAD_DIR, "candidate_photos")

# --- Bootstrap admin ---
INITIAL_ADMIN_EMAIL = os.getenv("INITIAL_ADMIN_EMAIL", "admin@kirinyaga.go.ke")
INITIAL_ADMIN_PASSWORD = os.getenv("INITIAL_ADMIN_PASSWORD", "")
INITIAL_ADMIN_NAME = os.getenv("INITIAL_ADMIN_NAME", "System Administrator")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
