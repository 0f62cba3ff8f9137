import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from evoting.config import ADMINS_COLLECTION_NAME
from evoting.database.connection import to_object_id
from evoting.security import hash_password, verify_password

logger = logging.getLogger(__name__)

ADMIN_ROLES = ("admin", "super_admin")


# Create a new admin with hashed password
def create_admin(db: Database, email: str, password: str, full_name: str, role: str = "admin") -> Optional[Dict[str, Any]]:
    if role not in ADMIN_ROLES:
        raise ValueError(f"Invalid role. Must be one of {', '.join(ADMIN_ROLES)}.")
    now = datetime.now(timezone.utc)
    admin = {
        "email": email.lower(),
        "fullName": full_name,
        "hashed_password": hash_password(password),
        "role": role,
        "status": "active",
        "lastLogin": None,
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        db[ADMINS_COLLECTION_NAME].insert_one(admin)
    except DuplicateKeyError:
        return None
    logger.info(f"Admin account created for {admin['email']} ({role})")
    return admin


def get_admin(db: Database, admin_id: Any) -> Optional[Dict[str, Any]]:
    oid = to_object_id(admin_id)
    return db[ADMINS_COLLECTION_NAME].find_one({"_id": oid}) if oid else None


def get_admin_by_email(db: Database, email: str) -> Optional[Dict[str, Any]]:
    return db[ADMINS_COLLECTION_NAME].find_one({"email": email.lower()})


# Login admin
def login_admin(db: Database, email: str, password: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    admin = get_admin_by_email(db, email)
    if not admin:
        return None, "Invalid email or password"

    if not verify_password(password, admin["hashed_password"]):
        return None, "Invalid email or password"

    if admin.get("status") != "active":
        return None, "Admin account is not active"

    db[ADMINS_COLLECTION_NAME].update_one(
        {"_id": admin["_id"]}, {"$set": {"lastLogin": datetime.now(timezone.utc)}}
    )
    return admin, None


# Change an admin's password after checking the current one
def change_password(db: Database, admin: Dict[str, Any], current_password: str, new_password: str) -> Optional[str]:
    if not verify_password(current_password, admin["hashed_password"]):
        return "Current password is incorrect"
    db[ADMINS_COLLECTION_NAME].update_one(
        {"_id": admin["_id"]},
        {"$set": {"hashed_password": hash_password(new_password), "updatedAt": datetime.now(timezone.utc)}},
    )
    logger.info(f"Password changed for admin {admin['email']}")
    return None


def count_admins(db: Database) -> int:
    return db[ADMINS_COLLECTION_NAME].count_documents({})
