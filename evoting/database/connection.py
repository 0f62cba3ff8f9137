import logging
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from evoting.config import (
    ADMINS_COLLECTION_NAME,
    AUDIT_COLLECTION_NAME,
    CANDIDATES_COLLECTION_NAME,
    MONGO_DB,
    MONGO_SERVER_SELECTION_TIMEOUT_MS,
    MONGO_URI,
    SETTINGS_COLLECTION_NAME,
    VOTERS_COLLECTION_NAME,
    VOTES_COLLECTION_NAME,
)

logger = logging.getLogger(__name__)


class MongoConnector:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super(MongoConnector, cls).__new__(cls)
            try:
                instance.client = MongoClient(
                    MONGO_URI, serverSelectionTimeoutMS=MONGO_SERVER_SELECTION_TIMEOUT_MS
                )
                instance.db = instance.client[MONGO_DB]
                instance.client.server_info()
                ensure_indexes(instance.db)
                # Imported here to keep the settings store free of connection details
                from evoting.settings_store import SettingsStore

                SettingsStore(instance.db).initialize_defaults()
                logger.info(f"Connected to MongoDB: {MONGO_DB}")
            except Exception as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise
            cls._instance = instance
        return cls._instance


def get_db() -> Database:
    """FastAPI dependency returning the shared database handle."""
    return MongoConnector().db


def ensure_indexes(db: Database) -> None:
    voters = db[VOTERS_COLLECTION_NAME]
    voters.create_index("nationalId", unique=True)
    voters.create_index("email", unique=True)
    voters.create_index("votingNumber", unique=True, sparse=True)
    voters.create_index([("constituency", ASCENDING), ("ward", ASCENDING), ("hasVoted", ASCENDING)])

    # One vote per position per voting number
    db[VOTES_COLLECTION_NAME].create_index(
        [("votingNumber", ASCENDING), ("position", ASCENDING)], unique=True
    )
    db[VOTES_COLLECTION_NAME].create_index("ballotId")
    db[VOTES_COLLECTION_NAME].create_index(
        [("position", ASCENDING), ("constituency", ASCENDING), ("ward", ASCENDING)]
    )

    # No two active candidates from one party for the same seat and area
    db[CANDIDATES_COLLECTION_NAME].create_index(
        [
            ("position", ASCENDING),
            ("politicalParty", ASCENDING),
            ("county", ASCENDING),
            ("constituency", ASCENDING),
            ("ward", ASCENDING),
        ],
        unique=True,
        partialFilterExpression={"isActive": True},
    )

    db[SETTINGS_COLLECTION_NAME].create_index("key", unique=True)
    db[ADMINS_COLLECTION_NAME].create_index("email", unique=True)
    db[AUDIT_COLLECTION_NAME].create_index([("timestamp", DESCENDING)])
    db[AUDIT_COLLECTION_NAME].create_index([("action", ASCENDING), ("timestamp", DESCENDING)])


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id coming from a request; returns None when it is malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def public_doc(doc: Optional[dict]) -> Optional[dict]:
    """Convert a stored document to a JSON-friendly dict (`_id` becomes `id`)."""
    if doc is None:
        return None
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        else:
            out[key] = _public_value(value)
    return out


def _public_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _public_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_public_value(v) for v in value]
    return value
