# evoting/settings_store.py
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo import ReturnDocument

from evoting.config import COUNTY_NAME, SETTINGS_COLLECTION_NAME, SYSTEM_VERSION
from evoting.errors import InvalidSchedule

logger = logging.getLogger(__name__)

VOTING_PORTAL_OPEN = "voting_portal_open"
VOTING_DEADLINE = "voting_deadline"
VOTING_SCHEDULE_START = "voting_schedule_start"
VOTING_SCHEDULE_END = "voting_schedule_end"
RESULTS_PUBLISHED = "results_published"
LAST_RESULTS_PUBLICATION = "last_results_publication"
ALLOW_VOTER_REGISTRATION = "allow_voter_registration"

# key, default value, description, public
DEFAULT_SETTINGS = [
    (VOTING_PORTAL_OPEN, False, "Voting portal status (true=open, false=closed)", True),
    (VOTING_DEADLINE, None, "Voting deadline date and time", True),
    (VOTING_SCHEDULE_START, None, "Scheduled voting start time", False),
    (VOTING_SCHEDULE_END, None, "Scheduled voting end time", False),
    (RESULTS_PUBLISHED, False, "Election results have been officially published", True),
    (LAST_RESULTS_PUBLICATION, None, "Last election results publication", True),
    (ALLOW_VOTER_REGISTRATION, True, "Allow new voter registration", False),
    ("county_name", COUNTY_NAME, "County name", True),
    ("system_version", SYSTEM_VERSION, "System version", True),
]


class SettingsStore:
    """Election control settings.

    Each setting is a versioned key/value record; every write bumps ``version``.
    Nothing here is cached, so the portal flag a caller sees is the one
    currently stored.
    """

    def __init__(self, db):
        self.collection = db[SETTINGS_COLLECTION_NAME]

    def initialize_defaults(self) -> None:
        now = datetime.now(timezone.utc)
        for key, value, description, is_public in DEFAULT_SETTINGS:
            self.collection.update_one(
                {"key": key},
                {
                    "$setOnInsert": {
                        "key": key,
                        "value": value,
                        "description": description,
                        "isPublic": is_public,
                        "version": 1,
                        "updatedBy": None,
                        "updatedAt": now,
                    }
                },
                upsert=True,
            )

    def get_record(self, key: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"key": key})

    def get(self, key: str, default: Any = None) -> Any:
        record = self.get_record(key)
        return record["value"] if record else default

    def all(self, public_only: bool = False) -> Dict[str, Any]:
        query = {"isPublic": True} if public_only else {}
        return {s["key"]: s.get("value") for s in self.collection.find(query)}

    def set(self, key: str, value: Any, updated_by: Any = None) -> Dict[str, Any]:
        record = self.collection.find_one_and_update(
            {"key": key},
            {
                "$set": {
                    "value": value,
                    "updatedBy": updated_by,
                    "updatedAt": datetime.now(timezone.utc),
                },
                "$inc": {"version": 1},
                "$setOnInsert": {"isPublic": False},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        logger.info(f"Setting {key} updated to version {record.get('version')}")
        return record

    def update_many(self, updates: Dict[str, Any], updated_by: Any = None) -> list:
        for key, value in updates.items():
            self.set(key, value, updated_by=updated_by)
        return list(updates.keys())

    # --- Portal gate ---

    def is_portal_open(self) -> bool:
        return self.get(VOTING_PORTAL_OPEN, False) is True

    def set_portal_open(self, is_open: bool, updated_by: Any = None) -> Dict[str, Any]:
        record = self.set(VOTING_PORTAL_OPEN, bool(is_open), updated_by=updated_by)
        logger.info(f"Voting portal {'opened' if is_open else 'closed'}")
        return record

    def voting_deadline(self) -> Any:
        return self.get(VOTING_DEADLINE)

    def schedule(self, start: datetime, end: datetime, updated_by: Any = None) -> Dict[str, Any]:
        if start >= end:
            raise InvalidSchedule()
        self.set(VOTING_SCHEDULE_START, start, updated_by=updated_by)
        self.set(VOTING_SCHEDULE_END, end, updated_by=updated_by)
        self.set(VOTING_DEADLINE, end, updated_by=updated_by)
        return {"startTime": start, "endTime": end}

    def registration_open(self) -> bool:
        return self.get(ALLOW_VOTER_REGISTRATION, True) is not False
