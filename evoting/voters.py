# evoting/voters.py
import hashlib
import logging
import re
import secrets
import time
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from evoting.config import (
    COUNTY_CODE,
    COUNTY_NAME,
    MAX_VOTER_AGE,
    MIN_VOTER_AGE,
    VOTERS_COLLECTION_NAME,
)
from evoting.errors import AgeRequirement, DuplicateVoter, InvalidWard, VoterNotFound
from evoting.reference_data import is_valid_ward

logger = logging.getLogger(__name__)

VOTING_NUMBER_ATTEMPTS = 3
LISTING_FIELDS = {"votingNumber": 1, "fullName": 1, "constituency": 1, "ward": 1, "registrationDate": 1}


def generate_voting_number(national_id: str, constituency: str) -> str:
    """Build a voting number such as ``KGY-MWE-3FA9C1-7B2E``."""
    timestamp = format(time.time_ns(), "x")
    random_part = secrets.token_hex(3).upper()
    digest = hashlib.md5(f"{national_id}{constituency}{timestamp}".encode("utf-8")).hexdigest()[:4].upper()
    return f"{COUNTY_CODE}-{constituency[:3].upper()}-{random_part}-{digest}"


def is_valid_age(date_of_birth: str, today: Optional[date] = None) -> bool:
    """Check a ``DD/MM/YYYY`` (or ``DD-MM-YYYY``) birth date against the voting age range."""
    parts = re.split(r"[/-]", (date_of_birth or "").strip())
    if len(parts) != 3:
        return False
    try:
        day, month, year = (int(p) for p in parts)
        if year < 100:
            year += 2000
        dob = date(year, month, day)
    except ValueError:
        return False

    today = today or date.today()
    age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))
    return MIN_VOTER_AGE <= age < MAX_VOTER_AGE


class VoterRegistry:
    def __init__(self, db):
        self.collection = db[VOTERS_COLLECTION_NAME]

    def register(self, data: Dict[str, Any], channel: str = "admin") -> Dict[str, Any]:
        """
        Create a voter and issue their voting number.

        Args:
            data: validated registration fields (nationalId, fullName, email,
                phoneNumber, constituency, ward, optional dateOfBirth)
            channel: "admin" or "self"

        Returns:
            The stored voter document
        """
        if not is_valid_ward(data["constituency"], data["ward"]):
            raise InvalidWard()
        if channel == "self" and data.get("dateOfBirth") and not is_valid_age(data["dateOfBirth"]):
            raise AgeRequirement()

        email = data["email"].lower()
        if self.collection.find_one({"$or": [{"nationalId": data["nationalId"]}, {"email": email}]}):
            raise DuplicateVoter()

        now = datetime.now(timezone.utc)
        voter = {
            "nationalId": data["nationalId"],
            "fullName": data["fullName"],
            "email": email,
            "phoneNumber": data["phoneNumber"],
            "county": COUNTY_NAME,
            "constituency": data["constituency"],
            "ward": data["ward"],
            "dateOfBirth": data.get("dateOfBirth"),
            "hasVoted": False,
            "isActive": True,
            "registrationChannel": channel,
            "registrationDate": now,
            "createdAt": now,
            "updatedAt": now,
        }

        for _ in range(VOTING_NUMBER_ATTEMPTS):
            voter.pop("_id", None)
            voter["votingNumber"] = generate_voting_number(voter["nationalId"], voter["constituency"])
            try:
                self.collection.insert_one(voter)
            except DuplicateKeyError:
                # Lost a race on nationalId/email, or the voting number collided
                if self.collection.find_one({"$or": [{"nationalId": voter["nationalId"]}, {"email": email}]}):
                    raise DuplicateVoter()
                logger.warning("Voting number collision, generating a new one")
                continue
            logger.info(f"Voter registered via {channel} in {voter['constituency']}/{voter['ward']}")
            return voter
        raise DuplicateVoter("Could not issue a unique voting number. Please try again.")

    def find_active(self, voting_number: str) -> Optional[Dict[str, Any]]:
        return self.collection.find_one({"votingNumber": voting_number, "isActive": True})

    def mark_voted(self, voting_number: str, session=None) -> bool:
        """Flip ``hasVoted`` false -> true. Returns False if the voter was not eligible to flip."""
        result = self.collection.update_one(
            {"votingNumber": voting_number, "isActive": True, "hasVoted": False},
            {"$set": {"hasVoted": True}},
            session=session,
        )
        return result.modified_count == 1

    def revert_voted(self, voting_number: str) -> None:
        """Undo a flip made by a ballot commit that did not complete."""
        self.collection.update_one(
            {"votingNumber": voting_number, "hasVoted": True},
            {"$set": {"hasVoted": False}},
        )

    def voted_numbers(self, voting_numbers) -> set:
        cursor = self.collection.find(
            {"votingNumber": {"$in": list(voting_numbers)}, "hasVoted": True},
            {"votingNumber": 1},
        )
        return {voter["votingNumber"] for voter in cursor}

    def deactivate(self, voting_number: str) -> Dict[str, Any]:
        voter = self.collection.find_one_and_update(
            {"votingNumber": voting_number},
            {"$set": {"isActive": False, "updatedAt": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if not voter:
            raise VoterNotFound()
        logger.info(f"Voter {voting_number} deactivated")
        return voter

    # --- Queries ---

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(query or {})

    def list_by_status(self, has_voted: bool) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"hasVoted": has_voted}, LISTING_FIELDS).sort("registrationDate", DESCENDING)
        return list(cursor)

    def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        cursor = self.collection.find({}, LISTING_FIELDS).sort("registrationDate", DESCENDING).limit(limit)
        return list(cursor)

    def registered_today(self) -> int:
        start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        return self.collection.count_documents(
            {"registrationDate": {"$gte": start, "$lt": start + timedelta(days=1)}}
        )

    def is_national_id_available(self, national_id: str) -> bool:
        return self.collection.find_one({"nationalId": national_id}) is None

    def is_email_available(self, email: str) -> bool:
        return self.collection.find_one({"email": email.lower()}) is None

    def participation_counts(self, match: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Voter counts grouped by (constituency, ward, hasVoted)."""
        pipeline = [
            {"$match": match or {}},
            {
                "$group": {
                    "_id": {"constituency": "$constituency", "ward": "$ward", "hasVoted": "$hasVoted"},
                    "count": {"$sum": 1},
                }
            },
        ]
        return [
            {
                "constituency": row["_id"].get("constituency"),
                "ward": row["_id"].get("ward"),
                "hasVoted": bool(row["_id"].get("hasVoted")),
                "count": row["count"],
            }
            for row in self.collection.aggregate(pipeline)
        ]

    def statistics(self) -> Dict[str, Any]:
        rows = self.participation_counts()
        by_constituency: Dict[str, Dict[str, int]] = {}
        by_ward: Dict[tuple, Dict[str, int]] = {}
        for row in rows:
            for bucket in (
                by_constituency.setdefault(row["constituency"], {"total": 0, "voted": 0}),
                by_ward.setdefault((row["constituency"], row["ward"]), {"total": 0, "voted": 0}),
            ):
                bucket["total"] += row["count"]
                if row["hasVoted"]:
                    bucket["voted"] += row["count"]

        total = sum(b["total"] for b in by_constituency.values())
        voted = sum(b["voted"] for b in by_constituency.values())
        return {
            "summary": {
                "total": total,
                "voted": voted,
                "pending": total - voted,
                "percentageVoted": round(voted * 100 / total, 2) if total else 0,
            },
            "byConstituency": [
                {"constituency": c, "total": b["total"], "voted": b["voted"], "pending": b["total"] - b["voted"]}
                for c, b in sorted(by_constituency.items(), key=lambda item: item[0] or "")
            ],
            "byWard": [
                {
                    "constituency": c,
                    "ward": w,
                    "total": b["total"],
                    "voted": b["voted"],
                    "pending": b["total"] - b["voted"],
                }
                for (c, w), b in sorted(by_ward.items(), key=lambda item: (item[0][0] or "", item[0][1] or ""))
            ],
        }
