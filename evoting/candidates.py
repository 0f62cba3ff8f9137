# evoting/candidates.py
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from evoting.config import CANDIDATES_COLLECTION_NAME, COUNTY_NAME
from evoting.database.connection import to_object_id
from evoting.errors import CandidateHasVotes, CandidateNotFound, DuplicateCandidate, InvalidArea
from evoting.reference_data import (
    SCOPE_CONSTITUENCY,
    SCOPE_WARD,
    is_valid_constituency,
    is_valid_ward,
    scope_of,
)

logger = logging.getLogger(__name__)

BALLOT_FIELDS = {"fullName": 1, "politicalParty": 1, "photo": 1, "position": 1, "constituency": 1, "ward": 1}
EDITABLE_FIELDS = ("fullName", "position", "politicalParty", "constituency", "ward", "photo")


def normalize_area(position: str, constituency: Optional[str], ward: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return the (constituency, ward) a candidate for ``position`` is stored with.

    County-wide seats carry neither, MP carries the constituency, MCA carries both.
    """
    scope = scope_of(position)
    if scope not in (SCOPE_CONSTITUENCY, SCOPE_WARD):
        return None, None
    if not constituency:
        raise InvalidArea(f"Constituency is required for {position} position")
    if not is_valid_constituency(constituency):
        raise InvalidArea("Invalid constituency")
    if scope == SCOPE_CONSTITUENCY:
        return constituency, None
    if not ward:
        raise InvalidArea("Ward is required for MCA position")
    if not is_valid_ward(constituency, ward):
        raise InvalidArea(f"Invalid ward for constituency {constituency}")
    return constituency, ward


class CandidateRegistry:
    def __init__(self, db):
        self.collection = db[CANDIDATES_COLLECTION_NAME]

    def _seat_filter(self, position, party, constituency, ward) -> Dict[str, Any]:
        return {
            "position": position,
            "politicalParty": party,
            "county": COUNTY_NAME,
            "constituency": constituency,
            "ward": ward,
            "isActive": True,
        }

    def add(self, data: Dict[str, Any]) -> Dict[str, Any]:
        position = data["position"]
        constituency, ward = normalize_area(position, data.get("constituency"), data.get("ward"))
        if self.collection.find_one(self._seat_filter(position, data["politicalParty"], constituency, ward)):
            raise DuplicateCandidate()

        now = datetime.now(timezone.utc)
        candidate = {
            "fullName": data["fullName"],
            "position": position,
            "politicalParty": data["politicalParty"],
            "county": COUNTY_NAME,
            "constituency": constituency,
            "ward": ward,
            "photo": data.get("photo") or "",
            "voteCount": 0,
            "isActive": True,
            "registrationDate": now,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            self.collection.insert_one(candidate)
        except DuplicateKeyError:
            raise DuplicateCandidate()
        logger.info(f"Candidate {candidate['_id']} added for {position}")
        return candidate

    def get(self, candidate_id: Any) -> Dict[str, Any]:
        oid = to_object_id(candidate_id)
        candidate = self.collection.find_one({"_id": oid}) if oid else None
        if not candidate:
            raise CandidateNotFound()
        return candidate

    def find(self, candidate_id: Any) -> Optional[Dict[str, Any]]:
        oid = to_object_id(candidate_id)
        return self.collection.find_one({"_id": oid}) if oid else None

    def search(self, filters: Optional[Dict[str, Any]] = None, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        query: Dict[str, Any] = {"isActive": True}
        for key, field in (("position", "position"), ("constituency", "constituency"),
                           ("ward", "ward"), ("party", "politicalParty")):
            if filters and filters.get(key):
                query[field] = filters[key]

        cursor = (
            self.collection.find(query)
            .sort([("position", ASCENDING), ("constituency", ASCENDING), ("ward", ASCENDING), ("fullName", ASCENDING)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        candidates = list(cursor)
        total = self.collection.count_documents(query)
        return {
            "count": len(candidates),
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
            "currentPage": page,
            "candidates": candidates,
        }

    def by_ids(self, candidate_ids) -> Dict[Any, Dict[str, Any]]:
        """Display details keyed by ``_id``; inactive candidates are included."""
        cursor = self.collection.find({"_id": {"$in": list(candidate_ids)}}, BALLOT_FIELDS)
        return {c["_id"]: c for c in cursor}

    def by_position(self, position: str) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"position": position, "isActive": True}).sort("fullName", ASCENDING)
        return list(cursor)

    def eligible(self, criteria: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Active candidates matching area criteria, as shown on a ballot."""
        query = dict(criteria, isActive=True)
        return list(self.collection.find(query, BALLOT_FIELDS).sort("fullName", ASCENDING))

    def update(self, candidate_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
        candidate = self.get(candidate_id)
        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}

        position = changes.get("position", candidate["position"])
        party = changes.get("politicalParty", candidate["politicalParty"])
        constituency, ward = normalize_area(
            position,
            changes.get("constituency", candidate.get("constituency")),
            changes.get("ward", candidate.get("ward")),
        )
        current_seat = (candidate["position"], candidate.get("constituency"), candidate.get("ward"))
        moves_seat = (position, constituency, ward) != current_seat
        if moves_seat and candidate.get("voteCount", 0) > 0:
            raise CandidateHasVotes()

        duplicate = self._seat_filter(position, party, constituency, ward)
        duplicate["_id"] = {"$ne": candidate["_id"]}
        if self.collection.find_one(duplicate):
            raise DuplicateCandidate("Another candidate for this party and position already exists in the specified area")

        # A seat change only lands while the candidate still has no votes
        selector = {"_id": candidate["_id"]}
        if moves_seat:
            selector["voteCount"] = {"$lte": 0}
        changes.update(constituency=constituency, ward=ward, updatedAt=datetime.now(timezone.utc))
        try:
            updated = self.collection.find_one_and_update(
                selector,
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise DuplicateCandidate("Another candidate for this party and position already exists in the specified area")
        if updated is None:
            raise CandidateHasVotes()
        return updated

    def remove(self, candidate_id: Any) -> Tuple[Dict[str, Any], bool]:
        """Delete a candidate, or deactivate it when it already has votes.

        Returns the candidate and whether it was deactivated rather than deleted.
        """
        candidate = self.get(candidate_id)
        # Conditional delete: a vote counted after the read above keeps the record
        if candidate.get("voteCount", 0) <= 0:
            deleted = self.collection.delete_one({"_id": candidate["_id"], "voteCount": {"$lte": 0}}).deleted_count
            if deleted:
                logger.info(f"Candidate {candidate['_id']} deleted")
                return candidate, False
        self.collection.update_one(
            {"_id": candidate["_id"]},
            {"$set": {"isActive": False, "updatedAt": datetime.now(timezone.utc)}},
        )
        logger.info(f"Candidate {candidate['_id']} deactivated (has votes)")
        return candidate, True

    # --- Counters ---

    def increment_vote_count(self, candidate_id, amount: int = 1, session=None) -> None:
        self.collection.update_one({"_id": candidate_id}, {"$inc": {"voteCount": amount}}, session=session)

    def reconcile_vote_counts(self, votes_by_candidate: Dict[Any, int]) -> List[Dict[str, Any]]:
        """Reset every ``voteCount`` to the number of stored votes; returns the corrections."""
        corrected = []
        for candidate in self.collection.find({}, {"voteCount": 1}):
            expected = votes_by_candidate.get(candidate["_id"], 0)
            if candidate.get("voteCount", 0) != expected:
                self.collection.update_one({"_id": candidate["_id"]}, {"$set": {"voteCount": expected}})
                corrected.append({"candidateId": candidate["_id"], "old": candidate.get("voteCount", 0), "new": expected})
        if corrected:
            logger.warning(f"Reconciled vote counts for {len(corrected)} candidates")
        return corrected

    # --- Reporting ---

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(query or {})

    def statistics(self) -> Dict[str, Any]:
        rows = self.collection.aggregate([
            {"$match": {"isActive": True}},
            {
                "$group": {
                    "_id": {"position": "$position", "constituency": "$constituency", "party": "$politicalParty"},
                    "count": {"$sum": 1},
                    "totalVotes": {"$sum": "$voteCount"},
                }
            },
        ])
        by_position: Dict[str, Dict[str, Any]] = {}
        by_party: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            key = row["_id"]
            position = by_position.setdefault(
                key["position"], {"position": key["position"], "totalCandidates": 0, "totalVotes": 0, "constituencies": {}}
            )
            position["totalCandidates"] += row["count"]
            position["totalVotes"] += row["totalVotes"]
            area = position["constituencies"].setdefault(key.get("constituency"), {"count": 0, "totalVotes": 0})
            area["count"] += row["count"]
            area["totalVotes"] += row["totalVotes"]

            party = by_party.setdefault(key["party"], {"party": key["party"], "candidates": 0, "totalVotes": 0})
            party["candidates"] += row["count"]
            party["totalVotes"] += row["totalVotes"]

        positions = []
        for name in sorted(by_position):
            entry = by_position[name]
            entry["constituencies"] = [
                {"constituency": c, **counts} for c, counts in entry["constituencies"].items()
            ]
            positions.append(entry)
        parties = sorted(by_party.values(), key=lambda p: (-p["candidates"], p["party"]))
        return {"byPosition": positions, "byParty": parties}
