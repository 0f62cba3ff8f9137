# evoting/ballots.py
import logging
from typing import Any, Dict, Iterable, List, Optional

from evoting.config import VOTES_COLLECTION_NAME

logger = logging.getLogger(__name__)


class BallotStore:
    """Append-only store of position-level vote records.

    The unique index on (votingNumber, position) is the only thing that
    decides which of two concurrent submissions wins.
    """

    def __init__(self, db):
        self.collection = db[VOTES_COLLECTION_NAME]

    def insert_vote(self, vote: Dict[str, Any], session=None) -> None:
        self.collection.insert_one(vote, session=session)

    def discard_ballot(self, ballot_id: str) -> int:
        """Delete the records written by one submission attempt."""
        deleted = self.collection.delete_many({"ballotId": ballot_id}).deleted_count
        if deleted:
            logger.warning(f"Discarded {deleted} vote records from incomplete ballot {ballot_id}")
        return deleted

    def ballot_groups(self, voting_number: Optional[str] = None) -> List[Dict[str, Any]]:
        """One row per submission attempt: ballotId, votingNumber, record count and earliest votedAt."""
        match: Dict[str, Any] = {"ballotId": {"$exists": True}}
        if voting_number:
            match["votingNumber"] = voting_number
        pipeline = [
            {"$match": match},
            {
                "$group": {
                    "_id": "$ballotId",
                    "votingNumber": {"$first": "$votingNumber"},
                    "records": {"$sum": 1},
                    "votedAt": {"$min": "$votedAt"},
                }
            },
        ]
        return [
            {"ballotId": row["_id"], "votingNumber": row["votingNumber"], "records": row["records"], "votedAt": row.get("votedAt")}
            for row in self.collection.aggregate(pipeline)
        ]

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return self.collection.count_documents(query or {})

    def count_for(self, voting_number: str) -> int:
        return self.collection.count_documents({"votingNumber": voting_number})

    def grouped_counts(self, match: Dict[str, Any], keys: Iterable[str]) -> List[Dict[str, Any]]:
        """Count votes matching ``match`` grouped by ``keys`` plus candidateId.

        Returns flat rows such as ``{"position": "MP", "candidateId": ..., "votes": 3}``.
        """
        group_id = {key: f"${key}" for key in keys}
        group_id["candidateId"] = "$candidateId"
        pipeline = [
            {"$match": match},
            {"$group": {"_id": group_id, "votes": {"$sum": 1}}},
        ]
        return [dict(row["_id"], votes=row["votes"]) for row in self.collection.aggregate(pipeline)]

    def votes_by_candidate(self) -> Dict[Any, int]:
        return {row["candidateId"]: row["votes"] for row in self.grouped_counts({}, [])}

    def votes_by_position(self) -> Dict[str, int]:
        pipeline = [{"$group": {"_id": "$position", "count": {"$sum": 1}}}]
        return {row["_id"]: row["count"] for row in self.collection.aggregate(pipeline)}

    def constituencies(self) -> List[str]:
        return sorted(c for c in self.collection.distinct("constituency") if c)
