# evoting/voting.py
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError, PyMongoError

from evoting.audit import AuditLog
from evoting.ballots import BallotStore
from evoting.broadcast import Broadcaster, broadcaster as default_broadcaster
from evoting.candidates import CandidateRegistry
from evoting.config import MONGO_TRANSACTIONS, STALE_BALLOT_SECONDS
from evoting.database.connection import public_doc
from evoting.errors import (
    AlreadyVoted,
    DuplicatePosition,
    IneligibleCandidate,
    InvalidCandidate,
    InvalidCredential,
    MissingPosition,
    PortalClosed,
    StoreUnavailable,
)
from evoting.reference_data import POSITIONS, SCOPE_CONSTITUENCY, SCOPE_COUNTY, SCOPE_WARD, scope_of
from evoting.settings_store import SettingsStore
from evoting.voters import VoterRegistry

logger = logging.getLogger(__name__)

# Voter fields a candidate must share, by the area a position is contested in
AREA_FIELDS = {
    SCOPE_COUNTY: ("county",),
    SCOPE_CONSTITUENCY: ("county", "constituency"),
    SCOPE_WARD: ("county", "constituency", "ward"),
}


def area_criteria(position: str, voter: Dict[str, Any]) -> Dict[str, Any]:
    """Candidate filter for ``position`` in the voter's area.

    Both the ballot shown at eligibility time and the check made at
    submission time are derived from this, so they cannot disagree.
    """
    criteria = {"position": position}
    for field in AREA_FIELDS[scope_of(position)]:
        criteria[field] = voter.get(field)
    return criteria


def _as_utc(moment: Optional[datetime]) -> datetime:
    # The driver hands back naive UTC datetimes unless tz_aware is set
    if moment is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def candidate_is_eligible(candidate: Dict[str, Any], voter: Dict[str, Any], position: str) -> bool:
    criteria = area_criteria(position, voter)
    return all(candidate.get(field) == value for field, value in criteria.items())


class VotingService:
    """Eligibility checks and all-or-nothing ballot submission."""

    def __init__(
        self,
        db,
        broadcaster: Optional[Broadcaster] = None,
        use_transactions: bool = MONGO_TRANSACTIONS,
        stale_ballot_seconds: int = STALE_BALLOT_SECONDS,
    ):
        self.db = db
        self.voters = VoterRegistry(db)
        self.candidates = CandidateRegistry(db)
        self.ballots = BallotStore(db)
        self.settings = SettingsStore(db)
        self.audit = AuditLog(db)
        self.broadcaster = broadcaster or default_broadcaster
        self.use_transactions = use_transactions
        self.stale_ballot_seconds = stale_ballot_seconds

    # --- Eligibility ---

    def _require_voter(self, voting_number: str) -> Dict[str, Any]:
        # Portal flag is read from the store on every call
        if not self.settings.is_portal_open():
            raise PortalClosed()
        voter = self.voters.find_active(voting_number)
        if not voter:
            raise InvalidCredential()
        if voter.get("hasVoted"):
            raise AlreadyVoted()
        return voter

    def eligible_candidates(self, voter: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
        return {
            position: [public_doc(c) for c in self.candidates.eligible(area_criteria(position, voter))]
            for position in POSITIONS
        }

    def check_eligibility(self, voting_number: str) -> Dict[str, Any]:
        voter = self._require_voter(voting_number)
        return {
            "voter": {
                "fullName": voter["fullName"],
                "constituency": voter["constituency"],
                "ward": voter["ward"],
            },
            "eligibleCandidates": self.eligible_candidates(voter),
            "votingDeadline": self.settings.voting_deadline(),
        }

    # --- Submission ---

    def submit_ballot(
        self,
        voting_number: str,
        choices: Iterable[Dict[str, Any]],
        notify: Optional[Callable[[Dict[str, Any], datetime], Any]] = None,
    ) -> Dict[str, Any]:
        """
        Validate and commit a four-position ballot.

        Args:
            voting_number: the voter's credential
            choices: ``{"position": ..., "candidateId": ...}`` items, one per position
            notify: called with the voter document and ``votedAt`` after the ballot is committed

        Returns:
            ``{"message", "votedAt", "positions"}`` once every write is durable

        Raises:
            EVotingError subclasses; nothing is written when one is raised.
        """
        selections = self._validate_positions(choices)
        voter = self._require_voter(voting_number)
        chosen = self._resolve_choices(voter, selections)

        voted_at = datetime.now(timezone.utc)
        ballot_id = uuid.uuid4().hex
        if self.use_transactions:
            self._commit_in_transaction(voter, chosen, ballot_id, voted_at)
        else:
            self._commit_fenced(voter, chosen, ballot_id, voted_at)
        logger.info(f"Ballot {ballot_id} recorded for {voter['constituency']}/{voter['ward']}")

        self._announce(voter, voted_at, notify)
        return {
            "message": "Vote submitted successfully",
            "votedAt": voted_at,
            "positions": list(POSITIONS),
        }

    def _validate_positions(self, choices: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
        choices = list(choices or [])
        if not choices:
            raise MissingPosition()

        selections: Dict[str, Any] = {}
        for choice in choices:
            position = choice.get("position")
            if position in selections:
                raise DuplicatePosition()
            selections[position] = choice.get("candidateId")

        for position in POSITIONS:
            if position not in selections:
                raise MissingPosition(f"Missing vote for position: {position}")
        unexpected = [p for p in selections if p not in POSITIONS]
        if unexpected:
            raise MissingPosition(f"Unexpected position in vote submission: {unexpected[0]}")
        return selections

    def _resolve_choices(self, voter: Dict[str, Any], selections: Dict[str, Any]) -> List[Tuple[str, Dict[str, Any]]]:
        chosen = []
        for position in POSITIONS:
            candidate = self.candidates.find(selections[position])
            if not candidate or not candidate.get("isActive"):
                raise InvalidCandidate(f"Invalid candidate for {position}")
            if not candidate_is_eligible(candidate, voter, position):
                raise IneligibleCandidate(
                    f"Candidate {candidate['fullName']} is not eligible for {position} in your area"
                )
            chosen.append((position, candidate))
        return chosen

    # --- Commit ---

    def _write_ballot(self, voter, chosen, ballot_id, voted_at, session=None, progress=None) -> None:
        for position, candidate in chosen:
            self.ballots.insert_vote(
                {
                    "votingNumber": voter["votingNumber"],
                    "position": position,
                    "candidateId": candidate["_id"],
                    "county": voter["county"],
                    "constituency": voter["constituency"],
                    "ward": voter["ward"],
                    "votedAt": voted_at,
                    "ballotId": ballot_id,
                },
                session=session,
            )

        if not self.voters.mark_voted(voter["votingNumber"], session=session):
            raise AlreadyVoted()
        if progress is not None:
            progress["flipped"] = True

        for _, candidate in chosen:
            self.candidates.increment_vote_count(candidate["_id"], session=session)
            if progress is not None:
                progress["incremented"].append(candidate["_id"])

    def _commit_in_transaction(self, voter, chosen, ballot_id, voted_at) -> None:
        try:
            with self.db.client.start_session() as session:
                session.with_transaction(
                    lambda s: self._write_ballot(voter, chosen, ballot_id, voted_at, session=s)
                )
        except DuplicateKeyError:
            logger.warning("Concurrent ballot for the same voting number rejected")
            raise AlreadyVoted()
        except PyMongoError as e:
            logger.error(f"Ballot transaction {ballot_id} aborted: {e}")
            raise StoreUnavailable()

    def _commit_fenced(self, voter, chosen, ballot_id, voted_at, retry: bool = True) -> None:
        # The (votingNumber, position) unique index decides the winner of a race;
        # the loser removes whatever it managed to write.
        progress = {"flipped": False, "incremented": []}
        try:
            self._write_ballot(voter, chosen, ballot_id, voted_at, progress=progress)
        except (DuplicateKeyError, AlreadyVoted):
            self._compensate(voter, ballot_id, progress)
            if retry and self._clear_abandoned(voter["votingNumber"]):
                logger.warning(f"Retrying ballot {ballot_id} after removing an abandoned attempt")
                return self._commit_fenced(voter, chosen, ballot_id, voted_at, retry=False)
            logger.warning("Concurrent ballot for the same voting number rejected")
            raise AlreadyVoted()
        except PyMongoError as e:
            logger.error(f"Ballot {ballot_id} failed mid-commit: {e}")
            self._compensate(voter, ballot_id, progress)
            raise StoreUnavailable()

    def _compensate(self, voter, ballot_id, progress) -> None:
        try:
            for candidate_id in progress["incremented"]:
                self.candidates.increment_vote_count(candidate_id, -1)
            if progress["flipped"]:
                self.voters.revert_voted(voter["votingNumber"])
            # Votes go last: they hold the fence until everything else is undone
            self.ballots.discard_ballot(ballot_id)
        except PyMongoError as e:
            logger.error(f"Cleanup of ballot {ballot_id} incomplete, run vote count reconciliation: {e}")

    def _clear_abandoned(self, voting_number: str) -> bool:
        try:
            return bool(self.purge_stale_ballots(voting_number))
        except PyMongoError as e:
            logger.error(f"Could not check for abandoned ballots: {e}")
            raise StoreUnavailable()

    def purge_stale_ballots(self, voting_number: Optional[str] = None, min_age_seconds: Optional[int] = None) -> List[str]:
        """
        Delete vote records left behind when a failed commit could not clean up.

        A voter who is still un-voted cannot own a committed ballot, so any of
        their records older than the grace period belong to an abandoned
        attempt. Younger records may be an attempt still in flight.

        Returns:
            The ``ballotId`` of every ballot removed.
        """
        age = self.stale_ballot_seconds if min_age_seconds is None else min_age_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=age)
        groups = [g for g in self.ballots.ballot_groups(voting_number) if _as_utc(g.get("votedAt")) <= cutoff]
        if not groups:
            return []

        voted = self.voters.voted_numbers({g["votingNumber"] for g in groups})
        purged = []
        for group in groups:
            if group["votingNumber"] in voted:
                continue
            self.ballots.discard_ballot(group["ballotId"])
            purged.append(group["ballotId"])
        if purged:
            logger.warning(f"Removed {len(purged)} abandoned ballot(s)")
        return purged

    # --- Side effects ---

    def _announce(self, voter: Dict[str, Any], voted_at: datetime, notify=None) -> None:
        # The ballot is committed; nothing below may turn this into a failure
        area = {"constituency": voter["constituency"], "ward": voter["ward"]}
        self.audit.record(None, "VOTE", "Vote", None, dict(area, positions=list(POSITIONS)))
        try:
            self.broadcaster.vote_recorded(**area)
        except Exception as e:
            logger.warning(f"Vote update broadcast failed: {e}")
        if notify is not None:
            try:
                notify(voter, voted_at)
            except Exception as e:
                logger.warning(f"Vote confirmation could not be scheduled: {e}")
