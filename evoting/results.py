# evoting/results.py
# Tallies are always recomputed from the raw vote records, never from the
# candidates' voteCount counters.
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from evoting.ballots import BallotStore
from evoting.candidates import CandidateRegistry
from evoting.errors import PortalStillOpen
from evoting.reference_data import POSITIONS
from evoting.settings_store import LAST_RESULTS_PUBLICATION, RESULTS_PUBLISHED, SettingsStore
from evoting.voters import VoterRegistry

logger = logging.getLogger(__name__)

UNKNOWN_CANDIDATE = "Unknown Candidate"
UNKNOWN_PARTY = "Unknown Party"

LEVEL_COUNTY = "county"
LEVEL_CONSTITUENCY = "constituency"
LEVEL_WARD = "ward"

# Vote fields grouped on at each rollup level; wards are keyed with their
# constituency because ward names repeat across constituencies.
LEVEL_KEYS = {
    LEVEL_COUNTY: ("position",),
    LEVEL_CONSTITUENCY: ("position", "constituency"),
    LEVEL_WARD: ("position", "constituency", "ward"),
}

CHART_TURNOUT = "turnout"
CHART_RESULTS = "results"
CHART_COMPARISON = "comparison"
CHART_TYPES = (CHART_TURNOUT, CHART_RESULTS, CHART_COMPARISON, "overview")


def percentage(votes: int, total: int) -> float:
    return round(votes * 100 / total, 2) if total else 0


def area_match(constituency: Optional[str] = None, ward: Optional[str] = None) -> Dict[str, Any]:
    match = {}
    if constituency:
        match["constituency"] = constituency
    if ward:
        match["ward"] = ward
    return match


def _position_order(position: str) -> int:
    return POSITIONS.index(position) if position in POSITIONS else len(POSITIONS)


class ResultsAggregator:
    def __init__(self, db):
        self.ballots = BallotStore(db)
        self.candidates = CandidateRegistry(db)
        self.voters = VoterRegistry(db)
        self.settings = SettingsStore(db)

    # --- Tallying ---

    def _rank(self, rows: List[Dict[str, Any]], details: Dict[Any, Dict[str, Any]]) -> Dict[str, Any]:
        """Rank one (position, area) group: votes descending, then candidate id ascending."""
        total = sum(row["votes"] for row in rows)
        ranked = []
        for row in sorted(rows, key=lambda r: (-r["votes"], str(r["candidateId"]))):
            candidate = details.get(row["candidateId"])
            ranked.append({
                "candidateId": str(row["candidateId"]),
                "candidateName": candidate["fullName"] if candidate else UNKNOWN_CANDIDATE,
                "party": candidate["politicalParty"] if candidate else UNKNOWN_PARTY,
                "constituency": candidate.get("constituency") if candidate else None,
                "ward": candidate.get("ward") if candidate else None,
                "photo": candidate.get("photo") if candidate else None,
                "votes": row["votes"],
                "percentage": percentage(row["votes"], total),
            })
        return {"candidates": ranked, "totalVotes": total, "winner": ranked[0] if ranked else None}

    def _tallies(self, match: Dict[str, Any], keys: Sequence[str]) -> Dict[Tuple, Dict[str, Any]]:
        rows = self.ballots.grouped_counts(match, keys)
        details = self.candidates.by_ids({row["candidateId"] for row in rows})
        groups: Dict[Tuple, List[Dict[str, Any]]] = {}
        for row in rows:
            groups.setdefault(tuple(row.get(k) for k in keys), []).append(row)
        return {key: self._rank(group, details) for key, group in groups.items()}

    def _by_position(self, match: Dict[str, Any], positions: Sequence[str] = POSITIONS) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        tallies = self._tallies(match, ("position",))
        empty = {"candidates": [], "totalVotes": 0, "winner": None}
        return {p: dict(tallies.get((p,), empty), lastUpdated=now) for p in positions}

    def tally(self, position: str, constituency: Optional[str] = None, ward: Optional[str] = None) -> Dict[str, Any]:
        match = dict(area_match(constituency, ward), position=position)
        result = self._by_position(match, [position])[position]
        return {
            "position": position,
            "results": result["candidates"],
            "totalVotes": result["totalVotes"],
            "winner": result["winner"],
            "lastUpdated": result["lastUpdated"],
        }

    def live_results(
        self,
        position: Optional[str] = None,
        constituency: Optional[str] = None,
        ward: Optional[str] = None,
    ) -> Dict[str, Any]:
        match = area_match(constituency, ward)
        positions = [position] if position else POSITIONS
        if position:
            match["position"] = position
        summary = self.turnout()
        summary["votingPortalOpen"] = self.settings.is_portal_open()
        summary["lastUpdated"] = datetime.now(timezone.utc)
        return {"results": self._by_position(match, positions), "summary": summary}

    def results_by_constituency(self, constituency: str) -> Dict[str, Any]:
        return {
            "constituency": constituency,
            "results": self._by_position(area_match(constituency)),
            "lastUpdated": datetime.now(timezone.utc),
        }

    def results_by_ward(self, ward: str, constituency: Optional[str] = None) -> Dict[str, Any]:
        """Per-position tallies for a ward; without ``constituency`` same-named wards are combined."""
        return {
            "ward": ward,
            "constituency": constituency,
            "results": self._by_position(area_match(constituency, ward)),
            "lastUpdated": datetime.now(timezone.utc),
        }

    def rollup(
        self,
        level: str,
        constituency: Optional[str] = None,
        ward: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Per-position results for every area at ``level`` that has votes."""
        if level not in LEVEL_KEYS:
            raise ValueError(f"Unknown rollup level: {level}")
        keys = LEVEL_KEYS[level]
        areas = []
        for key, result in self._tallies(area_match(constituency, ward), keys).items():
            area = dict(zip(keys, key))
            area.update(result)
            areas.append(area)
        areas.sort(key=lambda a: (_position_order(a["position"]), a.get("constituency") or "", a.get("ward") or ""))
        return areas

    def winners(self, constituency: Optional[str] = None, ward: Optional[str] = None) -> Dict[str, Any]:
        match = area_match(constituency, ward)
        winners: Dict[str, Any] = {LEVEL_COUNTY: {}, LEVEL_CONSTITUENCY: {}, LEVEL_WARD: {}}
        for (position,), result in self._tallies(match, LEVEL_KEYS[LEVEL_COUNTY]).items():
            winners[LEVEL_COUNTY][position] = result["winner"]
        for (position, con), result in self._tallies(match, LEVEL_KEYS[LEVEL_CONSTITUENCY]).items():
            winners[LEVEL_CONSTITUENCY].setdefault(con, {})[position] = result["winner"]
        for (position, con, w), result in self._tallies(match, LEVEL_KEYS[LEVEL_WARD]).items():
            winners[LEVEL_WARD].setdefault(con, {}).setdefault(w, {})[position] = result["winner"]
        return winners

    def constituencies(self) -> List[str]:
        return self.ballots.constituencies()

    # --- Turnout ---

    def _participation(self, match: Dict[str, Any]) -> Tuple[Dict[str, int], Dict[str, Dict], Dict[Tuple, Dict]]:
        total = {"total": 0, "voted": 0}
        by_constituency: Dict[str, Dict[str, int]] = {}
        by_ward: Dict[Tuple, Dict[str, int]] = {}
        for row in self.voters.participation_counts(dict(match, isActive=True)):
            for bucket in (
                total,
                by_constituency.setdefault(row["constituency"], {"total": 0, "voted": 0}),
                by_ward.setdefault((row["constituency"], row["ward"]), {"total": 0, "voted": 0}),
            ):
                bucket["total"] += row["count"]
                if row["hasVoted"]:
                    bucket["voted"] += row["count"]
        return total, by_constituency, by_ward

    @staticmethod
    def _turnout_entry(counts: Dict[str, int]) -> Dict[str, Any]:
        return {
            "totalVoters": counts["total"],
            "votedCount": counts["voted"],
            "pendingCount": counts["total"] - counts["voted"],
            "turnoutRate": percentage(counts["voted"], counts["total"]),
        }

    def turnout(self, constituency: Optional[str] = None, ward: Optional[str] = None) -> Dict[str, Any]:
        total, _, _ = self._participation(area_match(constituency, ward))
        return self._turnout_entry(total)

    def participation_report(self, constituency: Optional[str] = None, ward: Optional[str] = None) -> Dict[str, Any]:
        total, by_constituency, by_ward = self._participation(area_match(constituency, ward))
        return {
            "summary": self._turnout_entry(total),
            "byConstituency": [
                dict(constituency=c, **self._turnout_entry(counts))
                for c, counts in sorted(by_constituency.items(), key=lambda item: item[0] or "")
            ],
            "byWard": [
                dict(constituency=c, ward=w, **self._turnout_entry(counts))
                for (c, w), counts in sorted(by_ward.items(), key=lambda item: (item[0][0] or "", item[0][1] or ""))
            ],
        }

    # --- Charts ---

    def chart_data(self, chart_type: Optional[str] = None) -> Dict[str, Any]:
        """Series for the admin dashboard charts.

        ``turnout`` is the ten wards with the highest turnout, ``results`` the
        top three vote counts per position and ``comparison`` the votes per
        position in up to five constituencies. Anything else returns the
        overall counts.
        """
        if chart_type == CHART_TURNOUT:
            _, _, by_ward = self._participation({})
            wards = sorted(
                ((c, w, percentage(counts["voted"], counts["total"])) for (c, w), counts in by_ward.items()),
                key=lambda item: (-item[2], item[0] or "", item[1] or ""),
            )[:10]
            return {
                "labels": [f"{w} ({c})" for c, w, _ in wards],
                "datasets": [{"label": "Turnout Rate (%)", "data": [rate for _, _, rate in wards]}],
            }

        if chart_type == CHART_RESULTS:
            return {
                "labels": ["1st", "2nd", "3rd"],
                "datasets": [
                    {
                        "label": area["position"],
                        "data": [c["votes"] for c in area["candidates"][:3]],
                        "candidates": [c["candidateName"] for c in area["candidates"][:3]],
                    }
                    for area in self.rollup(LEVEL_COUNTY)
                ],
            }

        if chart_type == CHART_COMPARISON:
            constituencies = self.constituencies()[:5]
            totals = {
                (area["position"], area["constituency"]): area["totalVotes"]
                for area in self.rollup(LEVEL_CONSTITUENCY)
            }
            return {
                "labels": constituencies,
                "datasets": [
                    {"label": position, "data": [totals.get((position, c), 0) for c in constituencies]}
                    for position in POSITIONS
                ],
            }

        summary = self.turnout()
        return {
            "overall": {
                "totalVoters": summary["totalVoters"],
                "voted": summary["votedCount"],
                "totalCandidates": self.candidates.count({"isActive": True}),
                "totalVotes": self.ballots.count(),
                "positions": len(POSITIONS),
            },
            "voterStatus": {
                "labels": ["Voted", "Not Voted"],
                "data": [summary["votedCount"], summary["pendingCount"]],
            },
        }

    # --- Post-election ---

    def ensure_portal_closed(self) -> None:
        if self.settings.is_portal_open():
            raise PortalStillOpen()

    def full_report(self, constituency: Optional[str] = None, ward: Optional[str] = None) -> Dict[str, Any]:
        self.ensure_portal_closed()
        county_results = self.rollup(LEVEL_COUNTY, constituency, ward)
        match = area_match(constituency, ward)
        return {
            "summary": {
                "totalVotes": sum(area["totalVotes"] for area in county_results),
                "totalVoters": self.voters.count(match),
                "totalCandidates": self.candidates.count(),
                "positionsCount": len(county_results),
                "reportGenerated": datetime.now(timezone.utc),
            },
            "countyResults": county_results,
            "constituencyResults": self.rollup(LEVEL_CONSTITUENCY, constituency, ward),
            "wardResults": self.rollup(LEVEL_WARD, constituency, ward),
            "winners": self.winners(constituency, ward),
            "participation": self.participation_report(constituency, ward),
        }

    def publish(self, admin: Dict[str, Any]) -> Dict[str, Any]:
        self.ensure_portal_closed()
        now = datetime.now(timezone.utc)
        snapshot = {
            "timestamp": now,
            "publishedBy": str(admin["_id"]),
            "summary": {
                "totalVoters": self.voters.count(),
                "totalVotes": self.ballots.count(),
                "totalCandidates": self.candidates.count(),
            },
        }
        self.settings.set(RESULTS_PUBLISHED, True, updated_by=admin["_id"])
        self.settings.set(LAST_RESULTS_PUBLICATION, snapshot, updated_by=admin["_id"])
        logger.info(f"Election results published by {admin.get('email')}")
        return {
            "publishedAt": now,
            "publishedBy": admin.get("fullName") or admin.get("email"),
            "snapshot": snapshot,
        }

    def publication_status(self) -> Dict[str, Any]:
        portal_open = self.settings.is_portal_open()
        return {
            "votingPortalOpen": portal_open,
            "resultsPublished": self.settings.get(RESULTS_PUBLISHED, False) is True,
            "lastPublication": self.settings.get(LAST_RESULTS_PUBLICATION),
            "canPublish": not portal_open,
            "currentTime": datetime.now(timezone.utc),
        }
