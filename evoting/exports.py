# evoting/exports.py
# CSV renditions of results, election records and the audit trail.
import csv
import io
import json
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pymongo import ASCENDING, DESCENDING

from evoting.config import (
    ADMINS_COLLECTION_NAME,
    AUDIT_COLLECTION_NAME,
    CANDIDATES_COLLECTION_NAME,
    VOTERS_COLLECTION_NAME,
    VOTES_COLLECTION_NAME,
)
from evoting.results import LEVEL_CONSTITUENCY, LEVEL_COUNTY, LEVEL_WARD, UNKNOWN_CANDIDATE, ResultsAggregator

EXPORT_TYPES = (LEVEL_WARD, LEVEL_CONSTITUENCY, LEVEL_COUNTY, "participation")
DATA_EXPORT_TYPES = ("voters", "candidates", "votes")
AUDIT_EXPORT_LIMIT = 1000

RESULT_COLUMNS = {
    LEVEL_WARD: ["Position", "Constituency", "Ward", "Candidate", "Party", "Votes", "Percentage"],
    LEVEL_CONSTITUENCY: ["Position", "Constituency", "Candidate", "Party", "Votes", "Percentage"],
    LEVEL_COUNTY: ["Position", "Candidate", "Party", "Votes", "Percentage", "Winner"],
}
PARTICIPATION_COLUMNS = ["Constituency", "Ward", "Total Voters", "Voted", "Not Voted", "Turnout Rate (%)"]
LIVE_RESULT_COLUMNS = ["Position", "Constituency", "Ward", "Candidate", "Party", "Votes"]
AUDIT_COLUMNS = ["Timestamp", "Admin", "Action", "Entity", "Entity ID", "Details", "IP Address"]
DATA_COLUMNS = {
    "voters": ["Voting Number", "Full Name", "National ID", "Constituency", "Ward", "Phone", "Voted", "Registered Date"],
    "candidates": ["Name", "Position", "Party", "Constituency", "Ward", "Votes", "Active"],
    # Vote rows never carry the voting number
    "votes": ["Position", "Candidate", "Party", "Constituency", "Ward", "Voted At"],
}


def _to_csv(columns: Sequence[str], rows: Iterable[Dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(columns), extrasaction="ignore")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue()


def _iso(moment: Optional[datetime]) -> str:
    return moment.isoformat() if moment else ""


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")


# --- Post-election tables ---

def _result_rows(aggregator: ResultsAggregator, level: str) -> List[Dict[str, Any]]:
    rows = []
    for area in aggregator.rollup(level):
        for rank, entry in enumerate(area["candidates"]):
            rows.append({
                "Position": area["position"],
                "Constituency": area.get("constituency"),
                "Ward": area.get("ward"),
                "Candidate": entry["candidateName"],
                "Party": entry["party"],
                "Votes": entry["votes"],
                "Percentage": entry["percentage"],
                "Winner": "Yes" if rank == 0 else "",
            })
    return rows


def _participation_rows(aggregator: ResultsAggregator) -> List[Dict[str, Any]]:
    return [
        {
            "Constituency": ward["constituency"],
            "Ward": ward["ward"],
            "Total Voters": ward["totalVoters"],
            "Voted": ward["votedCount"],
            "Not Voted": ward["pendingCount"],
            "Turnout Rate (%)": ward["turnoutRate"],
        }
        for ward in aggregator.participation_report()["byWard"]
    ]


def export_csv(aggregator: ResultsAggregator, export_type: str = LEVEL_COUNTY) -> Tuple[str, str]:
    """Render one post-election table; returns ``(filename, csv_text)``.

    Refused with PortalStillOpen while voting is in progress.
    """
    aggregator.ensure_portal_closed()
    if export_type == "participation":
        filename = "voter-participation.csv"
        columns, rows = PARTICIPATION_COLUMNS, _participation_rows(aggregator)
    elif export_type in RESULT_COLUMNS:
        filename = f"{export_type}-level-results.csv"
        columns, rows = RESULT_COLUMNS[export_type], _result_rows(aggregator, export_type)
    else:
        raise ValueError(f"Unknown export type: {export_type}")
    return filename, _to_csv(columns, rows)


def export_live_results(aggregator: ResultsAggregator) -> Tuple[str, str]:
    """Current tallies per position and ward, available while voting is open."""
    rows = [
        {
            "Position": area["position"],
            "Constituency": area.get("constituency") or "County-wide",
            "Ward": area.get("ward") or "N/A",
            "Candidate": entry["candidateName"],
            "Party": entry["party"],
            "Votes": entry["votes"],
        }
        for area in aggregator.rollup(LEVEL_WARD)
        for entry in area["candidates"]
    ]
    return "kirinyaga-election-results.csv", _to_csv(LIVE_RESULT_COLUMNS, rows)


# --- Election records ---

def _voter_rows(db) -> Iterable[Dict[str, Any]]:
    for voter in db[VOTERS_COLLECTION_NAME].find({}).sort("registrationDate", ASCENDING):
        yield {
            "Voting Number": voter.get("votingNumber"),
            "Full Name": voter.get("fullName"),
            "National ID": voter.get("nationalId"),
            "Constituency": voter.get("constituency"),
            "Ward": voter.get("ward"),
            "Phone": voter.get("phoneNumber"),
            "Voted": "Yes" if voter.get("hasVoted") else "No",
            "Registered Date": _iso(voter.get("registrationDate")),
        }


def _candidate_rows(db) -> Iterable[Dict[str, Any]]:
    for candidate in db[CANDIDATES_COLLECTION_NAME].find({}).sort([("position", ASCENDING), ("fullName", ASCENDING)]):
        yield {
            "Name": candidate.get("fullName"),
            "Position": candidate.get("position"),
            "Party": candidate.get("politicalParty"),
            "Constituency": candidate.get("constituency") or "County-wide",
            "Ward": candidate.get("ward") or "N/A",
            "Votes": candidate.get("voteCount", 0),
            "Active": "Yes" if candidate.get("isActive") else "No",
        }


def _vote_rows(db) -> Iterable[Dict[str, Any]]:
    candidates = {c["_id"]: c for c in db[CANDIDATES_COLLECTION_NAME].find({}, {"fullName": 1, "politicalParty": 1})}
    for vote in db[VOTES_COLLECTION_NAME].find({}, {"votingNumber": 0}).sort("votedAt", ASCENDING):
        candidate = candidates.get(vote.get("candidateId"))
        yield {
            "Position": vote.get("position"),
            "Candidate": candidate["fullName"] if candidate else UNKNOWN_CANDIDATE,
            "Party": candidate.get("politicalParty") if candidate else "",
            "Constituency": vote.get("constituency"),
            "Ward": vote.get("ward"),
            "Voted At": _iso(vote.get("votedAt")),
        }


DATA_ROWS = {"voters": _voter_rows, "candidates": _candidate_rows, "votes": _vote_rows}


def export_election_data(db, data_type: str) -> Tuple[str, str]:
    if data_type not in DATA_ROWS:
        raise ValueError(f"Unknown export type: {data_type}")
    return f"{data_type}-{_stamp()}.csv", _to_csv(DATA_COLUMNS[data_type], DATA_ROWS[data_type](db))


# --- Audit trail ---

def export_audit_logs(db, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None) -> Tuple[str, str]:
    """Newest entries first, at most ``AUDIT_EXPORT_LIMIT`` of them."""
    query: Dict[str, Any] = {}
    if start_date or end_date:
        query["timestamp"] = {}
        if start_date:
            query["timestamp"]["$gte"] = start_date
        if end_date:
            query["timestamp"]["$lte"] = end_date
    logs = list(db[AUDIT_COLLECTION_NAME].find(query).sort("timestamp", DESCENDING).limit(AUDIT_EXPORT_LIMIT))

    admin_ids = {log["adminId"] for log in logs if log.get("adminId")}
    emails = {
        admin["_id"]: admin.get("email")
        for admin in db[ADMINS_COLLECTION_NAME].find({"_id": {"$in": list(admin_ids)}}, {"email": 1})
    }
    rows = [
        {
            "Timestamp": _iso(log.get("timestamp")),
            "Admin": emails.get(log.get("adminId")) or "System",
            "Action": log.get("action"),
            "Entity": log.get("entity"),
            "Entity ID": str(log["entityId"]) if log.get("entityId") else "N/A",
            "Details": json.dumps(log.get("details") or {}, default=str, sort_keys=True),
            "IP Address": log.get("ipAddress") or "",
        }
        for log in logs
    ]
    return f"audit-logs-{_stamp()}.csv", _to_csv(AUDIT_COLUMNS, rows)
