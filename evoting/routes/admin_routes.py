import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, Request
from pymongo.database import Database
from pymongo.errors import PyMongoError

from evoting.audit import AuditLog
from evoting.ballots import BallotStore
from evoting.broadcast import Broadcaster, get_broadcaster
from evoting.candidates import CandidateRegistry
from evoting.database.connection import get_db, public_doc, to_object_id
from evoting.dependencies import client_info, require_admin, require_super_admin
from evoting.exports import DATA_EXPORT_TYPES, export_audit_logs, export_election_data
from evoting.models.setting_model import ScheduleIn
from evoting.notifications import Notifier, get_notifier
from evoting.results import ResultsAggregator
from evoting.routes.result_routes import csv_download
from evoting.settings_store import (
    DEFAULT_SETTINGS,
    LAST_RESULTS_PUBLICATION,
    RESULTS_PUBLISHED,
    VOTING_PORTAL_OPEN,
    SettingsStore,
)
from evoting.voters import VoterRegistry
from evoting.voting import VotingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

STARTED_AT = time.monotonic()

# Changed only through their dedicated endpoints
PROTECTED_SETTINGS = {VOTING_PORTAL_OPEN, RESULTS_PUBLISHED, LAST_RESULTS_PUBLICATION}
EDITABLE_SETTINGS = {key for key, *_ in DEFAULT_SETTINGS} - PROTECTED_SETTINGS
DATA_EXPORT_PATTERN = "^(" + "|".join(DATA_EXPORT_TYPES) + ")$"


@router.get("/dashboard")
def dashboard(db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    ballots = BallotStore(db)
    voters = VoterRegistry(db)
    aggregator = ResultsAggregator(db)
    one_day_ago = datetime.now(timezone.utc) - timedelta(days=1)
    turnout = aggregator.turnout()
    return {
        "success": True,
        "data": {
            "summary": {
                "totalVoters": voters.count(),
                "totalCandidates": CandidateRegistry(db).count(),
                "totalVotes": ballots.count(),
                "votingPortalOpen": aggregator.settings.is_portal_open(),
                "participationRate": turnout["turnoutRate"],
            },
            "votesByPosition": ballots.votes_by_position(),
            "recentActivity": {
                "last24Hours": {
                    "votes": ballots.count({"votedAt": {"$gte": one_day_ago}}),
                    "registrations": voters.count({"registrationDate": {"$gte": one_day_ago}}),
                }
            },
            "timestamp": datetime.now(timezone.utc),
        },
    }


# ------------------------------
# Settings
# ------------------------------

@router.get("/settings")
def get_settings(db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    return {"success": True, "data": SettingsStore(db).all()}


@router.put("/settings")
def update_settings(
    request: Request,
    updates: Dict[str, Any] = Body(...),
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_super_admin),
):
    unknown = sorted(set(updates) - EDITABLE_SETTINGS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Settings cannot be updated here: {', '.join(unknown)}")
    updated = SettingsStore(db).update_many(updates, updated_by=admin["_id"])
    AuditLog(db).record(admin["_id"], "UPDATE", "SystemSetting", None, {"updatedSettings": updated}, **client_info(request))
    return {"success": True, "message": "System settings updated successfully"}


# ------------------------------
# Voting portal control
# ------------------------------

def _set_portal(db, admin, request, broadcaster: Broadcaster, is_open: bool) -> Dict[str, Any]:
    record = SettingsStore(db).set_portal_open(is_open, updated_by=admin["_id"])
    action = "opened" if is_open else "closed"
    AuditLog(db).record(
        admin["_id"], "UPDATE", "VotingPortal", None,
        {"action": action, "timestamp": datetime.now(timezone.utc)},
        **client_info(request),
    )
    try:
        broadcaster.portal_status(is_open)
    except Exception as e:
        logger.warning(f"Portal status broadcast failed: {e}")
    return {
        "success": True,
        "message": f"Voting portal {action} successfully",
        "data": {"votingPortalOpen": record["value"], "version": record.get("version")},
    }


@router.post("/voting/open")
def open_voting_portal(
    request: Request,
    db: Database = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    admin: Dict[str, Any] = Depends(require_super_admin),
):
    return _set_portal(db, admin, request, broadcaster, True)


@router.post("/voting/close")
def close_voting_portal(
    request: Request,
    db: Database = Depends(get_db),
    broadcaster: Broadcaster = Depends(get_broadcaster),
    admin: Dict[str, Any] = Depends(require_super_admin),
):
    return _set_portal(db, admin, request, broadcaster, False)


@router.post("/voting/schedule")
def schedule_voting(
    schedule: ScheduleIn,
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_super_admin),
):
    data = SettingsStore(db).schedule(schedule.startTime, schedule.endTime, updated_by=admin["_id"])
    AuditLog(db).record(admin["_id"], "UPDATE", "VotingSchedule", None, data, **client_info(request))
    return {"success": True, "message": "Voting scheduled successfully", "data": data}


# ------------------------------
# Audit & maintenance
# ------------------------------

@router.get("/audit-logs")
def audit_logs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    adminId: Optional[str] = None,
    action: Optional[str] = None,
    entity: Optional[str] = None,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_super_admin),
):
    filters = {
        "adminId": to_object_id(adminId) if adminId else None,
        "action": action,
        "entity": entity,
        "startDate": startDate,
        "endDate": endDate,
    }
    result = AuditLog(db).list_logs(filters, page, limit)
    return {
        "success": True,
        "data": result["logs"],
        "pagination": {"page": page, "limit": limit, "total": result["total"], "pages": result["pages"]},
    }


@router.get("/audit-logs/export")
def export_audit_logs_csv(
    request: Request,
    startDate: Optional[datetime] = None,
    endDate: Optional[datetime] = None,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_super_admin),
):
    filename, content = export_audit_logs(db, startDate, endDate)
    AuditLog(db).record(
        admin["_id"], "EXPORT", "AuditLog", None,
        {"startDate": startDate, "endDate": endDate},
        **client_info(request),
    )
    return csv_download(filename, content)


@router.get("/export/{data_type}")
def export_data(
    request: Request,
    data_type: str = Path(..., pattern=DATA_EXPORT_PATTERN),
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    filename, content = export_election_data(db, data_type)
    AuditLog(db).record(admin["_id"], "EXPORT", "ElectionData", None, {"type": data_type}, **client_info(request))
    return csv_download(filename, content)


@router.post("/reconcile-vote-counts")
def reconcile_vote_counts(
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_super_admin),
):
    """Drop abandoned ballots, then reset every candidate's voteCount to the stored vote records."""
    purged = VotingService(db).purge_stale_ballots()
    corrected = CandidateRegistry(db).reconcile_vote_counts(BallotStore(db).votes_by_candidate())
    corrected = [public_doc(c) for c in corrected]
    AuditLog(db).record(
        admin["_id"], "RECONCILE", "Candidate", None,
        {"corrected": len(corrected), "purgedBallots": len(purged)},
        **client_info(request),
    )
    return {
        "success": True,
        "data": {"purgedBallots": purged, "correctedCount": len(corrected), "corrected": corrected},
    }


@router.get("/status")
def system_status(
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    admin: Dict[str, Any] = Depends(require_admin),
):
    try:
        db.command("ping")
        db_status = "connected"
    except PyMongoError as e:
        logger.error(f"Database ping failed: {e}")
        db_status = "disconnected"
    return {
        "success": True,
        "data": {
            "votingPortalOpen": SettingsStore(db).is_portal_open(),
            "database": db_status,
            "emailService": "configured" if notifier.enabled else "not configured",
            "counts": {
                "voters": VoterRegistry(db).count({"isActive": True}),
                "candidates": CandidateRegistry(db).count({"isActive": True}),
                "votes": BallotStore(db).count(),
            },
            "uptime": round(time.monotonic() - STARTED_AT, 1),
            "timestamp": datetime.now(timezone.utc),
        },
    }
