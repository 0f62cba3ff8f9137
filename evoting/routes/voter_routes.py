from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pymongo.database import Database

from evoting.audit import AuditLog
from evoting.database.connection import get_db, public_doc
from evoting.dependencies import client_info, require_admin
from evoting.errors import InvalidArea, RegistrationClosed
from evoting.models.voter_model import SelfRegistrationIn, VoterIn
from evoting.notifications import Notifier, get_notifier
from evoting.reference_data import is_valid_constituency, wards_of
from evoting.settings_store import SettingsStore
from evoting.voters import VoterRegistry

router = APIRouter(prefix="/voters", tags=["Voters"])


def _registration_receipt(voter: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "votingNumber": voter["votingNumber"],
        "fullName": voter["fullName"],
        "email": voter["email"],
        "constituency": voter["constituency"],
        "ward": voter["ward"],
        "registrationDate": voter["registrationDate"],
    }


# ------------------------------
# Registration
# ------------------------------

@router.post("/self/register", status_code=201)
def self_register(
    registration: SelfRegistrationIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    if not SettingsStore(db).registration_open():
        raise RegistrationClosed()
    voter = VoterRegistry(db).register(registration.model_dump(), channel="self")
    background_tasks.add_task(notifier.send_registration_email, voter)
    AuditLog(db).record(
        None, "SELF_REGISTER", "Voter", voter["_id"],
        {"constituency": voter["constituency"], "ward": voter["ward"]},
        **client_info(request),
    )
    return {
        "success": True,
        "message": "Registration successful. Your voting number has been sent to your email.",
        "data": _registration_receipt(voter),
    }


@router.post("/register", status_code=201)
def register_voter(
    registration: VoterIn,
    request: Request,
    background_tasks: BackgroundTasks,
    db: Database = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    admin: Dict[str, Any] = Depends(require_admin),
):
    voter = VoterRegistry(db).register(registration.model_dump(), channel="admin")
    background_tasks.add_task(notifier.send_registration_email, voter)
    AuditLog(db).record(
        admin["_id"], "CREATE", "Voter", voter["_id"],
        {"constituency": voter["constituency"], "ward": voter["ward"]},
        **client_info(request),
    )
    return {"success": True, "message": "Voter registered successfully", "data": _registration_receipt(voter)}


# ------------------------------
# Admin queries
# ------------------------------

@router.get("/count")
def voter_count(db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    registry = VoterRegistry(db)
    total = registry.count()
    voted = registry.count({"hasVoted": True})
    return {"success": True, "data": {"total": total, "voted": voted, "pending": total - voted}}


@router.get("/pending")
def pending_voters(db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    voters = VoterRegistry(db).list_by_status(has_voted=False)
    return {"success": True, "count": len(voters), "data": [public_doc(v) for v in voters]}


@router.get("/voted")
def voted_voters(db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    voters = VoterRegistry(db).list_by_status(has_voted=True)
    return {"success": True, "count": len(voters), "data": [public_doc(v) for v in voters]}


@router.get("/statistics")
def voter_statistics(db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    return {"success": True, "data": VoterRegistry(db).statistics()}


@router.get("/recent")
def recent_voters(
    limit: int = Query(default=10, ge=1, le=100),
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    voters = VoterRegistry(db).recent(limit)
    return {"success": True, "data": [public_doc(v) for v in voters]}


@router.get("/today-count")
def today_count(db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    return {"success": True, "data": {"count": VoterRegistry(db).registered_today()}}


@router.get("/wards/{constituency}")
def wards_for_constituency(constituency: str, admin: Dict[str, Any] = Depends(require_admin)):
    if not is_valid_constituency(constituency):
        raise InvalidArea("Invalid constituency")
    return {"success": True, "data": wards_of(constituency)}


@router.get("/check-id/{national_id}")
def check_national_id(national_id: str, db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    return {"success": True, "available": VoterRegistry(db).is_national_id_available(national_id)}


@router.get("/check-email/{email}")
def check_email(email: str, db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    return {"success": True, "available": VoterRegistry(db).is_email_available(email)}


@router.delete("/{voting_number}")
def deactivate_voter(
    voting_number: str,
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    voter = VoterRegistry(db).deactivate(voting_number)
    AuditLog(db).record(admin["_id"], "DEACTIVATE", "Voter", voter["_id"], {}, **client_info(request))
    return {"success": True, "message": "Voter deactivated successfully"}
