import base64
import binascii
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo.database import Database

from evoting.audit import AuditLog
from evoting.candidates import CandidateRegistry
from evoting.config import CANDIDATE_PHOTO_DIR
from evoting.database.connection import get_db, public_doc
from evoting.dependencies import client_info, require_admin
from evoting.models.candidate_model import CandidateIn, CandidateUpdate, Position

router = APIRouter(prefix="/candidates", tags=["Candidates"])

PHOTO_URL_PREFIX = "/uploads/candidate_photos"
MAX_PHOTO_BYTES = 5 * 1024 * 1024


def save_base64_image(base64_str: str, prefix: str = "candidate") -> Tuple[str, str]:
    """
    Save a base64 image string to disk.
    - base64_str: may be raw base64 or a data URL (data:image/jpeg;base64,...)
    Returns: (filename, filepath)
    """
    if not base64_str:
        raise ValueError("empty base64 string")

    s = base64_str.strip()
    # if data URL present, strip header
    if s.startswith("data:"):
        comma = s.find(",")
        if comma != -1:
            s = s[comma + 1:]

    # sanitize whitespace/newlines
    s = "".join(s.split())

    try:
        data = base64.b64decode(s, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"invalid base64: {e}")
    if len(data) > MAX_PHOTO_BYTES:
        raise ValueError("image larger than 5MB")

    upload_dir = Path(CANDIDATE_PHOTO_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{prefix}-{uuid.uuid4().hex[:12]}.jpg"
    filepath = upload_dir / filename
    with open(filepath, "wb") as f:
        f.write(data)

    return filename, str(filepath.resolve())


def _candidate_fields(payload) -> Dict[str, Any]:
    data = payload.model_dump(mode="json", exclude_unset=True)
    photo_base64 = data.pop("photoBase64", None)
    if photo_base64:
        try:
            filename, _ = save_base64_image(photo_base64)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=f"Invalid candidate image: {e}")
        data["photo"] = f"{PHOTO_URL_PREFIX}/{filename}"
    return data


# ------------------------------
# Public listings
# ------------------------------

@router.get("")
def list_candidates(
    position: Optional[Position] = None,
    constituency: Optional[str] = None,
    ward: Optional[str] = None,
    party: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    db: Database = Depends(get_db),
):
    filters = {
        "position": position.value if position else None,
        "constituency": constituency,
        "ward": ward,
        "party": party,
    }
    result = CandidateRegistry(db).search(filters, page, limit)
    result["candidates"] = [public_doc(c) for c in result["candidates"]]
    return {"success": True, **result}


@router.get("/by-position/{position}")
def candidates_by_position(position: Position, db: Database = Depends(get_db)):
    candidates = CandidateRegistry(db).by_position(position.value)
    return {"success": True, "count": len(candidates), "data": [public_doc(c) for c in candidates]}


@router.get("/statistics/overview")
def candidate_statistics(db: Database = Depends(get_db), admin: Dict[str, Any] = Depends(require_admin)):
    return {"success": True, "data": CandidateRegistry(db).statistics()}


@router.get("/{candidate_id}")
def get_candidate(candidate_id: str, db: Database = Depends(get_db)):
    return {"success": True, "data": public_doc(CandidateRegistry(db).get(candidate_id))}


# ------------------------------
# Admin management
# ------------------------------

@router.post("", status_code=201)
def add_candidate(
    candidate: CandidateIn,
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    created = CandidateRegistry(db).add(_candidate_fields(candidate))
    AuditLog(db).record(
        admin["_id"], "CREATE", "Candidate", created["_id"],
        {"fullName": created["fullName"], "position": created["position"], "politicalParty": created["politicalParty"]},
        **client_info(request),
    )
    return {"success": True, "message": "Candidate added successfully", "data": public_doc(created)}


@router.put("/{candidate_id}")
def update_candidate(
    candidate_id: str,
    changes: CandidateUpdate,
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    fields = _candidate_fields(changes)
    updated = CandidateRegistry(db).update(candidate_id, fields)
    AuditLog(db).record(admin["_id"], "UPDATE", "Candidate", updated["_id"], fields, **client_info(request))
    return {"success": True, "message": "Candidate updated successfully", "data": public_doc(updated)}


@router.delete("/{candidate_id}")
def delete_candidate(
    candidate_id: str,
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    candidate, deactivated = CandidateRegistry(db).remove(candidate_id)
    AuditLog(db).record(
        admin["_id"], "DEACTIVATE" if deactivated else "DELETE", "Candidate", candidate["_id"],
        {"fullName": candidate["fullName"], "position": candidate["position"]},
        **client_info(request),
    )
    message = (
        "Candidate deactivated (has existing votes)" if deactivated else "Candidate deleted successfully"
    )
    return {"success": True, "message": message}
