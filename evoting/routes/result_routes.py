from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from pymongo.database import Database

from evoting.audit import AuditLog
from evoting.database.connection import get_db
from evoting.dependencies import client_info, require_admin
from evoting.exports import EXPORT_TYPES, export_csv, export_live_results
from evoting.models.candidate_model import Position
from evoting.results import CHART_TYPES, ResultsAggregator

router = APIRouter(prefix="/results", tags=["Results"])

EXPORT_PATTERN = "^(" + "|".join(EXPORT_TYPES) + ")$"
CHART_PATTERN = "^(" + "|".join(CHART_TYPES) + ")$"


def csv_download(filename: str, content: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ------------------------------
# Live results (public)
# ------------------------------

@router.get("/live")
def live_results(
    position: Optional[Position] = None,
    constituency: Optional[str] = None,
    ward: Optional[str] = None,
    db: Database = Depends(get_db),
):
    data = ResultsAggregator(db).live_results(position.value if position else None, constituency, ward)
    return {"success": True, "data": data}


@router.get("/position/{position}")
def results_by_position(
    position: Position,
    constituency: Optional[str] = None,
    ward: Optional[str] = None,
    db: Database = Depends(get_db),
):
    return {"success": True, "data": ResultsAggregator(db).tally(position.value, constituency, ward)}


@router.get("/constituency/{constituency}")
def results_by_constituency(constituency: str, db: Database = Depends(get_db)):
    return {"success": True, "data": ResultsAggregator(db).results_by_constituency(constituency)}


@router.get("/ward/{ward}")
def results_by_ward(ward: str, constituency: Optional[str] = None, db: Database = Depends(get_db)):
    """Ward names repeat across constituencies; pass ``constituency`` to pick one."""
    return {"success": True, "data": ResultsAggregator(db).results_by_ward(ward, constituency)}


@router.get("/constituencies")
def constituencies_with_votes(db: Database = Depends(get_db)):
    return {"success": True, "data": ResultsAggregator(db).constituencies()}


# ------------------------------
# Admin reports
# ------------------------------

@router.get("/export/csv")
def export_live_results_csv(
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    """Current tallies as CSV; unlike the post-election exports this works while voting is open."""
    filename, content = export_live_results(ResultsAggregator(db))
    AuditLog(db).record(admin["_id"], "EXPORT", "Results", None, {"type": "live"}, **client_info(request))
    return csv_download(filename, content)


@router.get("/participation")
def participation_report(
    constituency: Optional[str] = None,
    ward: Optional[str] = None,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    return {"success": True, "data": ResultsAggregator(db).participation_report(constituency, ward)}


@router.get("/post-election/full-report")
def full_report(
    constituency: Optional[str] = None,
    ward: Optional[str] = None,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    return {"success": True, "data": ResultsAggregator(db).full_report(constituency, ward)}


@router.get("/post-election/export/csv")
def export_post_election_csv(
    request: Request,
    type: str = Query(default="county", pattern=EXPORT_PATTERN),
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    filename, content = export_csv(ResultsAggregator(db), type)
    AuditLog(db).record(admin["_id"], "EXPORT", "Results", None, {"type": type}, **client_info(request))
    return csv_download(filename, content)


@router.get("/post-election/charts")
def chart_data(
    chartType: Optional[str] = Query(default=None, pattern=CHART_PATTERN),
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    return {"success": True, "data": ResultsAggregator(db).chart_data(chartType)}


@router.post("/post-election/publish")
def publish_results(
    request: Request,
    db: Database = Depends(get_db),
    admin: Dict[str, Any] = Depends(require_admin),
):
    data = ResultsAggregator(db).publish(admin)
    AuditLog(db).record(admin["_id"], "PUBLISH", "Results", None, data["snapshot"]["summary"], **client_info(request))
    return {"success": True, "message": "Election results have been officially published", "data": data}


@router.get("/post-election/status")
def publication_status(db: Database = Depends(get_db)):
    return {"success": True, "data": ResultsAggregator(db).publication_status()}
