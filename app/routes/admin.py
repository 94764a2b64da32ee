"""
Admin endpoints - staff resolution workflow and pipeline supervision.

SCOPE OF ADMIN:
✅ List reports by resolution or pipeline status
✅ Move reports through pending → in_progress → resolved (or duplicate)
✅ See reports whose enrichment failed or is stuck, for manual intervention

❌ NOT edit submission or enrichment fields
❌ NOT delete reports

Callers identify themselves with X-User-Id; access is granted by role
records (admin or moderator), checked through the access policy.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool

from app.core.settings import settings
from app.models.report import (
    PipelineStatus,
    Report,
    ReportListResponse,
    ResolutionStatus,
    StatusUpdateRequest,
)
from app.services.access_policy import STAFF_ROLES, RoleLookupError, get_access_policy
from app.services.report_store import (
    ReportConflict,
    ReportNotFound,
    ReportStoreError,
    get_report_store,
)
from app.services.status_workflow import ResolutionWorkflowEngine

logger = logging.getLogger(__name__)


def require_staff(x_user_id: Optional[str] = Header(None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header required")
    try:
        allowed = get_access_policy().has_any_role(x_user_id, STAFF_ROLES)
    except RoleLookupError as e:
        logger.error(f"Role lookup failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Role lookup unavailable")
    if not allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin or moderator role required")
    return x_user_id


router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/reports", response_model=ReportListResponse)
async def list_reports(
    report_status: Optional[ResolutionStatus] = Query(None, alias="status"),
    pipeline_status: Optional[PipelineStatus] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    staff_id: str = Depends(require_staff),
):
    try:
        reports = await run_in_threadpool(
            get_report_store().list_reports,
            status=report_status.value if report_status else None,
            pipeline_status=pipeline_status.value if pipeline_status else None,
            limit=limit,
        )
    except ReportStoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to retrieve reports: {e}")
    return ReportListResponse(count=len(reports), reports=reports)


@router.patch("/reports/{report_id}/status", response_model=Report)
async def change_status(
    report_id: str,
    request: StatusUpdateRequest,
    staff_id: str = Depends(require_staff),
):
    """
    Change report resolution status (strict workflow).

    **Status Meanings:**
    - pending: awaiting assignment
    - in_progress: crew assigned and working
    - resolved: cleaned up (after image optional)
    - duplicate: already covered by another report

    Raises:
        404: Report not found
        400: Invalid status transition
        409: Status changed concurrently
    """
    store = get_report_store()
    try:
        existing = await run_in_threadpool(store.fetch, report_id)
        update = ResolutionWorkflowEngine.validate_and_transition(
            current_status=existing.status.value,
            new_status=request.status.value,
            after_image_url=request.after_image_url,
        )
        updated = await run_in_threadpool(
            store.update_resolution, report_id, update, expected_status=existing.status.value
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ReportNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
    except ReportConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ReportStoreError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update status: {e}",
        )

    logger.info(f"Report {report_id} moved {existing.status.value} → {request.status.value} by {staff_id}")
    return updated


@router.get("/pipeline/stale", response_model=ReportListResponse)
async def stale_reports(
    older_than_minutes: Optional[int] = Query(None, ge=1),
    limit: int = Query(100, ge=1, le=500),
    staff_id: str = Depends(require_staff),
):
    """
    Reports needing manual attention: enrichment failed, or still pending or
    processing past the expected window.
    """
    minutes = older_than_minutes or settings.PIPELINE_STALE_AFTER_MINUTES
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    try:
        reports = await run_in_threadpool(get_report_store().list_stale, cutoff, limit=limit)
    except ReportStoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to retrieve reports: {e}")
    return ReportListResponse(count=len(reports), reports=reports)
