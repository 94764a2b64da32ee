"""
Pipeline endpoints - the HTTP face of the enrichment trigger.

POST /pipeline/trigger may be called any number of times for the same
report; repeated calls are idempotent replays.
"""

from typing import Optional
import logging
import secrets

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.core.settings import settings
from app.models.pipeline import EnrichmentOutcome, OutcomeKind
from app.models.report import PipelineStatusResponse, TriggerRequest
from app.services.enrichment_orchestrator import get_orchestrator
from app.services.report_store import ReportNotFound, ReportStoreError, get_report_store

logger = logging.getLogger(__name__)


def verify_trigger_secret(authorization: Optional[str] = Header(None)) -> None:
    """Require "Bearer <TRIGGER_SECRET>" when a secret is configured."""
    expected = settings.TRIGGER_SECRET
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid trigger credentials")


router = APIRouter(prefix="/pipeline", tags=["Pipeline"], dependencies=[Depends(verify_trigger_secret)])


OUTCOME_STATUS_CODES = {
    OutcomeKind.COMPLETED: status.HTTP_200_OK,
    OutcomeKind.ALREADY_COMPLETED: status.HTTP_200_OK,
    OutcomeKind.CONFLICT: status.HTTP_200_OK,
    OutcomeKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OutcomeKind.SKIPPED: status.HTTP_409_CONFLICT,
    OutcomeKind.SUPERSEDED: status.HTTP_409_CONFLICT,
    OutcomeKind.FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    OutcomeKind.FAILED_UNMARKED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _outcome_response(outcome: EnrichmentOutcome) -> JSONResponse:
    return JSONResponse(
        status_code=OUTCOME_STATUS_CODES[outcome.kind],
        content=outcome.model_dump(mode="json"),
    )


@router.post("/trigger")
async def trigger_enrichment(request: TriggerRequest):
    """
    Enrich one report.

    Returns the outcome; 200 for completed, already completed and lost
    races, 404 for unknown reports, 409 when the report is failed and needs
    an explicit re-trigger, 500 when enrichment failed.
    """
    outcome = await run_in_threadpool(
        get_orchestrator().process, request.report_id, request.classification
    )
    return _outcome_response(outcome)


@router.post("/reports/{report_id}/retrigger")
async def retrigger_enrichment(report_id: str):
    """Explicit re-enrichment of a failed report."""
    outcome = await run_in_threadpool(get_orchestrator().process, report_id, None, True)
    return _outcome_response(outcome)


@router.get("/reports/{report_id}", response_model=PipelineStatusResponse)
async def get_pipeline_status(report_id: str):
    try:
        report = await run_in_threadpool(get_report_store().fetch, report_id)
    except ReportNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
    except ReportStoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to retrieve report: {e}")

    return PipelineStatusResponse(
        report_id=report.id,
        pipeline_status=report.ai_pipeline_status,
        enriched_at=report.ai_enriched_at,
        enrichment=report.enrichment_result(),
    )
