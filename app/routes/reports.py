"""
Report endpoints - citizen submission, tracking and feedback.

Submitting a report never waits for enrichment: the report is stored with
pipeline status "pending" and a trigger is emitted in the background.
"""

from typing import Optional
import logging

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool

from app.models.report import (
    AnalyzeRequest,
    ClassificationResult,
    FeedbackRequest,
    Report,
    ReportCreate,
    ReportListResponse,
    ResolutionStatus,
    priority_for,
)
from app.services.classifier import ClassificationError, get_classifier
from app.services.report_store import ReportNotFound, ReportStoreError, get_report_store
from app.services.trigger_source import get_trigger_source, qualifies_for_enrichment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.post("/analyze", response_model=ClassificationResult)
async def analyze_image(request: AnalyzeRequest):
    """
    Classify a photo before submission.

    The client shows the suggested category and sends it back with the report.
    """
    if not request.image_base64 or not request.image_base64.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Image data required")

    try:
        return await run_in_threadpool(get_classifier().classify, request.image_base64)
    except ClassificationError as e:
        logger.warning(f"Analysis failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Analysis failed")


@router.post("", status_code=status.HTTP_201_CREATED, response_model=Report)
async def submit_report(report: ReportCreate):
    """
    Submit a new citizen report.

    This endpoint:
    1. Stores the report (pipeline status pending, priority from category)
    2. Emits an enrichment trigger if the report carries a classification

    Returns the created report with generated ID.
    """
    logger.info(f"📝 POST /reports - category={report.category}, lat={report.latitude}")

    data = report.model_dump()
    data["priority"] = priority_for(report.category)
    data["status"] = ResolutionStatus.PENDING

    try:
        created = await run_in_threadpool(get_report_store().create, data)
    except ReportStoreError as e:
        logger.error(f"❌ POST /reports - Report creation failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Report creation failed: {e}",
        )

    if qualifies_for_enrichment(created):
        # The report is stored; a trigger failure must not fail the submission
        try:
            get_trigger_source().emit(created.id)
        except ValueError as e:
            logger.error(f"❌ Failed to trigger enrichment for report {created.id}: {e}")
    else:
        logger.info(f"Report {created.id} has no classification; enrichment not triggered")

    logger.info(f"✅ Report created successfully: {created.id}")
    return created


@router.get("", response_model=ReportListResponse)
async def get_user_reports(user_id: str = Query(..., min_length=1)):
    """Reports submitted by one user, newest first."""
    try:
        reports = await run_in_threadpool(get_report_store().list_reports, user_id=user_id)
    except ReportStoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to retrieve reports: {e}")
    return ReportListResponse(count=len(reports), reports=reports)


@router.get("/{report_id}", response_model=Report)
async def get_report(report_id: str):
    """Track a report by ID (no login required)."""
    try:
        return await run_in_threadpool(get_report_store().fetch, report_id)
    except ReportNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
    except ReportStoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to retrieve report: {e}")


@router.post("/{report_id}/feedback", response_model=Report)
async def submit_feedback(report_id: str, request: FeedbackRequest):
    """
    Citizen confirms or contests a resolution.

    Only resolved reports accept feedback.
    """
    store = get_report_store()
    try:
        existing = await run_in_threadpool(store.fetch, report_id)
        if existing.status != ResolutionStatus.RESOLVED:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Feedback is only accepted for resolved reports (current: {existing.status.value})",
            )
        feedback: Optional[str] = request.feedback.strip() if request.feedback else None
        return await run_in_threadpool(store.submit_feedback, report_id, request.verified, feedback or None)
    except HTTPException:
        raise
    except ReportNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
    except ReportStoreError as e:
        raise HTTPException(status_code=500, detail=f"Failed to submit feedback: {e}")
