"""
Pydantic models for enrichment trigger outcomes.

Every trigger invocation ends in exactly one outcome kind; callers decide
success or failure from `success`, and whether the report's pipeline status
was written by this invocation from `status_updated`.
"""

from pydantic import BaseModel
from typing import Optional
from enum import Enum

from app.models.report import EnrichmentResult, PipelineStatus


class OutcomeKind(str, Enum):
    COMPLETED = "completed"                  # this invocation wrote the enrichment
    ALREADY_COMPLETED = "already_completed"  # replay of a finished report, nothing written
    CONFLICT = "conflict"                    # lost the conditional write to a concurrent run
    SKIPPED = "skipped"                      # report is failed and this was not an explicit re-trigger
    NOT_FOUND = "not_found"                  # spurious trigger or deleted report
    SUPERSEDED = "superseded"                # status moved away (e.g. deadline marked it failed)
    FAILED = "failed"                        # enrichment failed, status is failed
    FAILED_UNMARKED = "failed_unmarked"      # enrichment failed and the failed status could not be written


SUCCESS_KINDS = frozenset({OutcomeKind.COMPLETED, OutcomeKind.ALREADY_COMPLETED, OutcomeKind.CONFLICT})


class EnrichmentOutcome(BaseModel):
    report_id: str
    kind: OutcomeKind
    success: bool
    status_updated: bool = False
    pipeline_status: Optional[PipelineStatus] = None
    result: Optional[EnrichmentResult] = None
    error: Optional[str] = None

    @classmethod
    def build(
        cls,
        report_id: str,
        kind: OutcomeKind,
        status_updated: bool = False,
        pipeline_status: Optional[PipelineStatus] = None,
        result: Optional[EnrichmentResult] = None,
        error: Optional[BaseException] = None,
    ) -> "EnrichmentOutcome":
        return cls(
            report_id=report_id,
            kind=kind,
            success=kind in SUCCESS_KINDS,
            status_updated=status_updated,
            pipeline_status=pipeline_status,
            result=result,
            error=str(error) if error is not None else None,
        )
