"""
Enrichment Orchestrator - drives one report through the enrichment pipeline.

Flow for a trigger on report R:
1. Fetch R (missing → handled, no side effects)
2. Already completed → no-op success (triggers are redelivered)
3. Move R to processing
4. Classify (unless the trigger or the report already carries a
   classification) and run the rule engine
5. Conditional write of the enrichment, expecting processing
6. Any failure → best-effort mark failed, report the error

CONCURRENCY:
- Several invocations for the same report may run at once
- No lock is held across the classifier call; the conditional write in
  step 5 is the only serialization point, so at most one invocation
  completes the report and the others see ReportConflict
- Each invocation has a deadline; an overrun is a failure. An abandoned
  invocation that has not yet reached processing never starts, and a late
  write from one that has is rejected because the status is no longer
  processing
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Optional
import logging
import threading

from app.core.settings import settings
from app.models.pipeline import EnrichmentOutcome, OutcomeKind
from app.models.report import ClassificationResult, PipelineStatus, Report
from app.services.classifier import ClassificationError, ClassifierProvider, get_classifier, load_image
from app.services.enrichment_rules import EnrichmentRuleEngine, get_rule_engine
from app.services.report_store import (
    MalformedReportError,
    ReportConflict,
    ReportNotFound,
    ReportStore,
    ReportStoreError,
    get_report_store,
)
from app.services.status_workflow import PipelineStateMachine

logger = logging.getLogger(__name__)

# Operator escalation channel
alert_logger = logging.getLogger("app.alerts")


class EnrichmentTimeout(Exception):
    """A trigger invocation exceeded its deadline."""


class _Attempt:
    """
    Deadline bookkeeping for one invocation.

    Once abandoned, the worker must not move the report to processing; the
    lock orders that check against the caller's failure path.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self.abandoned = False


class EnrichmentOrchestrator:
    """
    Pipeline controller. `process` never raises; every error is converted
    into an EnrichmentOutcome.
    """

    def __init__(
        self,
        store: ReportStore,
        classifier: Optional[ClassifierProvider] = None,
        rule_engine: Optional[EnrichmentRuleEngine] = None,
        deadline_seconds: Optional[float] = None,
        max_workers: int = 4,
        alert_after_mark_failures: int = 3,
    ):
        self.store = store
        self.classifier = classifier
        self.rule_engine = rule_engine or EnrichmentRuleEngine()
        self.deadline_seconds = deadline_seconds
        self.alert_after_mark_failures = alert_after_mark_failures

        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="enrichment") if deadline_seconds else None
        self._mark_failures = 0
        self._mark_failures_lock = threading.Lock()

    def process(
        self,
        report_id: str,
        classification: Optional[ClassificationResult] = None,
        retry_failed: bool = False,
    ) -> EnrichmentOutcome:
        """
        Enrich one report. Safe to call repeatedly and concurrently.

        Args:
            report_id: Report identifier from the trigger
            classification: Classification embedded in the trigger, if any
            retry_failed: Explicit re-trigger; allows a failed report to be re-attempted

        Returns:
            EnrichmentOutcome describing what this invocation did
        """
        logger.info(f"Processing enrichment for report: {report_id}")

        attempt = _Attempt()
        if self._executor is None:
            return self._run(report_id, classification, retry_failed, attempt)

        future = self._executor.submit(self._run, report_id, classification, retry_failed, attempt)
        try:
            return future.result(timeout=self.deadline_seconds)
        except FuturesTimeoutError:
            error = EnrichmentTimeout(f"Enrichment of report {report_id} exceeded {self.deadline_seconds}s")
            logger.warning(f"⚠️ {error}")
            # Still queued: never let it run
            future.cancel()
            with attempt.lock:
                attempt.abandoned = True
            return self._fail(report_id, error)

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    def _run(
        self,
        report_id: str,
        classification: Optional[ClassificationResult],
        retry_failed: bool,
        attempt: _Attempt,
    ) -> EnrichmentOutcome:
        # Step 1: fetch
        try:
            report = self.store.fetch(report_id)
        except ReportNotFound as e:
            logger.warning(f"Enrichment trigger for unknown report {report_id}, ignoring")
            return EnrichmentOutcome.build(report_id, OutcomeKind.NOT_FOUND, error=e)
        except ReportStoreError as e:
            logger.error(f"Failed to fetch report {report_id}: {e}")
            return self._fail(report_id, e)

        # Step 2: idempotent replay
        if report.ai_pipeline_status == PipelineStatus.COMPLETED:
            logger.info(f"Report {report_id} already enriched, nothing to do")
            return EnrichmentOutcome.build(
                report_id,
                OutcomeKind.ALREADY_COMPLETED,
                pipeline_status=PipelineStatus.COMPLETED,
                result=report.enrichment_result(),
            )

        if report.ai_pipeline_status == PipelineStatus.FAILED and not retry_failed:
            logger.info(f"Report {report_id} is failed; waiting for an explicit re-trigger")
            return EnrichmentOutcome.build(
                report_id,
                OutcomeKind.SKIPPED,
                pipeline_status=PipelineStatus.FAILED,
                error=ValueError("Enrichment previously failed; re-trigger explicitly to retry"),
            )

        # Step 3: processing
        try:
            with attempt.lock:
                if attempt.abandoned:
                    logger.warning(f"Report {report_id} invocation abandoned after its deadline, not starting")
                    return EnrichmentOutcome.build(
                        report_id,
                        OutcomeKind.SUPERSEDED,
                        pipeline_status=report.ai_pipeline_status,
                        error=EnrichmentTimeout(f"Enrichment of report {report_id} was abandoned"),
                    )
                self.store.mark_status(
                    report_id,
                    PipelineStatus.PROCESSING,
                    expected_prior_statuses=PipelineStateMachine.processing_sources(retry_failed),
                )
        except ReportConflict as e:
            return self._on_conflict(report_id, e)
        except ReportNotFound as e:
            return EnrichmentOutcome.build(report_id, OutcomeKind.NOT_FOUND, error=e)
        except ReportStoreError as e:
            return self._fail(report_id, e)

        # Steps 4-5: classify, score, conditional write
        try:
            resolved = self._resolve_classification(report, classification)
            result = self.rule_engine.enrich(resolved.category, resolved.confidence, report.latitude)
            self.store.apply_enrichment(report_id, result, expected_prior_status=PipelineStatus.PROCESSING)
        except ReportConflict as e:
            return self._on_conflict(report_id, e)
        except ReportNotFound as e:
            logger.warning(f"Report {report_id} disappeared during enrichment")
            return EnrichmentOutcome.build(report_id, OutcomeKind.NOT_FOUND, error=e)
        except (ClassificationError, ReportStoreError, ValueError) as e:
            logger.warning(f"⚠️ Enrichment failed for report {report_id}: {e}")
            return self._fail(report_id, e)
        except Exception as e:
            logger.error(f"Unexpected enrichment error for report {report_id}: {e}", exc_info=True)
            return self._fail(report_id, e)

        # Step 6
        logger.info(
            f"✅ Successfully enriched report {report_id}: severity {result.severity_score}, "
            f"{result.ward}, {result.department}"
        )
        return EnrichmentOutcome.build(
            report_id,
            OutcomeKind.COMPLETED,
            status_updated=True,
            pipeline_status=PipelineStatus.COMPLETED,
            result=result,
        )

    def _resolve_classification(
        self,
        report: Report,
        classification: Optional[ClassificationResult],
    ) -> ClassificationResult:
        """
        Classification source, first match wins:
        the trigger payload, the report's submission-time classification,
        then the classifier run on the before image.
        """
        if report.latitude is None:
            raise MalformedReportError(f"Report {report.id} has no latitude")

        if classification is not None:
            return classification

        if report.category is not None and report.ai_confidence is not None:
            return ClassificationResult(
                category=report.category,
                confidence=report.ai_confidence,
                description=report.ai_description or "",
            )

        if self.classifier is None:
            raise MalformedReportError(f"Report {report.id} has no classification and no classifier is configured")

        logger.info(f"Classifying before image of report {report.id}")
        image = load_image(report.before_image_url)
        return self.classifier.classify(image)

    def _on_conflict(self, report_id: str, conflict: ReportConflict) -> EnrichmentOutcome:
        """Someone else moved the status first; decide what that means for this invocation."""
        actual = conflict.actual
        if actual == PipelineStatus.COMPLETED.value:
            logger.info(f"Report {report_id} was completed by a concurrent invocation")
            return EnrichmentOutcome.build(report_id, OutcomeKind.CONFLICT, pipeline_status=PipelineStatus.COMPLETED)

        if actual == PipelineStatus.FAILED.value:
            logger.warning(f"Report {report_id} was marked failed while this invocation was running")
            return EnrichmentOutcome.build(
                report_id, OutcomeKind.SUPERSEDED, pipeline_status=PipelineStatus.FAILED, error=conflict
            )

        logger.warning(f"Unexpected pipeline status for report {report_id}: {conflict}")
        return self._fail(report_id, conflict)

    def _fail(self, report_id: str, error: BaseException) -> EnrichmentOutcome:
        """Best-effort transition to failed. Never overwrites a completed report."""
        try:
            self.store.mark_status(
                report_id,
                PipelineStatus.FAILED,
                expected_prior_statuses=PipelineStateMachine.failure_sources(),
            )
        except ReportConflict as conflict:
            if conflict.actual == PipelineStatus.COMPLETED.value:
                logger.info(f"Report {report_id} completed elsewhere; discarding this invocation's failure")
                return EnrichmentOutcome.build(
                    report_id, OutcomeKind.CONFLICT, pipeline_status=PipelineStatus.COMPLETED
                )
            return EnrichmentOutcome.build(
                report_id, OutcomeKind.FAILED, pipeline_status=PipelineStatus.FAILED, error=error
            )
        except ReportNotFound as e:
            return EnrichmentOutcome.build(report_id, OutcomeKind.NOT_FOUND, error=e)
        except ReportStoreError as mark_error:
            logger.error(f"Failed to update status to failed for report {report_id}: {mark_error}")
            self._record_mark_failure(report_id, mark_error)
            return EnrichmentOutcome.build(report_id, OutcomeKind.FAILED_UNMARKED, error=error)

        with self._mark_failures_lock:
            self._mark_failures = 0
        logger.warning(f"Report {report_id} marked failed: {error}")
        return EnrichmentOutcome.build(
            report_id,
            OutcomeKind.FAILED,
            status_updated=True,
            pipeline_status=PipelineStatus.FAILED,
            error=error,
        )

    def _record_mark_failure(self, report_id: str, mark_error: BaseException) -> None:
        with self._mark_failures_lock:
            self._mark_failures += 1
            count = self._mark_failures
        if count >= self.alert_after_mark_failures:
            alert_logger.critical(
                f"{count} consecutive failures writing failed status; report {report_id} "
                f"may be stuck unobservably: {mark_error}"
            )


# Global orchestrator instance (singleton pattern)
_orchestrator: Optional[EnrichmentOrchestrator] = None


def get_orchestrator() -> EnrichmentOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = EnrichmentOrchestrator(
            store=get_report_store(),
            classifier=get_classifier(),
            rule_engine=get_rule_engine(),
            deadline_seconds=settings.ENRICHMENT_DEADLINE_SECONDS,
            max_workers=settings.ENRICHMENT_WORKERS,
            alert_after_mark_failures=settings.ALERT_AFTER_CONSECUTIVE_MARK_FAILURES,
        )
    return _orchestrator
