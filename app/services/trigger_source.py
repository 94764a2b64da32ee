"""
Trigger Source - asks the pipeline to enrich a newly created report.

Delivery contract:
- emit() returns immediately and never raises into the caller's write path
- at-least-once: the same report may be delivered more than once, which the
  orchestrator treats as an idempotent replay
- failures are logged and swallowed; a report whose trigger was lost stays
  pending and shows up in /admin/pipeline/stale
"""

from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional
import logging

import requests

from app.core.settings import settings
from app.models.report import Report

logger = logging.getLogger(__name__)


def qualifies_for_enrichment(report: Report) -> bool:
    """Only reports that went through submission-time analysis are triggered."""
    return report.ai_confidence is not None


class TriggerSource(ABC):

    @abstractmethod
    def emit(self, report_id: str) -> None:
        """Request enrichment of one report. Non-blocking, never raises."""

    def shutdown(self) -> None:
        pass


class ThreadPoolTriggerSource(TriggerSource):
    """Runs the orchestrator in worker threads of this process."""

    def __init__(self, orchestrator_factory: Callable, max_workers: int = 4):
        self._orchestrator_factory = orchestrator_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="trigger")

    def emit(self, report_id: str) -> None:
        try:
            future = self._executor.submit(self._deliver, report_id)
            future.add_done_callback(self._log_unexpected)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Failed to trigger AI enrichment for report {report_id}: {e}")

    def _deliver(self, report_id: str):
        outcome = self._orchestrator_factory().process(report_id)
        if not outcome.success:
            logger.warning(f"Enrichment of report {report_id} ended {outcome.kind.value}: {outcome.error}")
        return outcome

    @staticmethod
    def _log_unexpected(future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(f"Enrichment trigger crashed: {error}", exc_info=error)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


class HttpTriggerSource(TriggerSource):
    """
    Fire-and-forget POST of {"report_id": ...} to the pipeline trigger
    endpoint, the way a database insert hook would call it.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: Optional[float] = None,
        max_workers: int = 2,
    ):
        self.url = url or settings.TRIGGER_URL
        self.secret = secret if secret is not None else settings.TRIGGER_SECRET
        self.timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="trigger-http")

    def emit(self, report_id: str) -> None:
        try:
            self._executor.submit(self._post, report_id)
        except RuntimeError as e:
            logger.warning(f"Failed to trigger AI enrichment for report {report_id}: {e}")

    def _post(self, report_id: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["Authorization"] = f"Bearer {self.secret}"
        try:
            response = requests.post(self.url, json={"report_id": report_id}, headers=headers, timeout=self.timeout)
            if response.status_code >= 400:
                logger.warning(f"Enrichment trigger for report {report_id} returned {response.status_code}")
        except requests.RequestException as e:
            logger.warning(f"Failed to trigger AI enrichment for report {report_id}: {e}")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


# Global trigger source (singleton pattern)
_trigger_source: Optional[TriggerSource] = None


def get_trigger_source() -> TriggerSource:
    global _trigger_source
    if _trigger_source is None:
        mode = settings.TRIGGER_MODE.lower()
        if mode == "http":
            _trigger_source = HttpTriggerSource()
        elif mode == "in_process":
            from app.services.enrichment_orchestrator import get_orchestrator
            _trigger_source = ThreadPoolTriggerSource(get_orchestrator, max_workers=settings.ENRICHMENT_WORKERS)
        else:
            raise ValueError(f"Unknown TRIGGER_MODE: {settings.TRIGGER_MODE}")
        logger.info(f"Enrichment trigger source: {mode}")
    return _trigger_source


def shutdown_trigger_source() -> None:
    global _trigger_source
    if _trigger_source is not None:
        _trigger_source.shutdown()
        _trigger_source = None
