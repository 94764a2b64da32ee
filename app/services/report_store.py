"""
Report Store Gateway - read/write access to persisted reports.

The enrichment pipeline reads a report, then writes its enrichment through a
compare-and-write: the write lands only if ai_pipeline_status still has the
value the caller expects. That conditional write is the only concurrency
control in the pipeline, so every implementation must make it atomic.

Implementations:
- FirestoreReportStore: Firestore transactions (firebase-admin)
- InMemoryReportStore: process-local dict guarded by a lock (USE_MOCK_DB, tests)
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
import copy
import logging
import threading
import uuid

from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError

from app.core.settings import settings
from app.models.report import EnrichmentResult, PipelineStatus, Report

logger = logging.getLogger(__name__)


class ReportStoreError(Exception):
    """Read or write failure against the report store."""


class ReportNotFound(ReportStoreError):
    def __init__(self, report_id: str):
        super().__init__(f"Report {report_id} not found")
        self.report_id = report_id


class ReportConflict(ReportStoreError):
    """A conditional write found a different status than expected."""

    def __init__(self, report_id: str, field: str, expected: Iterable[str], actual: Optional[str]):
        expected = sorted(expected)
        super().__init__(f"Report {report_id}: expected {field} in {expected}, found {actual!r}")
        self.report_id = report_id
        self.field = field
        self.expected = expected
        self.actual = actual


class MalformedReportError(ReportStoreError):
    """A stored record cannot be read as a Report or lacks required attributes."""


PIPELINE_STATUS_FIELD = "ai_pipeline_status"
RESOLUTION_STATUS_FIELD = "status"


def _values(statuses: Iterable[Any]) -> List[str]:
    return [getattr(s, "value", s) for s in statuses]


def enrichment_fields(result: EnrichmentResult, enriched_at: Any) -> Dict:
    """All enrichment attributes plus the completed status, written as one unit."""
    fields = result.to_store_fields()
    fields["ai_enriched_at"] = enriched_at
    fields[PIPELINE_STATUS_FIELD] = PipelineStatus.COMPLETED.value
    fields["ai_pipeline_updated_at"] = enriched_at
    return fields


class ReportStore(ABC):
    """
    Gateway contract.

    The pipeline only uses fetch, apply_enrichment and mark_status; the
    remaining operations serve the citizen and staff write paths, which own
    disjoint attribute groups of the same record.
    """

    @abstractmethod
    def fetch(self, report_id: str) -> Report:
        """
        Raises:
            ReportNotFound: no such report
            MalformedReportError: record cannot be parsed
            ReportStoreError: read failure
        """

    @abstractmethod
    def apply_enrichment(
        self,
        report_id: str,
        result: EnrichmentResult,
        expected_prior_status: PipelineStatus,
    ) -> None:
        """
        Write the enrichment and mark completed, only if ai_pipeline_status
        still equals expected_prior_status.

        Raises:
            ReportConflict: status changed since the caller read it
        """

    @abstractmethod
    def mark_status(
        self,
        report_id: str,
        status: PipelineStatus,
        expected_prior_statuses: Optional[Iterable[PipelineStatus]] = None,
    ) -> PipelineStatus:
        """
        Set ai_pipeline_status. Unconditional when expected_prior_statuses is
        None, otherwise a conditional transition.

        Returns:
            The status found before the write

        Raises:
            ReportConflict: current status not in expected_prior_statuses
        """

    @abstractmethod
    def create(self, data: Dict) -> Report:
        """Insert a new report; an id is generated when absent."""

    @abstractmethod
    def list_reports(
        self,
        status: Optional[str] = None,
        pipeline_status: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Report]:
        """Reports newest first, optionally filtered."""

    @abstractmethod
    def submit_feedback(self, report_id: str, verified: bool, feedback: Optional[str]) -> Report:
        """Citizen verification of a resolution."""

    @abstractmethod
    def update_resolution(self, report_id: str, fields: Dict, expected_status: str) -> Report:
        """
        Staff workflow write, conditional on the resolution status.

        Raises:
            ReportConflict: resolution status changed concurrently
        """

    @abstractmethod
    def ping(self) -> Dict:
        """Connectivity check for /health/db."""

    def list_stale(self, older_than: datetime, limit: int = 100) -> List[Report]:
        """
        Reports needing manual attention: failed, or pending/processing since
        before `older_than`.
        """
        stale = []
        for report in self.list_reports(limit=limit * 5):
            pipeline_status = report.ai_pipeline_status
            if pipeline_status == PipelineStatus.FAILED:
                stale.append(report)
            elif pipeline_status in (PipelineStatus.PENDING, PipelineStatus.PROCESSING):
                since = _pipeline_since(report)
                if since is not None and since < older_than:
                    stale.append(report)
            if len(stale) >= limit:
                break
        return stale


def _pipeline_since(report: Report) -> Optional[datetime]:
    since = report.ai_pipeline_updated_at or report.created_at
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since


def _to_report(report_id: str, data: Optional[Dict]) -> Report:
    data = dict(data or {})
    data["id"] = report_id
    try:
        report = Report(**data)
    except ValidationError as e:
        raise MalformedReportError(f"Report {report_id} is malformed: {e}")
    return report


class FirestoreReportStore(ReportStore):
    """
    Firestore-backed gateway.

    Every conditional write runs inside a Firestore transaction, which retries
    on contention and aborts if the document changed between read and write.
    """

    def __init__(self, db=None, collection: Optional[str] = None, timeout: Optional[float] = None):
        if db is None:
            from app.config.firebase import get_db
            db = get_db()
        self.db = db
        self.collection = collection or settings.REPORTS_COLLECTION
        self.timeout = timeout if timeout is not None else settings.STORE_TIMEOUT_SECONDS

    def _doc(self, report_id: str):
        return self.db.collection(self.collection).document(report_id)

    def fetch(self, report_id: str) -> Report:
        try:
            snapshot = self._doc(report_id).get(timeout=self.timeout)
        except google_exceptions.GoogleAPICallError as e:
            raise ReportStoreError(f"Failed to fetch report {report_id}: {e}")
        if not snapshot.exists:
            raise ReportNotFound(report_id)
        return _to_report(snapshot.id, snapshot.to_dict())

    def _compare_and_update(
        self,
        report_id: str,
        field: str,
        expected: Iterable[str],
        build_fields: Callable[[Dict], Dict],
    ) -> Dict:
        """Atomically check `field` against `expected`, then apply build_fields(current)."""
        expected = set(expected)
        doc_ref = self._doc(report_id)
        transaction = self.db.transaction()

        @firestore.transactional
        def update_in_transaction(transaction):
            snapshot = doc_ref.get(transaction=transaction, timeout=self.timeout)
            if not snapshot.exists:
                raise ReportNotFound(report_id)
            current = snapshot.to_dict() or {}
            actual = current.get(field)
            if actual not in expected:
                raise ReportConflict(report_id, field, expected, actual)
            fields = build_fields(current)
            transaction.update(doc_ref, fields)
            return current

        try:
            return update_in_transaction(transaction)
        except ReportStoreError:
            raise
        except google_exceptions.GoogleAPICallError as e:
            raise ReportStoreError(f"Conditional update of report {report_id} failed: {e}")

    def apply_enrichment(self, report_id, result, expected_prior_status):
        fields = enrichment_fields(result, firestore.SERVER_TIMESTAMP)
        self._compare_and_update(
            report_id,
            PIPELINE_STATUS_FIELD,
            _values([expected_prior_status]),
            lambda current: fields,
        )

    def mark_status(self, report_id, status, expected_prior_statuses=None):
        fields = {
            PIPELINE_STATUS_FIELD: PipelineStatus(status).value,
            "ai_pipeline_updated_at": firestore.SERVER_TIMESTAMP,
        }

        if expected_prior_statuses is not None:
            current = self._compare_and_update(
                report_id,
                PIPELINE_STATUS_FIELD,
                _values(expected_prior_statuses),
                lambda current: fields,
            )
            return PipelineStatus(current.get(PIPELINE_STATUS_FIELD) or PipelineStatus.PENDING.value)

        # Unconditional write; the prior value is read without a transaction
        previous = self.fetch(report_id).ai_pipeline_status
        try:
            self._doc(report_id).update(fields, timeout=self.timeout)
        except google_exceptions.NotFound:
            raise ReportNotFound(report_id)
        except google_exceptions.GoogleAPICallError as e:
            raise ReportStoreError(f"Failed to mark report {report_id} {status}: {e}")
        return previous

    def create(self, data: Dict) -> Report:
        collection = self.db.collection(self.collection)
        doc_ref = collection.document(data["id"]) if data.get("id") else collection.document()
        record = {k: (v.value if hasattr(v, "value") else v) for k, v in data.items() if k != "id"}
        record.setdefault(PIPELINE_STATUS_FIELD, PipelineStatus.PENDING.value)
        record["created_at"] = firestore.SERVER_TIMESTAMP
        try:
            doc_ref.create(record, timeout=self.timeout)
        except google_exceptions.Conflict:
            raise ReportConflict(doc_ref.id, "id", [], doc_ref.id)
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Failed to save report to Firestore: {e}", exc_info=True)
            raise ReportStoreError(f"Failed to create report: {e}")
        logger.info(f"Report saved to Firestore: {doc_ref.id}")
        return self.fetch(doc_ref.id)

    def list_reports(self, status=None, pipeline_status=None, user_id=None, limit=100):
        query = self.db.collection(self.collection)
        if status:
            query = query.where(RESOLUTION_STATUS_FIELD, "==", status)
        if pipeline_status:
            query = query.where(PIPELINE_STATUS_FIELD, "==", pipeline_status)
        if user_id:
            query = query.where("user_id", "==", user_id)
        query = query.order_by("created_at", direction=firestore.Query.DESCENDING).limit(limit)

        reports = []
        try:
            for doc in query.stream(timeout=self.timeout):
                try:
                    reports.append(_to_report(doc.id, doc.to_dict()))
                except MalformedReportError as e:
                    logger.warning(f"Skipping malformed report in listing: {e}")
        except google_exceptions.GoogleAPICallError as e:
            raise ReportStoreError(f"Failed to list reports: {e}")
        return reports

    def submit_feedback(self, report_id, verified, feedback):
        try:
            self._doc(report_id).update(
                {
                    "citizen_verified": verified,
                    "citizen_feedback": feedback,
                    "updated_at": firestore.SERVER_TIMESTAMP,
                },
                timeout=self.timeout,
            )
        except google_exceptions.NotFound:
            raise ReportNotFound(report_id)
        except google_exceptions.GoogleAPICallError as e:
            raise ReportStoreError(f"Failed to store feedback for report {report_id}: {e}")
        return self.fetch(report_id)

    def update_resolution(self, report_id, fields, expected_status):
        self._compare_and_update(
            report_id,
            RESOLUTION_STATUS_FIELD,
            [expected_status],
            lambda current: fields,
        )
        return self.fetch(report_id)

    def ping(self) -> Dict:
        try:
            collections = list(self.db.collections())
        except google_exceptions.GoogleAPICallError as e:
            raise ReportStoreError(f"Database connection failed: {e}")
        return {"database": "firestore", "connected": True, "collections_count": len(collections)}


class InMemoryReportStore(ReportStore):
    """
    Process-local gateway.

    A single lock makes each operation atomic, which is enough for the
    compare-and-write contract within one process.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._rows: Dict[str, Dict] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _row(self, report_id: str) -> Dict:
        row = self._rows.get(report_id)
        if row is None:
            raise ReportNotFound(report_id)
        return row

    def fetch(self, report_id: str) -> Report:
        with self._lock:
            row = copy.deepcopy(self._row(report_id))
        return _to_report(report_id, row)

    def _compare_and_update(self, report_id, field, expected, fields) -> Dict:
        expected = set(expected)
        with self._lock:
            row = self._row(report_id)
            actual = row.get(field)
            if actual not in expected:
                raise ReportConflict(report_id, field, expected, actual)
            previous = dict(row)
            row.update(fields)
            return previous

    def apply_enrichment(self, report_id, result, expected_prior_status):
        fields = enrichment_fields(result, self._clock())
        self._compare_and_update(report_id, PIPELINE_STATUS_FIELD, _values([expected_prior_status]), fields)

    def mark_status(self, report_id, status, expected_prior_statuses=None):
        fields = {
            PIPELINE_STATUS_FIELD: PipelineStatus(status).value,
            "ai_pipeline_updated_at": self._clock(),
        }
        if expected_prior_statuses is not None:
            previous = self._compare_and_update(
                report_id, PIPELINE_STATUS_FIELD, _values(expected_prior_statuses), fields
            )
        else:
            with self._lock:
                row = self._row(report_id)
                previous = dict(row)
                row.update(fields)
        return PipelineStatus(previous.get(PIPELINE_STATUS_FIELD) or PipelineStatus.PENDING.value)

    def create(self, data: Dict) -> Report:
        record = {k: (v.value if hasattr(v, "value") else v) for k, v in data.items()}
        report_id = record.pop("id", None) or uuid.uuid4().hex
        record.setdefault(PIPELINE_STATUS_FIELD, PipelineStatus.PENDING.value)
        record.setdefault("created_at", self._clock())
        with self._lock:
            if report_id in self._rows:
                raise ReportConflict(report_id, "id", [], report_id)
            self._rows[report_id] = record
        logger.info(f"Report saved to in-memory store: {report_id}")
        return self.fetch(report_id)

    def list_reports(self, status=None, pipeline_status=None, user_id=None, limit=100):
        with self._lock:
            rows = [(report_id, copy.deepcopy(row)) for report_id, row in self._rows.items()]

        reports = []
        for report_id, row in rows:
            if status and row.get(RESOLUTION_STATUS_FIELD, "pending") != status:
                continue
            if pipeline_status and row.get(PIPELINE_STATUS_FIELD) != pipeline_status:
                continue
            if user_id and row.get("user_id") != user_id:
                continue
            try:
                reports.append(_to_report(report_id, row))
            except MalformedReportError as e:
                logger.warning(f"Skipping malformed report in listing: {e}")

        epoch = datetime.min.replace(tzinfo=timezone.utc)
        reports.sort(key=lambda r: r.created_at or epoch, reverse=True)
        return reports[:limit]

    def submit_feedback(self, report_id, verified, feedback):
        with self._lock:
            row = self._row(report_id)
            row.update({"citizen_verified": verified, "citizen_feedback": feedback, "updated_at": self._clock()})
        return self.fetch(report_id)

    def update_resolution(self, report_id, fields, expected_status):
        with self._lock:
            row = self._row(report_id)
            actual = row.get(RESOLUTION_STATUS_FIELD, "pending")
            if actual != expected_status:
                raise ReportConflict(report_id, RESOLUTION_STATUS_FIELD, [expected_status], actual)
            row.update({k: (v.value if hasattr(v, "value") else v) for k, v in fields.items()})
        return self.fetch(report_id)

    def ping(self) -> Dict:
        with self._lock:
            count = len(self._rows)
        return {"database": "memory", "connected": True, "reports_count": count}

    def raw(self, report_id: str) -> Dict:
        """Stored record as-is, for inspection."""
        with self._lock:
            return copy.deepcopy(self._row(report_id))


# Global store instance (singleton pattern)
_store: Optional[ReportStore] = None


def get_report_store() -> ReportStore:
    """
    Get or create the configured ReportStore.

    USE_MOCK_DB=true selects the in-memory store, otherwise Firestore.
    """
    global _store
    if _store is None:
        if settings.USE_MOCK_DB:
            logger.info("[STORE] USING IN-MEMORY REPORT STORE")
            _store = InMemoryReportStore()
        else:
            _store = FirestoreReportStore()
            logger.info("[STORE] USING FIRESTORE REPORT STORE")
    return _store
