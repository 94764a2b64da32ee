"""tests/test_report_store.py — In-memory store gateway contract"""
from datetime import datetime, timedelta, timezone

import pytest

from app.models.report import ENRICHMENT_FIELDS, PipelineStatus
from app.services.enrichment_rules import enrich
from app.services.report_store import (
    InMemoryReportStore,
    MalformedReportError,
    ReportConflict,
    ReportNotFound,
)


RESULT = enrich("garbage_dump", 0.7, 18.6)


def test_create_defaults(store):
    report = store.create({"latitude": 18.5, "longitude": 73.8, "before_image_url": "https://x/y.jpg"})
    assert report.id
    assert report.ai_pipeline_status == PipelineStatus.PENDING
    assert report.created_at is not None
    assert not report.has_enrichment()


def test_create_rejects_duplicate_id(store):
    store.create({"id": "r1", "latitude": 1.0})
    with pytest.raises(ReportConflict):
        store.create({"id": "r1", "latitude": 2.0})


def test_fetch_missing(store):
    with pytest.raises(ReportNotFound):
        store.fetch("nope")


def test_fetch_malformed(store):
    with pytest.raises(MalformedReportError):
        store.create({"id": "bad", "latitude": 123.0})
    with pytest.raises(MalformedReportError):
        store.fetch("bad")


def test_apply_enrichment_writes_all_fields_and_completes(store, make_report):
    report = make_report(ai_pipeline_status="processing")

    store.apply_enrichment(report.id, RESULT, expected_prior_status=PipelineStatus.PROCESSING)

    raw = store.raw(report.id)
    assert raw["ai_pipeline_status"] == "completed"
    for field in ENRICHMENT_FIELDS:
        assert raw[field] is not None
    assert store.fetch(report.id).enrichment_result() == RESULT


def test_apply_enrichment_conflict_writes_nothing(store, make_report):
    report = make_report(ai_pipeline_status="failed")
    before = store.raw(report.id)

    with pytest.raises(ReportConflict) as exc_info:
        store.apply_enrichment(report.id, RESULT, expected_prior_status=PipelineStatus.PROCESSING)

    assert exc_info.value.actual == "failed"
    assert store.raw(report.id) == before


def test_mark_status_conditional(store, make_report):
    report = make_report()
    previous = store.mark_status(
        report.id, PipelineStatus.PROCESSING, expected_prior_statuses=[PipelineStatus.PENDING]
    )
    assert previous == PipelineStatus.PENDING

    with pytest.raises(ReportConflict):
        store.mark_status(report.id, PipelineStatus.FAILED, expected_prior_statuses=[PipelineStatus.PENDING])
    assert store.fetch(report.id).ai_pipeline_status == PipelineStatus.PROCESSING


def test_mark_status_unconditional(store, make_report):
    report = make_report(ai_pipeline_status="completed")
    previous = store.mark_status(report.id, PipelineStatus.FAILED)
    assert previous == PipelineStatus.COMPLETED
    assert store.fetch(report.id).ai_pipeline_status == PipelineStatus.FAILED


def test_mark_status_missing_report(store):
    with pytest.raises(ReportNotFound):
        store.mark_status("nope", PipelineStatus.FAILED, expected_prior_statuses=[PipelineStatus.PENDING])


def test_list_reports_filters_and_orders(store, make_report):
    now = datetime.now(timezone.utc)
    old = make_report(user_id="u1", created_at=now - timedelta(hours=2))
    new = make_report(user_id="u1", created_at=now)
    make_report(user_id="u2")

    reports = store.list_reports(user_id="u1")

    assert [r.id for r in reports] == [new.id, old.id]
    assert store.list_reports(user_id="u1", limit=1)[0].id == new.id


def test_list_reports_skips_malformed(store, make_report):
    make_report()
    with pytest.raises(MalformedReportError):
        store.create({"id": "bad", "latitude": 500.0})
    assert len(store.list_reports()) == 1


def test_update_resolution_is_conditional(store, make_report):
    report = make_report()
    store.update_resolution(report.id, {"status": "in_progress"}, expected_status="pending")

    with pytest.raises(ReportConflict):
        store.update_resolution(report.id, {"status": "duplicate"}, expected_status="pending")
    assert store.fetch(report.id).status.value == "in_progress"


def test_resolution_write_leaves_enrichment_untouched(store, make_report):
    report = make_report(ai_pipeline_status="processing")
    store.apply_enrichment(report.id, RESULT, expected_prior_status=PipelineStatus.PROCESSING)

    store.update_resolution(report.id, {"status": "in_progress"}, expected_status="pending")
    store.submit_feedback(report.id, True, "Clean now")

    updated = store.fetch(report.id)
    assert updated.enrichment_result() == RESULT
    assert updated.ai_pipeline_status == PipelineStatus.COMPLETED
    assert updated.citizen_verified is True
    assert updated.citizen_feedback == "Clean now"


def test_list_stale():
    clock_time = [datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)]
    store = InMemoryReportStore(clock=lambda: clock_time[0])

    stuck = store.create({"latitude": 18.0})
    failed = store.create({"latitude": 18.0, "ai_pipeline_status": "failed"})
    done = store.create({"latitude": 18.0, "ai_pipeline_status": "completed"})

    clock_time[0] += timedelta(minutes=30)
    fresh = store.create({"latitude": 18.0})

    cutoff = clock_time[0] - timedelta(minutes=15)
    stale_ids = {r.id for r in store.list_stale(cutoff)}

    assert stale_ids == {stuck.id, failed.id}
    assert done.id not in stale_ids
    assert fresh.id not in stale_ids


def test_ping(store, make_report):
    make_report()
    assert store.ping() == {"database": "memory", "connected": True, "reports_count": 1}
