"""tests/test_trigger_source.py — Trigger delivery and role checks"""
import requests

from app.models.report import PipelineStatus
from app.services import trigger_source as trigger_module
from app.services.access_policy import AccessPolicy, InMemoryRoleAssignmentRepository
from app.services.trigger_source import HttpTriggerSource, ThreadPoolTriggerSource, qualifies_for_enrichment


def test_qualifies_only_with_confidence(make_report):
    assert qualifies_for_enrichment(make_report()) is True
    assert qualifies_for_enrichment(make_report(ai_confidence=None)) is False


def test_thread_pool_source_runs_orchestrator(orchestrator, store, make_report):
    report = make_report()
    source = ThreadPoolTriggerSource(lambda: orchestrator, max_workers=2)

    source.emit(report.id)
    source.emit(report.id)  # duplicate delivery
    source.shutdown()

    assert store.fetch(report.id).ai_pipeline_status == PipelineStatus.COMPLETED


def test_thread_pool_source_swallows_errors():
    class ExplodingOrchestrator:
        def process(self, report_id):
            raise RuntimeError("boom")

    source = ThreadPoolTriggerSource(ExplodingOrchestrator, max_workers=1)
    source.emit("r1")
    source.shutdown()

    # Emitting after shutdown is logged, not raised
    source.emit("r2")


def test_http_source_posts_report_id(monkeypatch):
    calls = []

    class Response:
        status_code = 200

    def fake_post(url, json=None, headers=None, timeout=None):
        calls.append((url, json, headers, timeout))
        return Response()

    monkeypatch.setattr(trigger_module.requests, "post", fake_post)
    source = HttpTriggerSource(url="https://pipeline.test/pipeline/trigger", secret="s3cret", timeout=2)

    source.emit("abc")
    source._executor.shutdown(wait=True)

    assert calls == [(
        "https://pipeline.test/pipeline/trigger",
        {"report_id": "abc"},
        {"Content-Type": "application/json", "Authorization": "Bearer s3cret"},
        2,
    )]


def test_http_source_never_raises(monkeypatch):
    def failing_post(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(trigger_module.requests, "post", failing_post)
    source = HttpTriggerSource(url="https://pipeline.test/pipeline/trigger", secret="", timeout=1)
    source.emit("abc")
    source._executor.shutdown(wait=True)


def test_access_policy_roles():
    repository = InMemoryRoleAssignmentRepository({"alice": {"admin"}})
    policy = AccessPolicy(repository)

    assert policy.has_role("alice", "admin")
    assert not policy.has_role("bob", "admin")
    assert not policy.has_any_role(None, {"admin"})

    repository.assign("bob", "moderator")
    assert policy.has_any_role("bob", {"admin", "moderator"})
    assert not policy.has_role("bob", "admin")
