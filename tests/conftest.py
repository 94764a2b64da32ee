"""
tests/conftest.py — pytest fixtures for the report enrichment pipeline
"""
import os

# Must be set before app.core.settings is imported anywhere
os.environ["USE_MOCK_DB"] = "true"
os.environ["AI_ENABLED"] = "false"
os.environ.pop("TRIGGER_SECRET", None)

import threading

import pytest
from fastapi.testclient import TestClient

from app.main import app as fastapi_app
from app.models.report import ClassificationResult, IssueCategory
from app.services import access_policy, enrichment_orchestrator, report_store, trigger_source
from app.services.access_policy import AccessPolicy, InMemoryRoleAssignmentRepository
from app.services.classifier import registry as classifier_registry
from app.services.classifier.base import ClassifierProvider
from app.services.enrichment_orchestrator import EnrichmentOrchestrator
from app.services.report_store import InMemoryReportStore
from app.services.trigger_source import TriggerSource


IMAGE_DATA_URI = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQ=="


class FakeClassifier(ClassifierProvider):
    """Scriptable classifier: fixed result, optional error, optional hook run before returning."""

    def __init__(self, result=None, error=None, side_effect=None):
        self.result = result or ClassificationResult(
            category=IssueCategory.GARBAGE_DUMP, confidence=0.7, description="Pile of garbage"
        )
        self.error = error
        self.side_effect = side_effect
        self.calls = 0
        self._lock = threading.Lock()

    def is_enabled(self):
        return True

    def get_model_info(self):
        return {"name": "fake-classifier", "version": "test"}

    def get_timeout_seconds(self):
        return 1.0

    def classify(self, image):
        with self._lock:
            self.calls += 1
        if self.side_effect is not None:
            self.side_effect()
        if self.error is not None:
            raise self.error
        return self.result


class RecordingTriggerSource(TriggerSource):
    def __init__(self):
        self.emitted = []

    def emit(self, report_id):
        self.emitted.append(report_id)


@pytest.fixture()
def store():
    return InMemoryReportStore()


@pytest.fixture()
def make_report(store):
    """Insert a report; defaults describe a high-confidence burning garbage report in the north zone."""

    def _make(**overrides):
        data = {
            "category": "burning_garbage",
            "ai_confidence": 0.9,
            "ai_description": "Smoke from a burning pile",
            "latitude": 18.53,
            "longitude": 73.85,
            "address": "Shivajinagar, Pune",
            "before_image_url": IMAGE_DATA_URI,
            "status": "pending",
        }
        data.update(overrides)
        return store.create(data)

    return _make


@pytest.fixture()
def classifier():
    return FakeClassifier()


@pytest.fixture()
def orchestrator(store, classifier):
    return EnrichmentOrchestrator(store, classifier=classifier)


@pytest.fixture()
def recorded_triggers():
    return RecordingTriggerSource()


@pytest.fixture()
def client(monkeypatch, store, classifier, recorded_triggers):
    """Test client wired to the in-memory store and fakes."""
    roles = InMemoryRoleAssignmentRepository({"admin-1": {"admin"}, "mod-1": {"moderator"}})
    monkeypatch.setattr(report_store, "_store", store)
    monkeypatch.setattr(classifier_registry, "_classifier", classifier)
    monkeypatch.setattr(
        enrichment_orchestrator, "_orchestrator", EnrichmentOrchestrator(store, classifier=classifier)
    )
    monkeypatch.setattr(trigger_source, "_trigger_source", recorded_triggers)
    monkeypatch.setattr(access_policy, "_policy", AccessPolicy(roles))
    return TestClient(fastapi_app)


@pytest.fixture()
def staff_headers():
    return {"X-User-Id": "admin-1"}
