"""tests/test_classifier.py — Vision classifier adapter"""
import base64
import json

import pytest
import requests

from app.models.report import IssueCategory
from app.services.classifier import ClassificationError, load_image, normalize_image
from app.services.classifier import images as images_module
from app.services.classifier import openai_provider
from app.services.classifier.mock_provider import MockClassifierProvider
from app.services.classifier.openai_provider import OpenAIVisionProvider


JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"
JPEG_B64 = base64.b64encode(JPEG_BYTES).decode("ascii")


class FakeResponse:
    def __init__(self, status_code=200, body=None, content=b"", text=""):
        self.status_code = status_code
        self._body = body
        self.content = content
        self.text = text or json.dumps(body or {})

    def json(self):
        if self._body is None:
            raise ValueError("No JSON")
        return self._body


def _chat_reply(content):
    return FakeResponse(body={"choices": [{"message": {"content": content}}]})


@pytest.fixture()
def provider():
    return OpenAIVisionProvider(api_key="test-key", base_url="https://llm.test/v1", model="vision-test", timeout_seconds=3)


@pytest.fixture()
def captured_post(monkeypatch):
    """Replace requests.post in the provider module; returns the list of captured calls."""
    calls = []

    def install(response=None, error=None):
        def fake_post(url, headers=None, json=None, timeout=None):
            calls.append({"url": url, "headers": headers, "json": json, "timeout": timeout})
            if error is not None:
                raise error
            return response

        monkeypatch.setattr(openai_provider.requests, "post", fake_post)
        return calls

    return install


# ── Payload normalization ─────────────────────────────────────────────────────

def test_normalize_bytes():
    assert normalize_image(JPEG_BYTES) == f"data:image/jpeg;base64,{JPEG_B64}"


def test_normalize_bare_base64():
    assert normalize_image(JPEG_B64) == f"data:image/jpeg;base64,{JPEG_B64}"


def test_normalize_data_uri_passthrough():
    uri = f"data:image/png;base64,{JPEG_B64}"
    assert normalize_image(uri) == uri


@pytest.mark.parametrize("payload", [b"", "", "   ", None])
def test_normalize_empty_rejected(payload):
    with pytest.raises(ClassificationError, match="Image data required"):
        normalize_image(payload)


def test_normalize_invalid_base64_rejected():
    with pytest.raises(ClassificationError):
        normalize_image("not base64 at all!")


# ── Provider ──────────────────────────────────────────────────────────────────

def test_classify_parses_reply(provider, captured_post):
    calls = captured_post(_chat_reply('{"category": "open_manhole", "confidence": 0.92, "description": "Uncovered drain"}'))

    result = provider.classify(JPEG_BYTES)

    assert result.category == IssueCategory.OPEN_MANHOLE
    assert result.confidence == 0.92
    assert result.description == "Uncovered drain"

    call = calls[0]
    assert call["url"] == "https://llm.test/v1/chat/completions"
    assert call["headers"]["Authorization"] == "Bearer test-key"
    assert call["json"]["model"] == "vision-test"
    assert call["timeout"] == 3
    image_part = call["json"]["messages"][1]["content"][1]
    assert image_part["image_url"]["url"] == f"data:image/jpeg;base64,{JPEG_B64}"


def test_classify_strips_markdown_fences(provider, captured_post):
    captured_post(_chat_reply('```json\n{"category": "dead_animal", "confidence": 0.8}\n```'))
    result = provider.classify(JPEG_B64)
    assert result.category == IssueCategory.DEAD_ANIMAL
    assert result.description == "Issue detected"


def test_unknown_category_becomes_other_keeping_confidence(provider, captured_post):
    captured_post(_chat_reply('{"category": "pothole", "confidence": 0.77, "description": "Road damage"}'))
    result = provider.classify(JPEG_B64)
    assert result.category == IssueCategory.OTHER
    assert result.confidence == 0.77


@pytest.mark.parametrize("raw,expected", [(1.7, 1.0), (-0.2, 0.0), ("high", 0.5), (None, 0.5)])
def test_confidence_clamped_or_defaulted(provider, captured_post, raw, expected):
    captured_post(_chat_reply(json.dumps({"category": "garbage_dump", "confidence": raw})))
    assert provider.classify(JPEG_B64).confidence == expected


def test_unparseable_reply_is_an_error(provider, captured_post):
    captured_post(_chat_reply("I think this is garbage"))
    with pytest.raises(ClassificationError, match="parse"):
        provider.classify(JPEG_B64)


def test_http_error_status(provider, captured_post):
    captured_post(FakeResponse(status_code=429, text="rate limited"))
    with pytest.raises(ClassificationError, match="429"):
        provider.classify(JPEG_B64)


def test_timeout_is_an_error_and_not_retried(provider, captured_post):
    calls = captured_post(error=requests.Timeout("read timed out"))
    with pytest.raises(ClassificationError, match="timed out"):
        provider.classify(JPEG_B64)
    assert len(calls) == 1


def test_disabled_without_key(captured_post):
    calls = captured_post(_chat_reply("{}"))
    provider = OpenAIVisionProvider(api_key="", base_url="https://llm.test/v1")
    assert provider.is_enabled() is False
    with pytest.raises(ClassificationError, match="Missing AI API Key"):
        provider.classify(JPEG_B64)
    assert calls == []


def test_empty_image_rejected_before_network(provider, captured_post):
    calls = captured_post(_chat_reply("{}"))
    with pytest.raises(ClassificationError):
        provider.classify(b"")
    assert calls == []


def test_mock_provider():
    mock = MockClassifierProvider()
    result = mock.classify(JPEG_BYTES)
    assert result.category == IssueCategory.OTHER
    assert result.confidence == 0.5
    with pytest.raises(ClassificationError):
        mock.classify("")


# ── Stored image references ───────────────────────────────────────────────────

def test_load_image_data_uri():
    uri = f"data:image/jpeg;base64,{JPEG_B64}"
    assert load_image(uri) == uri


def test_load_image_downloads_http(monkeypatch):
    seen = {}

    def fake_get(url, timeout=None):
        seen["url"] = url
        seen["timeout"] = timeout
        return FakeResponse(content=JPEG_BYTES)

    monkeypatch.setattr(images_module.requests, "get", fake_get)

    assert load_image("https://cdn.test/before.jpg", timeout=2) == JPEG_BYTES
    assert seen == {"url": "https://cdn.test/before.jpg", "timeout": 2}


def test_load_image_download_failure(monkeypatch):
    monkeypatch.setattr(images_module.requests, "get", lambda url, timeout=None: FakeResponse(status_code=404))
    with pytest.raises(ClassificationError, match="404"):
        load_image("https://cdn.test/missing.jpg")


@pytest.mark.parametrize("reference", [None, "", "ftp://host/file.jpg", "reports/abc.jpg"])
def test_load_image_rejects_unusable_references(reference):
    with pytest.raises(ClassificationError):
        load_image(reference)
