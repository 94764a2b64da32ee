"""
OpenAI-compatible vision provider.

Calls a chat-completions endpoint (OpenRouter by default, or OpenAI directly)
with the photo attached as an image_url data URI and parses the JSON reply.
"""

from typing import Dict, Optional
import json
import logging

import requests

from app.core.settings import settings
from app.models.report import ClassificationResult, IssueCategory
from app.services.classifier.base import ClassificationError, ClassifierProvider, ImagePayload
from app.services.classifier.images import normalize_image

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an AI assistant for a civic issue reporting system in Pune, India.
Analyze the image and identify the type of urban sanitation/cleanliness issue.

You MUST respond with a JSON object containing:
- category: One of: garbage_dump, dustbin_not_cleaned, burning_garbage, open_manhole, stagnant_water, dead_animal, sewage_overflow, sweeping_not_done, other
- confidence: A number between 0 and 1 indicating how confident you are
- description: A brief description of the issue (max 100 words)

Category definitions:
- garbage_dump: Pile of trash/garbage on streets or public areas
- dustbin_not_cleaned: Overflowing or uncleaned public dustbins
- burning_garbage: Smoke or fire from burning waste
- open_manhole: Uncovered manholes or drainage openings
- stagnant_water: Stagnant/dirty water accumulation
- dead_animal: Dead animal carcass on public property
- sewage_overflow: Sewage or drain overflow
- sweeping_not_done: Unswept streets with leaves/dust
- other: Any other cleanliness issue

IMPORTANT: Respond ONLY with valid JSON, no markdown, no extra text."""

USER_PROMPT = "Analyze this image and identify the civic/sanitation issue. Respond with JSON only."


class OpenAIVisionProvider(ClassifierProvider):
    """
    Vision classifier over an OpenAI-compatible HTTP API.

    Requires one of OPENROUTER_API_KEY / OPENAI_API_KEY / GEMINI_API_KEY.
    """

    MODEL_VERSION = "1.0"
    DEFAULT_CONFIDENCE = 0.5
    DEFAULT_DESCRIPTION = "Issue detected"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.vision_api_key
        self.base_url = (base_url or settings.AI_BASE_URL).rstrip("/")
        self.model = model or settings.AI_VISION_MODEL
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.AI_TIMEOUT_SECONDS
        self.enabled = bool(self.api_key and self.api_key.strip())

        if self.enabled:
            logger.info(f"✅ Vision provider initialized: {self.model} via {self.base_url}")
        else:
            logger.info("⚠️ Vision provider disabled: No API key configured")

    def is_enabled(self) -> bool:
        return self.enabled

    def get_model_info(self) -> Dict[str, str]:
        return {"name": self.model, "version": self.MODEL_VERSION}

    def get_timeout_seconds(self) -> float:
        return self.timeout_seconds

    def classify(self, image: ImagePayload) -> ClassificationResult:
        if not self.enabled:
            raise ClassificationError("Missing AI API Key")

        data_uri = normalize_image(image)
        text = self._call_api(data_uri)
        return self._parse_response(text)

    def _call_api(self, data_uri: str) -> str:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": USER_PROMPT},
                        {"type": "image_url", "image_url": {"url": data_uri}},
                    ],
                },
            ],
        }

        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.timeout_seconds)
        except requests.Timeout:
            raise ClassificationError(f"Vision API timed out after {self.timeout_seconds}s")
        except requests.RequestException as e:
            raise ClassificationError(f"Vision API request failed: {e}")

        if response.status_code != 200:
            raise ClassificationError(f"Vision API returned status {response.status_code}: {response.text[:200]}")

        try:
            data = response.json()
            return data.get("choices", [{}])[0].get("message", {}).get("content", "") or "{}"
        except (ValueError, AttributeError, IndexError) as e:
            raise ClassificationError(f"Vision API returned an unexpected body: {e}")

    def _parse_response(self, text: str) -> ClassificationResult:
        """
        Parse the model reply.

        Unknown categories become "other" with the confidence left as reported.
        """
        cleaned = text.replace("```json", "").replace("```", "").strip()
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logger.debug(f"Unparseable vision reply: {text[:200]}")
            raise ClassificationError(f"Failed to parse vision response: {e}")

        if not isinstance(parsed, dict):
            raise ClassificationError("Vision response is not a JSON object")

        raw_category = parsed.get("category")
        category = IssueCategory.normalize(raw_category)
        if category == IssueCategory.OTHER and raw_category not in (None, "other"):
            logger.info(f"Unrecognized category '{raw_category}' mapped to 'other'")

        raw_confidence = parsed.get("confidence")
        try:
            confidence = float(raw_confidence) if raw_confidence is not None else self.DEFAULT_CONFIDENCE
        except (TypeError, ValueError):
            confidence = self.DEFAULT_CONFIDENCE
        if confidence != confidence:  # NaN
            confidence = self.DEFAULT_CONFIDENCE
        confidence = min(1.0, max(0.0, confidence))

        description = str(parsed.get("description") or self.DEFAULT_DESCRIPTION).strip()

        return ClassificationResult(category=category, confidence=confidence, description=description)
