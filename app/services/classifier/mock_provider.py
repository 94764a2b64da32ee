"""
Mock Classifier Provider - offline fallback when AI is disabled.

Makes no external calls and always classifies as "other" with medium
confidence, so reports still flow through the pipeline in local development.
"""

from typing import Dict
import logging

from app.models.report import ClassificationResult, IssueCategory
from app.services.classifier.base import ClassifierProvider, ImagePayload
from app.services.classifier.images import normalize_image

logger = logging.getLogger(__name__)


class MockClassifierProvider(ClassifierProvider):

    MODEL_NAME = "mock-classifier-v1"
    MODEL_VERSION = "1.0.0"
    TIMEOUT_SECONDS = 0.1  # no network call
    CONFIDENCE = 0.5

    def __init__(self):
        logger.info(f"✅ Mock classifier initialized: {self.MODEL_NAME}")

    def is_enabled(self) -> bool:
        return True

    def get_model_info(self) -> Dict[str, str]:
        return {"name": self.MODEL_NAME, "version": self.MODEL_VERSION}

    def get_timeout_seconds(self) -> float:
        return self.TIMEOUT_SECONDS

    def classify(self, image: ImagePayload) -> ClassificationResult:
        # Same input contract as the real provider: empty payloads fail
        normalize_image(image)
        return ClassificationResult(
            category=IssueCategory.OTHER,
            confidence=self.CONFIDENCE,
            description="Automatic classification unavailable (AI disabled)",
        )
