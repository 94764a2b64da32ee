"""
Classifier Registry.

Selects the vision classifier from configuration. A failing real provider
never falls back to the mock one: a failed classification surfaces as a
failed enrichment, not as "other".
"""

from typing import Optional
import logging

from app.core.settings import settings
from app.services.classifier.base import ClassifierProvider
from app.services.classifier.mock_provider import MockClassifierProvider
from app.services.classifier.openai_provider import OpenAIVisionProvider

logger = logging.getLogger(__name__)


def build_classifier() -> ClassifierProvider:
    """Create the provider named by AI_ENABLED / AI_PROVIDER."""
    if not settings.AI_ENABLED:
        logger.info("⚠️ AI is disabled globally (AI_ENABLED=false), using mock classifier")
        return MockClassifierProvider()

    provider_name = settings.AI_PROVIDER.lower()
    if provider_name == "mock":
        return MockClassifierProvider()

    if provider_name == "openai":
        provider = OpenAIVisionProvider(base_url="https://api.openai.com/v1")
    elif provider_name == "openrouter":
        provider = OpenAIVisionProvider()
    else:
        raise ValueError(f"Unknown AI_PROVIDER: {settings.AI_PROVIDER}")

    if not provider.is_enabled():
        # Registered anyway; classify() raises ClassificationError until a key is set
        logger.warning(f"⚠️ {provider_name} classifier registered without an API key")
    return provider


# Global classifier instance (singleton)
_classifier: Optional[ClassifierProvider] = None


def get_classifier() -> ClassifierProvider:
    global _classifier
    if _classifier is None:
        _classifier = build_classifier()
    return _classifier
