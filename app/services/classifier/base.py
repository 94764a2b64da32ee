"""
Classifier Provider Base Interface.

Defines the contract for vision classifiers.
All classifier providers must implement this interface.
"""

from abc import ABC, abstractmethod
from typing import Dict, Union
import logging

from app.models.report import ClassificationResult

logger = logging.getLogger(__name__)

ImagePayload = Union[bytes, str]


class ClassificationError(Exception):
    """
    Raised when an image cannot be classified.

    Covers empty input, transport failures, non-200 replies and unparseable
    model output. Providers never retry; retry policy belongs to the caller.
    """


class ClassifierProvider(ABC):
    """
    Abstract base class for vision classifiers.

    Unlike advisory AI helpers, a classifier either returns a normalized
    ClassificationResult or raises ClassificationError. It never returns a
    partial or placeholder result.
    """

    @abstractmethod
    def is_enabled(self) -> bool:
        """
        Check if this provider is configured and ready.

        Returns:
            True if provider is enabled, False otherwise
        """
        pass

    @abstractmethod
    def get_model_info(self) -> Dict[str, str]:
        """
        Get model information (name, version).

        Returns:
            Dict with 'name' and 'version' keys
        """
        pass

    @abstractmethod
    def get_timeout_seconds(self) -> float:
        """Timeout applied to the outbound classification call."""
        pass

    @abstractmethod
    def classify(self, image: ImagePayload) -> ClassificationResult:
        """
        Classify a photo of a sanitation issue.

        Args:
            image: Raw image bytes, a data URI, or a bare base64 string (non-empty)

        Returns:
            ClassificationResult with a category from the closed enumeration

        Raises:
            ClassificationError: on empty input or any upstream failure
        """
        pass
