"""
Classifier Adapter

Wraps the external vision model behind a small contract:
classify(image) -> ClassificationResult, or raise ClassificationError.

Key principles:
- Category is always one of the nine known values ("other" as catch-all)
- No retries inside the adapter; the enrichment pipeline owns retry policy
"""

from app.services.classifier.base import ClassificationError, ClassifierProvider
from app.services.classifier.images import load_image, normalize_image
from app.services.classifier.registry import get_classifier

__all__ = [
    "ClassificationError",
    "ClassifierProvider",
    "get_classifier",
    "load_image",
    "normalize_image",
]
