"""
Image payload helpers for the classifier.

Normalizes the accepted payload shapes into a data URI and loads a stored
before-image reference when the pipeline has to classify after the fact.
"""

from typing import Optional
import base64
import binascii
import logging

import requests

from app.core.settings import settings
from app.services.classifier.base import ClassificationError, ImagePayload

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


def normalize_image(image: ImagePayload, mime_type: str = DEFAULT_MIME_TYPE) -> str:
    """
    Convert an image payload to a data URI.

    Accepts raw bytes, an existing data URI, or a bare base64 string.

    Raises:
        ClassificationError: if the payload is empty or not valid base64
    """
    if image is None:
        raise ClassificationError("Image data required")

    if isinstance(image, (bytes, bytearray)):
        if not image:
            raise ClassificationError("Image data required")
        encoded = base64.b64encode(bytes(image)).decode("ascii")
        return f"data:{mime_type};base64,{encoded}"

    text = str(image).strip()
    if not text:
        raise ClassificationError("Image data required")
    if text.startswith("data:"):
        return text

    try:
        base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise ClassificationError("Image payload is neither a data URI nor valid base64")
    return f"data:{mime_type};base64,{text}"


def load_image(reference: Optional[str], timeout: Optional[float] = None) -> ImagePayload:
    """
    Resolve a stored image reference into a classifiable payload.

    Data URIs pass through unchanged; http(s) URLs are downloaded.

    Raises:
        ClassificationError: missing reference, unsupported scheme or download failure
    """
    if not reference or not reference.strip():
        raise ClassificationError("Report has no before image to classify")

    reference = reference.strip()
    if reference.startswith("data:"):
        return reference

    if not reference.startswith(("http://", "https://")):
        raise ClassificationError(f"Unsupported image reference: {reference[:40]}")

    timeout = timeout if timeout is not None else settings.IMAGE_FETCH_TIMEOUT_SECONDS
    try:
        response = requests.get(reference, timeout=timeout)
    except requests.RequestException as e:
        raise ClassificationError(f"Failed to download image: {e}")

    if response.status_code != 200:
        raise ClassificationError(f"Image download returned status {response.status_code}")
    if not response.content:
        raise ClassificationError("Image download returned an empty body")

    logger.debug(f"Downloaded before image ({len(response.content)} bytes)")
    return response.content
