"""Validation and inline encoding of receipt images for the model call."""
import base64
import logging

from models.expense import ImagePayload
from utils.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/jpg"})
MAX_IMAGE_BYTES = 5 * 1024 * 1024  # 5 MiB


def normalize_mime_type(mime_type: str) -> str:
    """'Image/PNG; charset=binary' -> 'image/png'"""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def encode_image(data: bytes, mime_type: str) -> ImagePayload:
    """
    Validates an uploaded image and returns it base64-encoded with its MIME type.
    The type is checked before the size.
    """
    normalized_type = normalize_mime_type(mime_type)
    if normalized_type not in ALLOWED_MIME_TYPES:
        logger.warning(f"Rejected image with unsupported type: {mime_type!r}")
        raise ValidationError(
            f"Unsupported image type: {mime_type or 'unknown'}. Allowed types: {', '.join(sorted(ALLOWED_MIME_TYPES))}.",
            constraint="type",
        )

    if not data:
        raise ValidationError("Image is empty.", constraint="empty")

    if len(data) > MAX_IMAGE_BYTES:
        logger.warning(f"Rejected image of {len(data)} bytes (limit {MAX_IMAGE_BYTES}).")
        raise ValidationError(
            f"Image size {len(data)} bytes exceeds the {MAX_IMAGE_BYTES // (1024 * 1024)} MB limit.",
            constraint="size",
        )

    encoded = base64.b64encode(data).decode("ascii")
    return ImagePayload(data=encoded, mime_type=normalized_type)
