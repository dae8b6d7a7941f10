"""Mega OCR — Card image validation and temp-file cleanup.

Only JPG/PNG up to 5 MB are accepted. Validation runs before any external
call so bad uploads never cost quota.
"""
import logging
from pathlib import Path
from typing import List, Optional

from config.settings import config
from tools.cards.errors import ImageValidationError
from tools.cards.models import CardImage

logger = logging.getLogger("mega.cards.images")


def validate_card_image(image: Optional[CardImage]) -> Optional[str]:
    """Return an error string for an invalid image, None when valid."""
    settings = config.card_ocr
    if image is None:
        return "No file provided"

    if image.size_bytes > settings.max_image_bytes:
        size_mb = image.size_bytes / (1024 * 1024)
        limit_mb = settings.max_image_bytes / (1024 * 1024)
        return f"File size exceeds {limit_mb:g}MB limit ({size_mb:.2f}MB)"

    if image.mime_type not in settings.allowed_mime_types:
        return (
            "Invalid file type. Only JPG and PNG images are allowed "
            f"(received: {image.mime_type or 'unknown'})"
        )

    name = image.filename or Path(image.path).name
    ext = Path(name).suffix.lower()
    if ext not in settings.allowed_extensions:
        return (
            "Invalid file extension. Only .jpg, .jpeg, and .png files are allowed "
            f"(received: {ext or 'none'})"
        )

    return None


def validate_card_images(front: Optional[CardImage], back: Optional[CardImage] = None) -> List[str]:
    """Validate a front (required) / back (optional) pair. Empty list means valid."""
    if front is None:
        return ["Front image is required"]

    errors = []
    front_error = validate_card_image(front)
    if front_error:
        errors.append(f"Front image: {front_error}")

    if back is not None:
        back_error = validate_card_image(back)
        if back_error:
            errors.append(f"Back image: {back_error}")

    return errors


def require_valid_card_images(front: Optional[CardImage], back: Optional[CardImage] = None) -> None:
    """Raise ImageValidationError listing every problem with the pair."""
    errors = validate_card_images(front, back)
    if errors:
        raise ImageValidationError(errors)


def delete_card_images(*images: Optional[CardImage]) -> None:
    """Best-effort removal of temp images. Never raises."""
    for image in images:
        if image is None:
            continue
        try:
            Path(image.path).unlink(missing_ok=True)
            logger.debug("Deleted temp image: %s", image.path)
        except OSError as e:
            logger.warning("Failed to delete temp image %s: %s", image.path, e)
