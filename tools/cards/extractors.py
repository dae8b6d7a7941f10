"""Mega OCR — Business card text extraction.

Providers implement a single method, extract_text(path) -> str, and map their
own failures to ExtractionError reasons (auth, permission, quota,
no-text-found, not-found). CardTextExtractor adds the front/back pairing:
the front side is mandatory, a failing back side only degrades the result.
"""
import base64
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import anthropic
from google.api_core import exceptions as google_exceptions
from google.cloud import vision

from config.settings import config
from tools.cards.errors import (
    AUTH,
    NO_TEXT_FOUND,
    NOT_FOUND,
    PERMISSION,
    QUOTA,
    UPSTREAM,
    ExtractionError,
)
from tools.cards.models import CardImage, ExtractedText

logger = logging.getLogger("mega.cards.extractors")


class TextExtractor(ABC):
    """Narrow OCR capability: one image in, plain text out."""

    name = "base"

    @abstractmethod
    def extract_text(self, image_path: Path) -> str:
        """Return the text found on the image (may be empty).

        Raises:
            ExtractionError: on provider failure.
        """


# -------------------------------------------------------
# Google Cloud Vision
# -------------------------------------------------------

class GoogleVisionTextExtractor(TextExtractor):
    """Text detection via Google Cloud Vision."""

    name = "google-vision"

    def __init__(self, client=None):
        if client is None:
            settings = config.google_vision
            client_options = {"api_key": settings.api_key} if settings.api_key else None
            client = vision.ImageAnnotatorClient(client_options=client_options)
        self.client = client

    def extract_text(self, image_path: Path) -> str:
        image = vision.Image(content=Path(image_path).read_bytes())
        try:
            response = self.client.text_detection(image=image)
        except google_exceptions.Unauthenticated as e:
            raise ExtractionError(AUTH) from e
        except google_exceptions.PermissionDenied as e:
            raise ExtractionError(PERMISSION) from e
        except google_exceptions.ResourceExhausted as e:
            raise ExtractionError(QUOTA) from e
        except google_exceptions.InvalidArgument as e:
            # Vision reports a bad/missing API key as INVALID_ARGUMENT
            if "api key" in str(e).lower():
                raise ExtractionError(AUTH) from e
            raise ExtractionError(UPSTREAM, str(e)) from e
        except google_exceptions.GoogleAPIError as e:
            raise ExtractionError(UPSTREAM, str(e) or None) from e

        if response.error.message:
            raise ExtractionError(UPSTREAM, f"Google Vision API error: {response.error.message}")

        annotations = response.text_annotations
        if not annotations:
            return ""
        # First annotation holds the full detected text
        return (annotations[0].description or "").strip()


# -------------------------------------------------------
# Claude Vision
# -------------------------------------------------------

_TRANSCRIBE_PROMPT = """You are a precise OCR engine. This image is a business card.

Transcribe ALL visible text exactly as printed, one line per printed line.

Rules:
- Do not summarise, translate, reorder or correct anything.
- Do not add labels, commentary or markdown.
- If the image contains no readable text, return an empty response."""

_IMAGE_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}


class ClaudeVisionTextExtractor(TextExtractor):
    """Verbatim transcription via Claude's vision input."""

    name = "claude-vision"

    def __init__(self, client=None, model: Optional[str] = None):
        self.client = client or anthropic.Anthropic(api_key=config.claude.api_key or None)
        self.model = model or config.claude.vision_model

    def extract_text(self, image_path: Path) -> str:
        image_path = Path(image_path)
        mime = _IMAGE_MIME.get(image_path.suffix.lower(), "image/jpeg")
        b64 = base64.standard_b64encode(image_path.read_bytes()).decode("utf-8")
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=config.claude.max_output_tokens,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": mime,
                                    "data": b64,
                                },
                            },
                            {"type": "text", "text": _TRANSCRIBE_PROMPT},
                        ],
                    }
                ],
            )
        except anthropic.AuthenticationError as e:
            raise ExtractionError(AUTH) from e
        except anthropic.PermissionDeniedError as e:
            raise ExtractionError(PERMISSION) from e
        except anthropic.RateLimitError as e:
            raise ExtractionError(QUOTA) from e
        except anthropic.APIError as e:
            raise ExtractionError(UPSTREAM, str(e)) from e

        parts = [block.text for block in response.content if getattr(block, "type", "") == "text"]
        return "\n".join(parts).strip()


def get_text_extractor(provider: Optional[str] = None) -> TextExtractor:
    """Build the configured OCR provider (OCR_PROVIDER=google|claude)."""
    provider = (provider or config.card_ocr.ocr_provider).lower()
    if provider == "claude":
        return ClaudeVisionTextExtractor()
    if provider != "google":
        logger.warning("Unknown OCR provider '%s', using google", provider)
    return GoogleVisionTextExtractor()


# -------------------------------------------------------
# Front/back pairing
# -------------------------------------------------------

def combine_card_texts(front_text: str, back_text: str = "") -> str:
    """Deterministic combined text handed to the structuring step."""
    combined = f"Front: {front_text}"
    if back_text and back_text.strip():
        combined += f"\n\nBack: {back_text}"
    return combined


class CardTextExtractor:
    """Runs a TextExtractor over one business card (front + optional back)."""

    def __init__(self, provider: TextExtractor):
        self.provider = provider

    def extract_from_image(self, image: CardImage) -> str:
        """Extract text from one side. Raises ExtractionError on any failure."""
        path = Path(image.path)
        if not path.exists():
            raise ExtractionError(NOT_FOUND, side=image.side)

        try:
            text = self.provider.extract_text(path)
        except ExtractionError as e:
            raise e.for_side(image.side) from e
        except Exception as e:
            logger.error("%s OCR error on %s: %s", self.provider.name, path.name, e)
            raise ExtractionError(UPSTREAM, str(e) or None, side=image.side) from e

        if not text or not text.strip():
            raise ExtractionError(NO_TEXT_FOUND, side=image.side)
        return text.strip()

    def extract_from_card_pair(self, front: CardImage, back: Optional[CardImage] = None) -> ExtractedText:
        """Front failure aborts; back failure is logged and degrades to front-only."""
        front_text = self.extract_from_image(front)
        logger.info("Front side: extracted %d chars via %s", len(front_text), self.provider.name)

        back_text = ""
        warning = None
        if back is not None:
            try:
                back_text = self.extract_from_image(back)
                logger.info("Back side: extracted %d chars", len(back_text))
            except ExtractionError as e:
                warning = f"Warning: Back image - {e.message}"
                logger.warning("Back image extraction failed (continuing front-only): %s", e.message)

        return ExtractedText(
            front_text=front_text,
            back_text=back_text,
            combined_text=combine_card_texts(front_text, back_text),
            warning=warning,
        )

