"""Mega OCR — Business card pipeline exceptions."""
from typing import List, Optional


class CardPipelineError(Exception):
    """Base error for the business card pipeline."""


class ImageValidationError(CardPipelineError):
    """One or more card images failed type/size checks."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid card image")


# Reasons surfaced by text extraction providers
NOT_FOUND = "not-found"
AUTH = "auth"
PERMISSION = "permission"
QUOTA = "quota"
NO_TEXT_FOUND = "no-text-found"
UPSTREAM = "upstream"

_REASON_MESSAGES = {
    NOT_FOUND: "Image file not found",
    AUTH: "Invalid API key. Please check your OCR provider credentials.",
    PERMISSION: "Permission denied. Please check your OCR provider project settings.",
    QUOTA: "OCR API quota exceeded. Please try again later or upgrade your plan.",
    NO_TEXT_FOUND: "No text found in image. Please ensure the image is clear and contains text.",
    UPSTREAM: "Failed to extract text from image",
}


class ExtractionError(CardPipelineError):
    """Text extraction failed for one image."""

    def __init__(self, reason: str, message: Optional[str] = None, side: Optional[str] = None):
        self.reason = reason
        self.message = message or _REASON_MESSAGES.get(reason, _REASON_MESSAGES[UPSTREAM])
        self.side = side
        super().__init__(self.message)

    def for_side(self, side: str) -> "ExtractionError":
        """Return a copy tagged with the card side it came from."""
        return ExtractionError(self.reason, self.message, side=side)

    def __str__(self) -> str:
        if self.side:
            return f"{self.side.capitalize()} image error: {self.message}"
        return self.message


class StructuringError(CardPipelineError):
    """AI structuring failed; carries the raw text so nothing is lost."""

    def __init__(self, message: str, raw_text: str = "", attempts: int = 0):
        self.message = message
        self.raw_text = raw_text
        self.attempts = attempts
        super().__init__(message)


class UsageLedgerError(CardPipelineError):
    """The usage ledger could not be read."""


class GenerationError(CardPipelineError):
    """The text-generation provider failed.

    `transient` marks network/service hiccups worth one retry; auth,
    permission and hard-quota failures are not transient.
    """

    def __init__(self, message: str, transient: bool = False):
        self.message = message
        self.transient = transient
        super().__init__(message)
