"""
Mega OCR — Business card extraction pipeline
Validate -> rate limit -> OCR (front, optional back) -> AI structuring
-> duplicate detection -> usage logging -> temp image cleanup.

Every path, success or failure, deletes the uploaded images before
returning. Whenever OCR text was obtained, it is returned to the caller
(raw_text) even if AI structuring fails, so it can be typed in manually.
"""
import logging
import os
import time
from typing import Optional, Union

from tools.cards.errors import ExtractionError, ImageValidationError, StructuringError
from tools.cards.images import delete_card_images, require_valid_card_images
from tools.cards.models import BACK, FRONT, CardImage, ExtractionResult
from tools.cards.usage import log_business_card_extraction

logger = logging.getLogger("mega.cards.pipeline")

SUGGEST_VALID_IMAGE = "Upload a clear JPG or PNG image of the business card (max 5MB)."
SUGGEST_WAIT = "Please wait and try again later, or add the client manually."
SUGGEST_MANUAL_ENTRY = (
    "Please try again with a clearer image, or try manual entry to add the client."
)
SUGGEST_PARSE_FALLBACK = "AI parsing failed. You can use the extracted text for manual entry."

ImageInput = Union[CardImage, str, os.PathLike, None]


def _as_card_image(image, side: str) -> Optional[CardImage]:
    if image is None or isinstance(image, CardImage):
        return image
    if isinstance(image, (str, os.PathLike)):
        return CardImage.from_path(image, side=side)
    # Raw bytes/streams are staged to disk by the caller (see cli.stage_upload)
    raise ImageValidationError([
        f"{side.capitalize()} image: Unsupported input type ({type(image).__name__})"
    ])


class CardExtractionPipeline:
    """One business card in, one ExtractionResult out."""

    def __init__(self, text_extractor, parser, detector, limiter, ledger):
        self.text_extractor = text_extractor
        self.parser = parser
        self.detector = detector
        self.limiter = limiter
        self.ledger = ledger

    def extract_business_card(
        self,
        front: ImageInput,
        back: ImageInput = None,
        requester_id: str = "",
        ip_address: str = "",
    ) -> ExtractionResult:
        started = time.monotonic()
        front_image = back_image = None
        try:
            front_image = _as_card_image(front, FRONT)
            back_image = _as_card_image(back, BACK)
            return self._run(front_image, back_image, requester_id, ip_address, started)
        except ImageValidationError as e:
            logger.info("Rejected card upload from %s: %s", requester_id, e)
            return ExtractionResult(
                success=False,
                status="invalid_input",
                message=e.errors[0],
                suggestion=SUGGEST_VALID_IMAGE,
                errors=e.errors,
            )
        finally:
            delete_card_images(front_image, back_image)

    def _run(self, front, back, requester_id, ip_address, started) -> ExtractionResult:
        # 1. Validate before anything costs quota (raises ImageValidationError)
        require_valid_card_images(front, back)

        # 2. Rate limits (prior usage only)
        decision = self.limiter.check_all_limits(requester_id)
        if not decision.allowed:
            return ExtractionResult(
                success=False,
                status="rate_limited",
                message=decision.reason,
                suggestion=SUGGEST_WAIT,
                rate_limit=decision,
            )

        usage = dict(
            requester_id=requester_id,
            front_image_size=front.size_bytes,
            back_image_size=back.size_bytes if back is not None else None,
            ip_address=ip_address,
        )

        # 3. OCR
        try:
            extracted = self.text_extractor.extract_from_card_pair(front, back)
        except ExtractionError as e:
            logger.error("Text extraction failed for %s: %s", requester_id, e)
            log_business_card_extraction(
                self.ledger, success=False, error_message=str(e),
                processing_time_ms=_elapsed_ms(started), parsing_attempted=False, **usage,
            )
            return ExtractionResult(
                success=False,
                status="extraction_failed",
                message=str(e),
                suggestion=SUGGEST_MANUAL_ENTRY,
                rate_limit=decision,
                processing_time_ms=_elapsed_ms(started),
            )

        raw_text = {
            "front": extracted.front_text,
            "back": extracted.back_text,
            "combined": extracted.combined_text,
        }
        notices = [extracted.warning] if extracted.warning else []

        # 4. AI structuring
        try:
            parsed = self.parser.parse(extracted.combined_text)
        except StructuringError as e:
            logger.error("Card parsing failed for %s after %d attempt(s): %s",
                         requester_id, e.attempts, e.message)
            log_business_card_extraction(
                self.ledger, success=False, error_message=e.message,
                processing_time_ms=_elapsed_ms(started),
                extracted_text_length=len(extracted.combined_text), **usage,
            )
            return ExtractionResult(
                success=False,
                status="parsing_failed",
                message=e.message,
                suggestion=SUGGEST_PARSE_FALLBACK,
                raw_text=raw_text,
                rate_limit=decision,
                notices=notices,
                processing_time_ms=_elapsed_ms(started),
            )

        # 5. Duplicates (advisory, never raises)
        signals = self.detector.detect(parsed.data)

        elapsed = _elapsed_ms(started)
        log_business_card_extraction(
            self.ledger, success=True, processing_time_ms=elapsed,
            extracted_text_length=len(extracted.combined_text),
            company_name=parsed.data.company_name, **usage,
        )
        logger.info("Card extracted for %s: %s (%d ms)", requester_id, parsed.data.company_name, elapsed)

        return ExtractionResult(
            success=True,
            status="success",
            message="Business card extracted successfully",
            data=parsed.data,
            confidence=parsed.confidence,
            duplicates=signals,
            requires_override=self.detector.requires_override(signals),
            warnings=self.detector.generate_warnings(signals),
            raw_text=raw_text,
            rate_limit=decision,
            notices=notices,
            processing_time_ms=elapsed,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def build_pipeline(ocr_provider: Optional[str] = None) -> CardExtractionPipeline:
    """Wire the production providers, ledger and client directory."""
    from models.api_usage import UsageLedger
    from models.clients import ClientDirectory
    from tools.cards.card_parser import get_card_parser
    from tools.cards.dedup import DuplicateDetector
    from tools.cards.extractors import CardTextExtractor, get_text_extractor
    from tools.cards.rate_limit import RateLimiter

    ledger = UsageLedger()
    return CardExtractionPipeline(
        text_extractor=CardTextExtractor(get_text_extractor(ocr_provider)),
        parser=get_card_parser(),
        detector=DuplicateDetector(ClientDirectory()),
        limiter=RateLimiter(ledger),
        ledger=ledger,
    )
