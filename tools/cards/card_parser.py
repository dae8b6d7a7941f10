"""Mega OCR — Structured parsing of business card text.

Sends the combined OCR text to a text-generation provider with a fixed
JSON-only prompt, validates the reply, and normalises it into a ParsedCard.

Retry policy: at most one retry (two attempts total), with a fixed 1s
backoff, for malformed/incomplete JSON or a transient provider error. The
retry re-issues the identical prompt. When every attempt fails, a
StructuringError carrying the raw text is raised so the caller can fall
back to manual entry.
"""
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import anthropic

from config.settings import config
from tools.cards.card_prompt import build_prompt
from tools.cards.errors import GenerationError, StructuringError
from tools.cards.models import (
    CLIENT_TYPES,
    CONFIDENCE_LEVELS,
    Address,
    Confidence,
    ContactPerson,
    ParsedCard,
    ParseResult,
)

logger = logging.getLogger("mega.cards.card_parser")

_NON_DIGITS = re.compile(r"\D")
_FENCE_OPEN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


# -------------------------------------------------------
# Provider
# -------------------------------------------------------

class TextGenerator(ABC):
    """Narrow generative capability: prompt in, free-form text out."""

    name = "base"

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """Return the model's reply.

        Raises:
            GenerationError: on provider failure (transient or not).
        """


class ClaudeTextGenerator(TextGenerator):
    """Claude Messages API."""

    name = "claude"

    def __init__(self, client=None, model: Optional[str] = None):
        self.client = client or anthropic.Anthropic(
            api_key=config.claude.api_key or None,
            timeout=config.claude.request_timeout,
        )
        self.model = model or config.claude.parsing_model

    def generate(self, prompt: str) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=config.claude.max_output_tokens,
                temperature=0.0,
                messages=[{"role": "user", "content": prompt}],
            )
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise GenerationError(f"Claude API credentials rejected: {e}", transient=False) from e
        except anthropic.RateLimitError as e:
            # Per-minute throttle
            raise GenerationError(f"Claude API rate limited: {e}", transient=True) from e
        except anthropic.APIConnectionError as e:
            # Also covers APITimeoutError
            raise GenerationError(f"Claude API unreachable: {e}", transient=True) from e
        except anthropic.APIStatusError as e:
            raise GenerationError(
                f"Claude API error {e.status_code}: {e}",
                transient=e.status_code >= 500,
            ) from e

        parts = [block.text for block in response.content if getattr(block, "type", "") == "text"]
        return "".join(parts)


# -------------------------------------------------------
# Retry policy
# -------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 2
    backoff_seconds: float = 1.0

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            max_attempts=config.card_ocr.parse_max_attempts,
            backoff_seconds=config.card_ocr.parse_backoff_seconds,
        )


def _is_transient(error: Exception) -> bool:
    if isinstance(error, GenerationError):
        return error.transient
    return isinstance(error, (ConnectionError, TimeoutError))


# -------------------------------------------------------
# Response handling
# -------------------------------------------------------

def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` markers even though the prompt forbids them."""
    cleaned = _FENCE_OPEN.sub("", text.strip())
    return cleaned.replace("```", "").strip()


def parse_response(response_text: str) -> dict:
    """Decode the model reply and check the required structure.

    Raises:
        StructuringError: malformed JSON, a missing or blank companyName,
            or a missing contactPersons list.
    """
    try:
        data = json.loads(strip_code_fences(response_text or ""))
    except json.JSONDecodeError as e:
        logger.warning("Card JSON decode failed: %s", e)
        raise StructuringError(
            "Failed to parse AI response as JSON. The AI may have returned malformed data."
        ) from e

    if (
        not isinstance(data, dict)
        or not str(data.get("companyName") or "").strip()
        or not isinstance(data.get("contactPersons"), list)
    ):
        raise StructuringError("Invalid data structure: missing required fields")
    return data


def clean_phone_number(phone) -> str:
    """Reduce a phone number to its national 10-digit form."""
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", str(phone))
    if len(digits) > 10 and digits.startswith("91"):
        digits = digits[2:]
    if len(digits) > 10:
        digits = digits[-10:]
    return digits


def clean_email(email) -> str:
    if not email:
        return ""
    return str(email).strip().lower()


def normalize_confidence(value) -> str:
    """Map to high/medium/low; anything else is low."""
    if not value or not isinstance(value, str):
        return "low"
    normalized = value.strip().lower()
    return normalized if normalized in CONFIDENCE_LEVELS else "low"


def normalize_client_type(value) -> str:
    if not value or not isinstance(value, str):
        return "both"
    normalized = value.strip().lower()
    return normalized if normalized in CLIENT_TYPES else "both"


def _text(value) -> str:
    return str(value).strip() if value else ""


def validate_and_clean(data: dict, default_country: Optional[str] = None) -> ParseResult:
    """Normalise a structurally valid reply into ParsedCard + Confidence."""
    country = default_country if default_country is not None else config.card_ocr.default_country

    contacts = []
    for raw in data.get("contactPersons") or []:
        if not isinstance(raw, dict):
            continue
        phone = clean_phone_number(raw.get("phone"))
        contacts.append(ContactPerson(
            name=_text(raw.get("name")),
            designation=_text(raw.get("designation")),
            phone=phone,
            email=clean_email(raw.get("email")),
            whatsapp_number=clean_phone_number(raw.get("whatsappNumber")) or phone,
            is_primary=bool(raw.get("isPrimary")),
        ))

    if not contacts:
        contacts.append(ContactPerson(is_primary=True))
    else:
        # Exactly one primary: the first contact
        for index, contact in enumerate(contacts):
            contact.is_primary = index == 0

    products = data.get("products")
    card = ParsedCard(
        company_name=_text(data.get("companyName")),
        business_type=_text(data.get("businessType")),
        client_type=normalize_client_type(data.get("clientType")),
        address=Address.from_dict(data.get("address"), default_country=country),
        company_website=_text(data.get("companyWebsite")),
        products=[_text(p) for p in products if _text(p)] if isinstance(products, list) else [],
        contact_persons=contacts,
        notes=_text(data.get("notes")),
    )

    raw_confidence = data.get("confidence") if isinstance(data.get("confidence"), dict) else {}
    confidence = Confidence(
        company_name=normalize_confidence(raw_confidence.get("companyName")),
        address=normalize_confidence(raw_confidence.get("address")),
        contact_persons=normalize_confidence(raw_confidence.get("contactPersons")),
        client_type=normalize_confidence(raw_confidence.get("clientType")),
        products=normalize_confidence(raw_confidence.get("products")),
    )
    return ParseResult(data=card, confidence=confidence)


# -------------------------------------------------------
# Parser
# -------------------------------------------------------

class CardParser:
    """Structures combined card text via a TextGenerator, with one bounded retry."""

    def __init__(
        self,
        generator: TextGenerator,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.generator = generator
        self.retry_policy = retry_policy or RetryPolicy.from_config()
        self._sleep = sleep

    def parse(self, combined_text: str) -> ParseResult:
        """Return the structured card or raise StructuringError(raw_text=combined_text)."""
        if not combined_text or not combined_text.strip():
            raise StructuringError("No text provided for parsing", raw_text=combined_text or "")

        prompt = build_prompt(combined_text, config.card_ocr.default_country)
        policy = self.retry_policy
        last_error = "Failed to parse business card text"

        for attempt in range(1, policy.max_attempts + 1):
            logger.info("Calling %s for card parsing (attempt %d/%d)",
                        self.generator.name, attempt, policy.max_attempts)
            try:
                reply = self.generator.generate(prompt)
                data = parse_response(reply)
            except StructuringError as e:
                last_error = e.message
                logger.warning("Parsing attempt %d failed: %s", attempt, e.message)
            except Exception as e:
                last_error = str(e) or type(e).__name__
                if not _is_transient(e):
                    logger.error("Non-retryable parsing error: %s", last_error)
                    raise StructuringError(last_error, raw_text=combined_text, attempts=attempt) from e
                logger.warning("Transient parsing error on attempt %d: %s", attempt, last_error)
            else:
                result = validate_and_clean(data)
                result.attempts = attempt
                logger.info("Business card parsed: %s", result.data.company_name)
                return result

            if attempt < policy.max_attempts:
                self._sleep(policy.backoff_seconds)

        logger.error("All %d parsing attempts failed", policy.max_attempts)
        raise StructuringError(last_error, raw_text=combined_text, attempts=policy.max_attempts)


def get_card_parser() -> CardParser:
    return CardParser(ClaudeTextGenerator())
