"""Mega OCR — Provider health check for the business card feature."""
import logging
from datetime import datetime, timezone
from typing import Optional

from config.settings import config
from tools.cards.errors import GenerationError

logger = logging.getLogger("mega.cards.health")


def _ocr_status() -> dict:
    provider = config.card_ocr.ocr_provider
    if provider == "claude":
        configured = bool(config.claude.api_key)
        missing = "ANTHROPIC_API_KEY not set"
    else:
        settings = config.google_vision
        configured = bool(settings.api_key or settings.credentials_path)
        missing = "GOOGLE_VISION_API_KEY / GOOGLE_APPLICATION_CREDENTIALS not set"
    return {
        "provider": provider,
        "status": "configured" if configured else "not_configured",
        "error": None if configured else missing,
    }


def _parsing_status(generator=None) -> dict:
    if not config.claude.api_key and generator is None:
        return {"status": "not_configured", "model": config.claude.parsing_model,
                "error": "ANTHROPIC_API_KEY not set"}
    if generator is None:
        return {"status": "configured", "model": config.claude.parsing_model, "error": None}

    # Live round trip
    try:
        generator.generate("Reply with the single word OK.")
    except GenerationError as e:
        logger.warning("Parsing provider check failed: %s", e.message)
        return {"status": "unhealthy", "model": config.claude.parsing_model, "error": e.message}
    return {"status": "healthy", "model": config.claude.parsing_model, "error": None}


def check_provider_health(generator: Optional[object] = None) -> dict:
    """Report whether OCR and parsing providers are usable.

    Without a generator only credentials are checked; pass a TextGenerator to
    also make one live parsing call.
    """
    ocr = _ocr_status()
    parsing = _parsing_status(generator)
    healthy = ocr["status"] == "configured" and parsing["status"] in ("configured", "healthy")
    overall = "healthy" if healthy else "degraded"
    if not healthy:
        logger.warning("Business card OCR degraded: ocr=%s parsing=%s", ocr["status"], parsing["status"])
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "overall": overall,
        "apis": {"ocr": ocr, "parsing": parsing},
    }
