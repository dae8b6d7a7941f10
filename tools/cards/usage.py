"""Mega OCR — Usage logging and statistics for business card extraction."""
import logging
from typing import Optional

from config.settings import config
from tools.cards.models import STRUCTURED_PARSING, TEXT_EXTRACTION, UsageRecord
from tools.cards.rate_limit import local_now, start_of_month, units_for_card

logger = logging.getLogger("mega.cards.usage")


def log_business_card_extraction(
    ledger,
    requester_id: str,
    success: bool,
    front_image_size: int,
    back_image_size: Optional[int] = None,
    processing_time_ms: Optional[int] = None,
    extracted_text_length: int = 0,
    company_name: str = "",
    error_message: str = "",
    ip_address: str = "",
    parsing_attempted: bool = True,
) -> None:
    """Write the usage rows for one card extraction.

    Text extraction is charged 2 units for a two-sided card, else 1. A
    structured-parsing row (unlimited tier, observability only) is written
    whenever the AI parser was actually called.
    """
    metadata = {
        "front_image_size": front_image_size,
        "back_image_size": back_image_size,
        "processing_time_ms": processing_time_ms,
        "extracted_text_length": extracted_text_length,
        "company_name": company_name,
    }
    ledger.log_usage(UsageRecord(
        requester_id=requester_id,
        service_kind=TEXT_EXTRACTION,
        operation="business-card-extraction",
        units_used=units_for_card(back_image_size is not None),
        success=success,
        error_message=error_message,
        metadata=metadata,
        ip_address=ip_address,
    ))

    if parsing_attempted:
        ledger.log_usage(UsageRecord(
            requester_id=requester_id,
            service_kind=STRUCTURED_PARSING,
            operation="ai-parsing",
            units_used=1,
            success=success,
            error_message=error_message,
            metadata={
                "extracted_text_length": extracted_text_length,
                "company_name": company_name,
            },
            ip_address=ip_address,
        ))


def _status_for(percent: int) -> str:
    if percent >= 90:
        return "critical"
    if percent >= 70:
        return "warning"
    return "healthy"


def get_usage_statistics(ledger, days: int = 30) -> Optional[dict]:
    """Monthly totals per service plus a daily breakdown, or None on failure."""
    limit = config.card_ocr.monthly_unit_limit
    try:
        month_start = start_of_month(local_now())
        extraction = ledger.monthly_usage(TEXT_EXTRACTION, month_start)
        parsing = ledger.monthly_usage(STRUCTURED_PARSING, month_start)
        daily = ledger.daily_breakdown(days)
    except Exception as e:
        logger.error("Failed to get usage statistics: %s", e)
        return None

    percent = round(extraction["total_units"] / limit * 100) if limit else 100
    return {
        TEXT_EXTRACTION: {
            **extraction,
            "limit": limit,
            "percentage": percent,
            "remaining": limit - extraction["total_units"],
            "status": _status_for(percent),
        },
        STRUCTURED_PARSING: {**parsing, "status": "unlimited"},
        "daily_breakdown": daily,
    }


def get_user_usage_stats(ledger, requester_id: str, days: int = 30) -> Optional[dict]:
    try:
        stats = ledger.user_stats(requester_id, days)
    except Exception as e:
        logger.error("Failed to get usage stats for %s: %s", requester_id, e)
        return None

    return {
        "period": f"Last {days} days",
        "stats": stats,
        "total_extractions": sum(
            s["total_requests"] for s in stats if s["service_kind"] == TEXT_EXTRACTION
        ),
    }
