"""Mega OCR — Rate limiting for business card extraction.

Two independent windows, both read from the usage ledger before any
external call is made:

1. Global monthly quota on text-extraction units (calendar month,
   server-local time). Requests are blocked once prior usage reaches the
   warning threshold (900 of 1000 by default), not the hard cap.
2. Per-requester sliding hourly window on extraction attempts.

FAIL-OPEN POLICY: if the ledger cannot be read, the affected window reports
zero usage and allows the request. A persistence outage must not take the
feature down; strict quota enforcement is traded for availability here.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from config.settings import config
from tools.cards.models import TEXT_EXTRACTION, RateLimitDecision, WindowState

logger = logging.getLogger("mega.cards.rate_limit")


def local_now() -> datetime:
    return datetime.now().astimezone()


def start_of_month(now: datetime) -> datetime:
    """Server-local midnight on the 1st of `now`'s month.

    The offset is resolved for the 1st itself, so a DST change between the
    1st and `now` does not shift the boundary by an hour.
    """
    local = now.astimezone()
    first = local.replace(tzinfo=None, day=1, hour=0, minute=0, second=0, microsecond=0)
    return first.astimezone()


def units_for_card(has_back: bool) -> int:
    """Text-extraction units consumed by one card (1 per side)."""
    return 2 if has_back else 1


class RateLimiter:
    """Monthly + hourly gate in front of the extraction pipeline."""

    def __init__(
        self,
        ledger,
        monthly_limit: Optional[int] = None,
        warning_threshold: Optional[int] = None,
        hourly_limit: Optional[int] = None,
        window_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        settings = config.card_ocr
        self.ledger = ledger
        self.monthly_limit = monthly_limit if monthly_limit is not None else settings.monthly_unit_limit
        self.warning_threshold = (
            warning_threshold if warning_threshold is not None else settings.monthly_warning_threshold
        )
        self.hourly_limit = hourly_limit if hourly_limit is not None else settings.hourly_limit_per_user
        self.window = timedelta(
            minutes=window_minutes if window_minutes is not None else settings.hourly_window_minutes
        )
        self._clock = clock

    # -------------------------------------------------------
    # Monthly window
    # -------------------------------------------------------

    def check_monthly_limit(self) -> WindowState:
        now = self._clock()
        try:
            usage = self.ledger.monthly_usage(TEXT_EXTRACTION, start_of_month(now))
            used = int(usage["total_units"])
        except Exception as e:
            logger.warning("Monthly usage check failed, allowing request (fail-open): %s", e)
            return WindowState(
                allowed=True,
                used=0,
                limit=self.monthly_limit,
                remaining=self.monthly_limit,
                percent=0,
                warning_threshold=self.warning_threshold,
                message="Unable to check usage limits",
            )

        allowed = used < self.warning_threshold
        percent = round(used / self.monthly_limit * 100) if self.monthly_limit else 100
        if allowed:
            message = f"{used} / {self.monthly_limit} units used this month ({percent}%)"
        else:
            message = f"Monthly limit approaching: {used} / {self.monthly_limit} units used ({percent}%)"
        return WindowState(
            allowed=allowed,
            used=used,
            limit=self.monthly_limit,
            remaining=max(self.monthly_limit - used, 0),
            percent=percent,
            warning_threshold=self.warning_threshold,
            message=message,
        )

    # -------------------------------------------------------
    # Hourly window (sliding)
    # -------------------------------------------------------

    def check_hourly_limit(self, requester_id: str) -> WindowState:
        now = self._clock()
        since = now - self.window
        try:
            used = int(self.ledger.hourly_attempts(requester_id, TEXT_EXTRACTION, since))
            oldest = self.ledger.oldest_attempt_since(requester_id, TEXT_EXTRACTION, since) if used else None
        except Exception as e:
            logger.warning("Hourly usage check failed for %s, allowing request (fail-open): %s",
                           requester_id, e)
            return WindowState(
                allowed=True,
                used=0,
                limit=self.hourly_limit,
                remaining=self.hourly_limit,
                reset_at=now + self.window,
                message="Unable to check rate limits",
            )

        allowed = used < self.hourly_limit
        # The window frees a slot when its oldest attempt ages out
        reset_at = (oldest + self.window) if oldest else now + self.window
        if allowed:
            message = f"{used} / {self.hourly_limit} extractions used this hour"
        else:
            message = (
                f"Hourly limit reached: {used} / {self.hourly_limit} extractions. "
                f"Reset at {reset_at.astimezone().strftime('%H:%M:%S')}"
            )
        return WindowState(
            allowed=allowed,
            used=used,
            limit=self.hourly_limit,
            remaining=max(self.hourly_limit - used, 0),
            reset_at=reset_at,
            message=message,
        )

    # -------------------------------------------------------
    # Combined decision
    # -------------------------------------------------------

    def check_all_limits(self, requester_id: str) -> RateLimitDecision:
        """Evaluate both windows using prior usage only."""
        monthly = self.check_monthly_limit()
        hourly = self.check_hourly_limit(requester_id)

        reason = ""
        if not monthly.allowed:
            reason = (
                "Monthly OCR API limit reached. "
                "Please try again next month or upgrade your plan."
            )
        elif not hourly.allowed:
            reason = (
                f"You have reached your hourly limit of {hourly.limit} extractions. "
                f"Please try again after {hourly.reset_at.astimezone().strftime('%H:%M:%S')}."
            )

        decision = RateLimitDecision(
            allowed=monthly.allowed and hourly.allowed,
            monthly=monthly,
            hourly=hourly,
            reason=reason,
        )
        if not decision.allowed:
            logger.info("Extraction blocked for %s: %s", requester_id, reason)
        return decision
