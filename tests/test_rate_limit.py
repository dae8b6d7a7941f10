"""Unit tests for the monthly / hourly extraction limits."""
import time
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, FakeLedger, minutes_ago
from tools.cards.rate_limit import RateLimiter, start_of_month, units_for_card


def _limiter(ledger):
    return RateLimiter(
        ledger,
        monthly_limit=1000,
        warning_threshold=900,
        hourly_limit=10,
        window_minutes=60,
        clock=lambda: NOW,
    )


# -------------------------------------------------------
# Monthly window
# -------------------------------------------------------

def test_monthly_899_allows_two_sided_card():
    # Checked against prior usage only; this request's 2 units are not counted
    decision = _limiter(FakeLedger(monthly_units=899)).check_all_limits("emp-1")
    assert decision.allowed
    assert decision.monthly.used == 899
    assert decision.monthly.remaining == 101


def test_monthly_900_blocks():
    decision = _limiter(FakeLedger(monthly_units=900)).check_all_limits("emp-1")
    assert not decision.allowed
    assert not decision.monthly.allowed
    assert decision.reason.startswith("Monthly OCR API limit reached")
    assert decision.monthly.percent == 90


def test_monthly_between_threshold_and_cap_blocks():
    decision = _limiter(FakeLedger(monthly_units=950)).check_monthly_limit()
    assert not decision.allowed
    assert decision.remaining == 50


@pytest.fixture
def server_tz(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset unavailable")

    def use(name):
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield use
    monkeypatch.undo()
    time.tzset()


def test_start_of_month():
    start = start_of_month(NOW)
    assert start == datetime(2026, 3, 1).astimezone()
    assert start.tzinfo is not None


def test_start_of_month_uses_offset_of_the_first(server_tz):
    server_tz("America/New_York")
    # DST began 2026-03-08; the 1st is still EST
    now = datetime(2026, 3, 15, 12, 0).astimezone()
    assert now.utcoffset() == timedelta(hours=-4)

    start = start_of_month(now)

    assert start.utcoffset() == timedelta(hours=-5)
    assert start == datetime(2026, 3, 1, 5, 0, tzinfo=timezone.utc)


def test_start_of_month_converts_to_server_time(server_tz):
    server_tz("Asia/Kolkata")
    # 20:00 UTC on the 31st is already the 1st in India
    start = start_of_month(datetime(2026, 3, 31, 20, 0, tzinfo=timezone.utc))
    assert start == datetime(2026, 3, 31, 18, 30, tzinfo=timezone.utc)


def test_units_for_card():
    assert units_for_card(True) == 2
    assert units_for_card(False) == 1


# -------------------------------------------------------
# Hourly window
# -------------------------------------------------------

def test_ten_prior_attempts_block_the_eleventh():
    ledger = FakeLedger(attempts=[minutes_ago(m) for m in range(5, 55, 5)])
    decision = _limiter(ledger).check_all_limits("emp-1")
    assert not decision.allowed
    assert decision.monthly.allowed
    assert decision.hourly.used == 10
    # Oldest attempt (50 min ago) ages out in 10 minutes
    assert decision.hourly.reset_at == NOW + timedelta(minutes=10)
    assert "hourly limit of 10 extractions" in decision.reason


def test_eleventh_allowed_once_oldest_ages_out():
    attempts = [minutes_ago(61)] + [minutes_ago(m) for m in range(5, 50, 5)]
    assert len(attempts) == 10
    decision = _limiter(FakeLedger(attempts=attempts)).check_all_limits("emp-1")
    assert decision.allowed
    assert decision.hourly.used == 9
    assert decision.hourly.remaining == 1


def test_hourly_no_attempts_resets_one_window_from_now():
    state = _limiter(FakeLedger()).check_hourly_limit("emp-1")
    assert state.allowed
    assert state.used == 0
    assert state.reset_at == NOW + timedelta(minutes=60)


# -------------------------------------------------------
# Fail-open
# -------------------------------------------------------

def test_ledger_failure_fails_open():
    decision = _limiter(FakeLedger(fail=True)).check_all_limits("emp-1")
    assert decision.allowed
    assert decision.monthly.used == 0
    assert decision.hourly.used == 0
    assert decision.monthly.message == "Unable to check usage limits"
    assert decision.hourly.message == "Unable to check rate limits"


def test_to_dict_is_json_safe():
    payload = _limiter(FakeLedger(monthly_units=10)).check_all_limits("emp-1").to_dict()
    assert payload["allowed"] is True
    assert isinstance(payload["hourly"]["reset_at"], str)
