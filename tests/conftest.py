"""Shared fakes for the business card tests. No network, no database."""
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from tools.cards.errors import UsageLedgerError
from tools.cards.extractors import TextExtractor
from tools.cards.card_parser import TextGenerator

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

VALID_CARD_JSON = """{
  "companyName": "Sharma Textiles Pvt Ltd",
  "businessType": "Textile Manufacturer",
  "clientType": "Supplier",
  "address": {"street": "12 MG Road", "city": "Surat", "state": "Gujarat", "pincode": "395003"},
  "companyWebsite": "www.sharmatextiles.in",
  "products": ["Cotton fabric", "", "Silk"],
  "contactPersons": [
    {"name": "Ravi Sharma", "designation": "Director", "phone": "+91 98765-43210",
     "email": " Ravi@SharmaTextiles.in ", "isPrimary": true}
  ],
  "notes": "GST 24AAACS1234F1Z5",
  "confidence": {"companyName": "HIGH", "address": "medium", "contactPersons": "high",
                 "clientType": "unsure", "products": "low"}
}"""


class FakeLedger:
    """In-memory usage ledger."""

    def __init__(self, monthly_units=0, attempts=None, fail=False):
        self.monthly_units = monthly_units
        self.attempts = list(attempts or [])
        self.fail = fail
        self.records = []

    def log_usage(self, record):
        self.records.append(record)
        return True

    def monthly_usage(self, service_kind, since):
        if self.fail:
            raise UsageLedgerError("database is down")
        return {
            "total_units": self.monthly_units,
            "total_requests": self.monthly_units,
            "successful_requests": self.monthly_units,
            "failed_requests": 0,
        }

    def hourly_attempts(self, requester_id, service_kind, since):
        if self.fail:
            raise UsageLedgerError("database is down")
        return len([ts for ts in self.attempts if ts >= since])

    def oldest_attempt_since(self, requester_id, service_kind, since):
        in_window = [ts for ts in self.attempts if ts >= since]
        return min(in_window) if in_window else None


class FakeOcr(TextExtractor):
    """Returns canned text per file name; values that are exceptions get raised."""

    name = "fake-ocr"

    def __init__(self, texts):
        self.texts = texts
        self.calls = []

    def extract_text(self, image_path):
        self.calls.append(image_path.name)
        value = self.texts.get(image_path.name, "")
        if isinstance(value, Exception):
            raise value
        return value


class FakeGenerator(TextGenerator):
    """Replays a scripted list of replies; exceptions in the list get raised."""

    name = "fake-llm"

    def __init__(self, replies):
        self.replies = list(replies)
        self.prompts = []

    def generate(self, prompt):
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeDirectory:
    def __init__(self, clients=None, error=None):
        self.clients = clients or []
        self.error = error

    def list_active_clients(self):
        if self.error:
            raise self.error
        return self.clients


def minutes_ago(n):
    return NOW - timedelta(minutes=n)


@pytest.fixture
def card_files(tmp_path):
    """Front/back JPEGs on disk, standing in for uploaded temp files."""
    front = tmp_path / "front.jpg"
    back = tmp_path / "back.jpg"
    front.write_bytes(b"\xff\xd8\xff\xe0front")
    back.write_bytes(b"\xff\xd8\xff\xe0back")
    return front, back
