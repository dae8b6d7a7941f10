"""Mega OCR — Duplicate client detection.

Three independent signals for a freshly parsed card:
  1. exact match on the normalised company name
  2. similar company names (Levenshtein similarity >= 0.85, top 3),
     only when there is no exact match
  3. an existing contact sharing a phone, WhatsApp number or email

Detection is advisory: any internal failure degrades to empty signals.
"""
import logging
import re
from typing import List, Optional

from rapidfuzz.distance import Levenshtein

from config.settings import config
from tools.cards.models import (
    ClientRecord,
    DuplicateSignals,
    DuplicateWarning,
    ExistingContact,
    ParsedCard,
    SimilarCompany,
)

logger = logging.getLogger("mega.cards.dedup")

_LEGAL_SUFFIXES = re.compile(r"\b(pvt\.?|ltd\.?|limited|llp|inc\.?|corp\.?|co\.?)\b")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_WHITESPACE = re.compile(r"\s+")
_NON_DIGITS = re.compile(r"\D")


# -------------------------------------------------------
# Normalisation
# -------------------------------------------------------

def normalize_company_name(name) -> str:
    """Lowercase, drop legal suffixes and punctuation, collapse whitespace."""
    if not name:
        return ""
    text = str(name).lower().strip()
    text = _LEGAL_SUFFIXES.sub("", text)
    text = _NON_ALNUM.sub("", text)
    # Stripping punctuation can expose a suffix ("c.o." -> "co"); one more pass
    # on the alphanumeric form makes the result a fixed point.
    text = _LEGAL_SUFFIXES.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_phone(phone) -> str:
    """Trailing 10 digits, leading 91 country code stripped; '' if too short."""
    if not phone:
        return ""
    digits = _NON_DIGITS.sub("", str(phone))
    if len(digits) > 10 and digits.startswith("91"):
        digits = digits[2:]
    if len(digits) > 10:
        digits = digits[-10:]
    return digits if len(digits) == 10 else ""


def normalize_email(email) -> str:
    if not email:
        return ""
    return str(email).strip().lower()


def calculate_similarity(a: str, b: str) -> float:
    """1 - levenshtein(a, b) / max(len(a), len(b)), in [0, 1]."""
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / max(len(a), len(b))


# -------------------------------------------------------
# Detector
# -------------------------------------------------------

class DuplicateDetector:
    """Checks a parsed card against the active client directory."""

    def __init__(self, directory=None, threshold: Optional[float] = None,
                 max_results: Optional[int] = None):
        settings = config.card_ocr
        self.directory = directory
        self.threshold = threshold if threshold is not None else settings.similarity_threshold
        self.max_results = max_results if max_results is not None else settings.max_similar_companies

    def find_exact_match(self, company_name: str, clients: List[ClientRecord]) -> Optional[ClientRecord]:
        target = normalize_company_name(company_name)
        if not target:
            return None
        for client in clients:
            if normalize_company_name(client.company_name) == target:
                return client
        return None

    def find_similar_companies(self, company_name: str,
                               clients: List[ClientRecord]) -> List[SimilarCompany]:
        target = normalize_company_name(company_name)
        scored = []
        for client in clients:
            candidate = normalize_company_name(client.company_name)
            if candidate == target:
                continue
            similarity = calculate_similarity(target, candidate)
            if similarity >= self.threshold:
                scored.append((similarity, client))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            SimilarCompany(client=client.ref(), similarity_percent=round(similarity * 100))
            for similarity, client in scored[: self.max_results]
        ]

    def find_existing_contact(self, contact_persons,
                              clients: List[ClientRecord]) -> Optional[ExistingContact]:
        """First stored contact whose phone, WhatsApp or email collides with the card."""
        if not contact_persons:
            return None

        phones = set()
        emails = set()
        for person in contact_persons:
            for number in (person.phone, person.whatsapp_number):
                normalized = normalize_phone(number)
                if normalized:
                    phones.add(normalized)
            email = normalize_email(person.email)
            if email:
                emails.add(email)

        if not phones and not emails:
            return None

        for client in clients:
            for contact in client.contact_persons:
                if contact.phone and normalize_phone(contact.phone) in phones:
                    match_type = "phone"
                elif contact.whatsapp_number and normalize_phone(contact.whatsapp_number) in phones:
                    match_type = "whatsapp"
                elif contact.email and normalize_email(contact.email) in emails:
                    match_type = "email"
                else:
                    continue
                return ExistingContact(client=client.ref(), matched_contact=contact, match_type=match_type)
        return None

    def detect(self, candidate: ParsedCard,
               clients: Optional[List[ClientRecord]] = None) -> DuplicateSignals:
        """All three signals; empty signals if anything goes wrong."""
        try:
            if clients is None:
                clients = self.directory.list_active_clients() if self.directory else []
            signals = DuplicateSignals()
            if not candidate.company_name or not clients:
                return signals

            exact = self.find_exact_match(candidate.company_name, clients)
            if exact is not None:
                signals.exact_match = exact.ref()
            else:
                signals.similar_companies = self.find_similar_companies(candidate.company_name, clients)
            signals.existing_contact = self.find_existing_contact(candidate.contact_persons, clients)
        except Exception as e:
            logger.error("Duplicate detection failed, continuing without it: %s", e)
            return DuplicateSignals()

        if not signals.is_empty:
            logger.info(
                "Duplicate signals for '%s': exact=%s similar=%d contact=%s",
                candidate.company_name,
                signals.exact_match is not None,
                len(signals.similar_companies),
                signals.existing_contact.match_type if signals.existing_contact else None,
            )
        return signals

    @staticmethod
    def requires_override(signals: DuplicateSignals) -> bool:
        return not signals.is_empty

    @staticmethod
    def generate_warnings(signals: DuplicateSignals) -> List[DuplicateWarning]:
        warnings = []
        if signals.exact_match:
            warnings.append(DuplicateWarning(
                type="error",
                severity="high",
                message=(
                    f'A company with the name "{signals.exact_match.company_name}" '
                    "already exists in the system."
                ),
                client=signals.exact_match,
            ))
        for similar in signals.similar_companies:
            warnings.append(DuplicateWarning(
                type="warning",
                severity="medium",
                message=(
                    f'Similar company found: "{similar.client.company_name}" '
                    f"({similar.similarity_percent}% match)"
                ),
                client=similar.client,
            ))
        if signals.existing_contact:
            existing = signals.existing_contact
            warnings.append(DuplicateWarning(
                type="warning",
                severity="medium",
                message=(
                    f'This {existing.match_type} already exists under '
                    f'"{existing.client.company_name}" (Contact: {existing.matched_contact.name})'
                ),
                client=existing.client,
            ))
        return warnings
