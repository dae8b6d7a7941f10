"""Mega OCR — Business card data models."""
import mimetypes
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

FRONT = "front"
BACK = "back"

# Service kinds recorded in the usage ledger
TEXT_EXTRACTION = "text-extraction"
STRUCTURED_PARSING = "structured-parsing"

CONFIDENCE_LEVELS = ("high", "medium", "low")
CLIENT_TYPES = ("supplier", "buyer", "both")


def _pick(data: dict, *keys, default=""):
    """First non-None value among keys (accepts snake_case and camelCase)."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


@dataclass
class CardImage:
    """An uploaded card image on local/temp storage."""
    path: Path
    side: str = FRONT
    size_bytes: int = 0
    mime_type: str = ""
    filename: str = ""

    @classmethod
    def from_path(cls, path, side: str = FRONT, mime_type: Optional[str] = None) -> "CardImage":
        path = Path(path)
        size = path.stat().st_size if path.exists() else 0
        if not mime_type:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(path=path, side=side, size_bytes=size, mime_type=mime_type, filename=path.name)


@dataclass(frozen=True)
class ExtractedText:
    front_text: str
    back_text: str = ""
    combined_text: str = ""
    warning: Optional[str] = None


@dataclass
class Address:
    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict], default_country: str = "") -> "Address":
        data = data if isinstance(data, dict) else {}
        return cls(
            street=str(data.get("street") or ""),
            city=str(data.get("city") or ""),
            state=str(data.get("state") or ""),
            pincode=str(data.get("pincode") or ""),
            country=str(data.get("country") or default_country),
        )


@dataclass
class ContactPerson:
    name: str = ""
    designation: str = ""
    phone: str = ""
    email: str = ""
    whatsapp_number: str = ""
    is_primary: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ContactPerson":
        return cls(
            name=str(_pick(data, "name")),
            designation=str(_pick(data, "designation")),
            phone=str(_pick(data, "phone")),
            email=str(_pick(data, "email")),
            whatsapp_number=str(_pick(data, "whatsapp_number", "whatsappNumber")),
            is_primary=bool(_pick(data, "is_primary", "isPrimary", default=False)),
        )


@dataclass
class Confidence:
    company_name: str = "low"
    address: str = "low"
    contact_persons: str = "low"
    client_type: str = "low"
    products: str = "low"


@dataclass
class ParsedCard:
    company_name: str
    business_type: str = ""
    client_type: str = "both"
    address: Address = field(default_factory=Address)
    company_website: str = ""
    products: List[str] = field(default_factory=list)
    contact_persons: List[ContactPerson] = field(default_factory=list)
    notes: str = ""

    @property
    def primary_contact(self) -> Optional[ContactPerson]:
        for contact in self.contact_persons:
            if contact.is_primary:
                return contact
        return None


@dataclass
class ParseResult:
    data: ParsedCard
    confidence: Confidence
    attempts: int = 1


@dataclass
class ClientRecord:
    """An existing client, as read from the client directory."""
    id: str
    company_name: str
    business_type: str = ""
    address: Address = field(default_factory=Address)
    contact_persons: List[ContactPerson] = field(default_factory=list)

    def ref(self) -> "ClientRef":
        return ClientRef(
            id=self.id,
            company_name=self.company_name,
            business_type=self.business_type,
            address=self.address,
        )


@dataclass
class ClientRef:
    id: str
    company_name: str
    business_type: str = ""
    address: Address = field(default_factory=Address)


@dataclass
class SimilarCompany:
    client: ClientRef
    similarity_percent: int


@dataclass
class ExistingContact:
    client: ClientRef
    matched_contact: ContactPerson
    match_type: str  # phone | whatsapp | email


@dataclass
class DuplicateSignals:
    exact_match: Optional[ClientRef] = None
    similar_companies: List[SimilarCompany] = field(default_factory=list)
    existing_contact: Optional[ExistingContact] = None

    @property
    def is_empty(self) -> bool:
        return not (self.exact_match or self.similar_companies or self.existing_contact)


@dataclass
class DuplicateWarning:
    type: str       # error | warning
    severity: str   # high | medium
    message: str
    client: Optional[ClientRef] = None


@dataclass
class UsageRecord:
    """One external API call attempt. Append-only."""
    requester_id: str
    service_kind: str
    operation: str = "business-card-extraction"
    units_used: int = 1
    success: bool = True
    error_message: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    ip_address: str = ""
    created_at: Optional[datetime] = None


@dataclass
class WindowState:
    allowed: bool
    used: int
    limit: int
    remaining: int
    percent: Optional[int] = None
    warning_threshold: Optional[int] = None
    reset_at: Optional[datetime] = None
    message: str = ""


@dataclass
class RateLimitDecision:
    allowed: bool
    monthly: WindowState
    hourly: WindowState
    reason: str = ""

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass
class ExtractionResult:
    success: bool
    status: str
    message: str = ""
    suggestion: Optional[str] = None
    data: Optional[ParsedCard] = None
    confidence: Optional[Confidence] = None
    duplicates: Optional[DuplicateSignals] = None
    requires_override: bool = False
    warnings: List[DuplicateWarning] = field(default_factory=list)
    raw_text: Optional[Dict[str, str]] = None
    rate_limit: Optional[RateLimitDecision] = None
    notices: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    processing_time_ms: Optional[int] = None

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


def _jsonable(value):
    """Recursively convert datetimes/paths so the dict can be json.dumps'd."""
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return value
