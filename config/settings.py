"""
Mega OCR — Configuration
All secrets loaded from environment variables.
Copy .env.example → .env and fill in your credentials.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env before any os.getenv() calls in dataclass defaults
_ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(_ENV_PATH, override=True)


@dataclass
class PostgresConfig:
    host: str = os.getenv("POSTGRES_HOST", "localhost")
    port: int = int(os.getenv("POSTGRES_PORT", "5432"))
    database: str = os.getenv("POSTGRES_DB", "mega")
    user: str = os.getenv("POSTGRES_USER", "mega")
    password: str = os.getenv("POSTGRES_PASSWORD", "")
    sslmode: str = os.getenv("POSTGRES_SSLMODE", "prefer")

    @property
    def dsn_params(self) -> dict:
        """Return connection params dict for psycopg2."""
        params = {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.user,
            "password": self.password,
        }
        if self.sslmode and self.sslmode != "disable":
            params["sslmode"] = self.sslmode
        return params


@dataclass
class ClaudeConfig:
    api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    # Structured parsing of OCR text
    parsing_model: str = os.getenv("CARD_PARSING_MODEL", "claude-sonnet-4-5-20250929")
    # Only used when OCR_PROVIDER=claude
    vision_model: str = os.getenv("CARD_VISION_MODEL", "claude-sonnet-4-5-20250929")
    max_output_tokens: int = 2000
    request_timeout: float = float(os.getenv("CARD_PARSING_TIMEOUT", "10"))


@dataclass
class GoogleVisionConfig:
    api_key: str = os.getenv("GOOGLE_VISION_API_KEY", "")
    # Service-account JSON; used when no API key is set
    credentials_path: str = os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "")


@dataclass
class CardOcrConfig:
    # "google" (Cloud Vision text detection) or "claude" (vision transcription)
    ocr_provider: str = os.getenv("OCR_PROVIDER", "google").strip().lower()

    # Monthly quota on text-extraction units (1 per image side)
    monthly_unit_limit: int = int(os.getenv("OCR_MONTHLY_UNIT_LIMIT", "1000"))
    # Requests are blocked once prior usage reaches this, below the hard cap
    monthly_warning_threshold: int = int(os.getenv("OCR_MONTHLY_WARNING_THRESHOLD", "900"))
    # Per-requester sliding window
    hourly_limit_per_user: int = int(os.getenv("OCR_HOURLY_LIMIT_PER_USER", "10"))
    hourly_window_minutes: int = 60

    # Image validation
    max_image_bytes: int = 5 * 1024 * 1024  # 5 MB
    allowed_mime_types: List[str] = field(default_factory=lambda: [
        "image/jpeg", "image/jpg", "image/png",
    ])
    allowed_extensions: List[str] = field(default_factory=lambda: [
        ".jpg", ".jpeg", ".png",
    ])

    # Duplicate detection
    similarity_threshold: float = 0.85
    max_similar_companies: int = 3

    # Structured parsing retry (first attempt + one retry)
    parse_max_attempts: int = 2
    parse_backoff_seconds: float = 1.0

    default_country: str = os.getenv("CARD_DEFAULT_COUNTRY", "India")


@dataclass
class MegaConfig:
    postgres: PostgresConfig = field(default_factory=PostgresConfig)
    claude: ClaudeConfig = field(default_factory=ClaudeConfig)
    google_vision: GoogleVisionConfig = field(default_factory=GoogleVisionConfig)
    card_ocr: CardOcrConfig = field(default_factory=CardOcrConfig)
    debug: bool = os.getenv("MEGA_DEBUG", "false").lower() == "true"


# Global config instance
config = MegaConfig()
