"""Unit tests for the provider health check and the structuring prompt."""
from unittest.mock import MagicMock, patch

from tools.cards.card_prompt import build_prompt
from tools.cards.errors import GenerationError
from tools.cards.health import check_provider_health


def test_prompt_embeds_text_and_country():
    prompt = build_prompt("Front: ACME {STEEL}", "India")
    assert "Front: ACME {STEEL}" in prompt
    assert '"country": "India"' in prompt
    assert '"companyName": "string"' in prompt
    assert "NO markdown" in prompt


def test_prompt_is_deterministic():
    assert build_prompt("Front: ACME") == build_prompt("Front: ACME")


def _settings(provider="google", vision_key="", anthropic_key=""):
    settings = MagicMock()
    settings.card_ocr.ocr_provider = provider
    settings.google_vision.api_key = vision_key
    settings.google_vision.credentials_path = ""
    settings.claude.api_key = anthropic_key
    settings.claude.parsing_model = "test-model"
    return settings


def test_health_all_configured():
    with patch("tools.cards.health.config", _settings(vision_key="g", anthropic_key="a")):
        health = check_provider_health()
    assert health["overall"] == "healthy"
    assert health["apis"]["ocr"]["status"] == "configured"
    assert health["apis"]["parsing"]["status"] == "configured"


def test_health_degraded_without_keys():
    with patch("tools.cards.health.config", _settings()):
        health = check_provider_health()
    assert health["overall"] == "degraded"
    assert health["apis"]["ocr"]["error"]
    assert health["apis"]["parsing"]["status"] == "not_configured"


def test_health_claude_ocr_uses_anthropic_key():
    with patch("tools.cards.health.config", _settings(provider="claude", anthropic_key="a")):
        health = check_provider_health()
    assert health["apis"]["ocr"]["status"] == "configured"


def test_health_live_generator_failure():
    generator = MagicMock()
    generator.generate.side_effect = GenerationError("invalid x-api-key")
    with patch("tools.cards.health.config", _settings(vision_key="g", anthropic_key="a")):
        health = check_provider_health(generator)
    assert health["overall"] == "degraded"
    assert health["apis"]["parsing"]["status"] == "unhealthy"
