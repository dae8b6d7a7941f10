"""Unit tests for OCR providers and front/back pairing."""
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from google.api_core import exceptions as google_exceptions

from conftest import FakeOcr
from tools.cards.errors import AUTH, NO_TEXT_FOUND, NOT_FOUND, QUOTA, UPSTREAM, ExtractionError
from tools.cards.extractors import (
    CardTextExtractor,
    ClaudeVisionTextExtractor,
    GoogleVisionTextExtractor,
    combine_card_texts,
)
from tools.cards.models import BACK, FRONT, CardImage


def test_combine_card_texts():
    assert combine_card_texts("ACME") == "Front: ACME"
    assert combine_card_texts("ACME", "   ") == "Front: ACME"
    assert combine_card_texts("ACME", "We sell steel") == "Front: ACME\n\nBack: We sell steel"


def test_missing_file_is_not_found(tmp_path):
    extractor = CardTextExtractor(FakeOcr({}))
    with pytest.raises(ExtractionError) as exc:
        extractor.extract_from_image(CardImage(path=tmp_path / "gone.jpg", side=FRONT))
    assert exc.value.reason == NOT_FOUND
    assert str(exc.value) == "Front image error: Image file not found"


def test_blank_text_is_no_text_found(card_files):
    front, _ = card_files
    extractor = CardTextExtractor(FakeOcr({"front.jpg": "  \n "}))
    with pytest.raises(ExtractionError) as exc:
        extractor.extract_from_image(CardImage.from_path(front))
    assert exc.value.reason == NO_TEXT_FOUND


def test_front_failure_aborts_pair(card_files):
    front, back = card_files
    ocr = FakeOcr({"front.jpg": ExtractionError(AUTH), "back.jpg": "text"})
    with pytest.raises(ExtractionError) as exc:
        CardTextExtractor(ocr).extract_from_card_pair(
            CardImage.from_path(front), CardImage.from_path(back, side=BACK))
    assert exc.value.side == FRONT
    assert ocr.calls == ["front.jpg"]


def test_back_failure_is_a_warning(card_files):
    front, back = card_files
    ocr = FakeOcr({"front.jpg": "ACME STEEL", "back.jpg": ExtractionError(QUOTA)})
    extracted = CardTextExtractor(ocr).extract_from_card_pair(
        CardImage.from_path(front), CardImage.from_path(back, side=BACK))
    assert extracted.front_text == "ACME STEEL"
    assert extracted.back_text == ""
    assert extracted.combined_text == "Front: ACME STEEL"
    assert extracted.warning.startswith("Warning: Back image - OCR API quota exceeded")


class TestGoogleVision(unittest.TestCase):

    def setUp(self):
        self.client = MagicMock()
        self.extractor = GoogleVisionTextExtractor(client=self.client)

    def _image(self):
        handle = tempfile.NamedTemporaryFile(suffix=".jpg", delete=False)
        handle.write(b"\xff\xd8jpeg")
        handle.close()
        self.addCleanup(Path(handle.name).unlink)
        return Path(handle.name)

    def test_returns_first_annotation(self):
        self.client.text_detection.return_value = SimpleNamespace(
            error=SimpleNamespace(message=""),
            text_annotations=[SimpleNamespace(description="ACME STEEL\nMumbai\n"),
                              SimpleNamespace(description="ACME")],
        )
        self.assertEqual(self.extractor.extract_text(self._image()), "ACME STEEL\nMumbai")

    def test_no_annotations_returns_empty(self):
        self.client.text_detection.return_value = SimpleNamespace(
            error=SimpleNamespace(message=""), text_annotations=[])
        self.assertEqual(self.extractor.extract_text(self._image()), "")

    def test_error_mapping(self):
        cases = [
            (google_exceptions.Unauthenticated("bad creds"), AUTH),
            (google_exceptions.ResourceExhausted("quota"), QUOTA),
            (google_exceptions.InvalidArgument("API key not valid"), AUTH),
            (google_exceptions.ServiceUnavailable("down"), UPSTREAM),
        ]
        for error, reason in cases:
            self.client.text_detection.side_effect = error
            with self.assertRaises(ExtractionError) as ctx:
                self.extractor.extract_text(self._image())
            self.assertEqual(ctx.exception.reason, reason)

    def test_response_error_is_upstream(self):
        self.client.text_detection.return_value = SimpleNamespace(
            error=SimpleNamespace(message="Bad image data"), text_annotations=[])
        with self.assertRaises(ExtractionError) as ctx:
            self.extractor.extract_text(self._image())
        self.assertIn("Bad image data", ctx.exception.message)


def test_claude_vision_sends_base64_image(card_files):
    front, _ = card_files
    client = MagicMock()
    client.messages.create.return_value = SimpleNamespace(
        content=[SimpleNamespace(type="text", text="ACME STEEL\n")])
    text = ClaudeVisionTextExtractor(client=client, model="test-model").extract_text(front)
    assert text == "ACME STEEL"
    content = client.messages.create.call_args.kwargs["messages"][0]["content"]
    assert content[0]["source"]["media_type"] == "image/jpeg"
