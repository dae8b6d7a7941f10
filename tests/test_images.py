"""Unit tests for card image validation and cleanup."""
from pathlib import Path
from unittest.mock import patch

import pytest

from tools.cards.errors import ImageValidationError
from tools.cards.images import (
    delete_card_images,
    require_valid_card_images,
    validate_card_image,
    validate_card_images,
)
from tools.cards.models import BACK, FRONT, CardImage


def _image(name="card.jpg", mime="image/jpeg", size=1024, side=FRONT):
    return CardImage(path=Path("/tmp") / name, side=side, size_bytes=size,
                     mime_type=mime, filename=name)


def test_valid_images():
    assert validate_card_image(_image()) is None
    assert validate_card_image(_image("card.PNG", "image/png")) is None
    assert validate_card_image(_image("card.jpeg", "image/jpg")) is None


def test_size_checked_first():
    error = validate_card_image(_image("card.gif", "image/gif", size=6 * 1024 * 1024))
    assert error == "File size exceeds 5MB limit (6.00MB)"


def test_mime_type_rejected():
    assert validate_card_image(_image("card.jpg", "image/webp")).startswith("Invalid file type")


def test_extension_rejected():
    error = validate_card_image(_image("card.heic", "image/jpeg"))
    assert error == (
        "Invalid file extension. Only .jpg, .jpeg, and .png files are allowed (received: .heic)"
    )


def test_pair_validation_prefixes_side():
    errors = validate_card_images(_image("a.bmp", "image/bmp"),
                                  _image("b.jpg", "text/plain", side=BACK))
    assert errors[0].startswith("Front image: Invalid file type")
    assert errors[1].startswith("Back image: Invalid file type")
    assert validate_card_images(None) == ["Front image is required"]
    assert validate_card_images(_image()) == []


def test_delete_card_images(tmp_path):
    existing = tmp_path / "front.jpg"
    existing.write_bytes(b"x")
    delete_card_images(CardImage(path=existing), None, CardImage(path=tmp_path / "missing.jpg"))
    assert not existing.exists()


def test_delete_never_raises(tmp_path):
    image = CardImage(path=tmp_path / "front.jpg")
    with patch.object(Path, "unlink", side_effect=PermissionError("busy")):
        delete_card_images(image)


def test_require_valid_card_images_raises_with_all_errors():
    with pytest.raises(ImageValidationError) as exc:
        require_valid_card_images(_image("a.bmp", "image/bmp"), _image("b.gif", "image/gif", side=BACK))
    assert len(exc.value.errors) == 2
    require_valid_card_images(_image())
