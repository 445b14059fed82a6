"""Tests for photo decoding and upload."""

import base64

import pytest

from meal_logger.services.photos import (
    InvalidImageError,
    PhotoService,
    parse_data_url,
)
from tests.conftest import PNG_DATA_URL, FakePhotoStorage


def test_parse_data_url_returns_mime_and_bytes() -> None:
    mime_type, content = parse_data_url(PNG_DATA_URL)

    assert mime_type == "image/png"
    assert content.startswith(b"\x89PNG")


def test_parse_data_url_detects_type_when_not_declared() -> None:
    encoded = base64.b64encode(b"\xff\xd8\xff\xe0jpeg").decode()

    mime_type, _ = parse_data_url(f"data:application/octet-stream;base64,{encoded}")

    assert mime_type == "image/jpeg"


@pytest.mark.parametrize(
    "value",
    ["https://example.com/a.png", "data:image/png,plain", "data:image/png;base64,@@"],
)
def test_parse_data_url_rejects_invalid_input(value: str) -> None:
    with pytest.raises(InvalidImageError):
        parse_data_url(value)


def test_parse_data_url_sniffs_webp_signature() -> None:
    encoded = base64.b64encode(b"RIFF\x00\x00\x00\x00WEBPVP8 ").decode()

    mime_type, _ = parse_data_url(f"data:;base64,{encoded}")

    assert mime_type == "image/webp"


def test_upload_stores_under_meals_prefix() -> None:
    storage = FakePhotoStorage()

    url = PhotoService(storage).upload(PNG_DATA_URL)

    (path,) = storage.uploads
    assert path.startswith("meals/")
    assert path.endswith(".png")
    assert storage.uploads[path][1] == "image/png"
    assert url.endswith(path)


def test_upload_best_effort_keeps_local_preview_on_failure() -> None:
    outcome = PhotoService(FakePhotoStorage(fail=True)).upload_best_effort(
        PNG_DATA_URL
    )

    assert outcome.url == PNG_DATA_URL
    assert not outcome.uploaded
    assert outcome.error == "Photo upload failed. Using local preview."


def test_upload_best_effort_without_storage() -> None:
    service = PhotoService(None)

    outcome = service.upload_best_effort(PNG_DATA_URL)

    assert outcome.url == PNG_DATA_URL
    assert not outcome.uploaded
    assert outcome.error is None
    with pytest.raises(RuntimeError):
        service.upload(PNG_DATA_URL)
