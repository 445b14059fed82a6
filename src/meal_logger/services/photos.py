"""Meal photo uploads."""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

_logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


class InvalidImageError(ValueError):
    """Raised when an image payload cannot be decoded."""


class PhotoStorage(Protocol):
    """Interface for durable photo storage."""

    def upload(self, path: str, content: bytes, content_type: str) -> str:
        """Store the bytes and return a public URL."""


@dataclass(frozen=True)
class UploadOutcome:
    """Reference to use for a photo, and whether it was stored remotely."""

    url: str
    uploaded: bool
    error: str | None = None


@dataclass
class PhotoService:
    """Decodes browser image payloads and stores them."""

    storage: PhotoStorage | None

    def upload(self, image_data_url: str) -> str:
        """Store the image and return its public URL."""
        if self.storage is None:
            raise RuntimeError("Photo storage is not configured")
        mime_type, content = parse_data_url(image_data_url)
        path = f"meals/{uuid4()}.{_EXTENSIONS.get(mime_type, 'jpg')}"
        return self.storage.upload(path, content, mime_type)

    def upload_best_effort(self, image_data_url: str) -> UploadOutcome:
        """Upload the image, keeping the local data URL when that fails."""
        if self.storage is None:
            return UploadOutcome(url=image_data_url, uploaded=False)
        try:
            url = self.upload(image_data_url)
        except Exception:
            _logger.exception("Photo upload failed, keeping local preview")
            return UploadOutcome(
                url=image_data_url,
                uploaded=False,
                error="Photo upload failed. Using local preview.",
            )
        return UploadOutcome(url=url, uploaded=True)


def parse_data_url(data_url: str) -> tuple[str, bytes]:
    """Split a base64 data URL into its MIME type and bytes."""
    header, separator, encoded = data_url.partition(",")
    if not separator or not header.startswith("data:") or ";base64" not in header:
        raise InvalidImageError("Image must be a base64 data URL")
    try:
        content = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Image data is not valid base64") from exc
    if not content:
        raise InvalidImageError("Image data is empty")
    declared = header[len("data:") :].split(";", maxsplit=1)[0]
    if declared.startswith("image/"):
        return declared, content
    return _detect_mime_type(content), content


def _detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"
