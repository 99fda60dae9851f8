"""
Format Classifier — map a declared MIME type to a media type.

Classification is driven by the declared type only. ``verify_image_signature``
is an extra check on the first bytes of an image, used when the policy
asks for it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ..policy.models import MediaPolicy
from .errors import UnsupportedMediaType
from .models import MediaType

logger = logging.getLogger(__name__)

# Canonical extension per accepted MIME type
EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/webm": ".webm",
}

# Pillow format name → extension, for bytes re-encoded by the compressor
FORMAT_EXTENSIONS = {
    "JPEG": ".jpg",
    "PNG": ".png",
    "GIF": ".gif",
    "WEBP": ".webp",
}


def normalize_mime(mime_type: Optional[str]) -> str:
    """Lower-case and strip parameters (``image/JPEG; q=1`` → ``image/jpeg``)."""
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def classify(mime_type: Optional[str], policy: Optional[MediaPolicy] = None) -> MediaType:
    """
    Return the media type for a declared MIME type.

    Raises:
        UnsupportedMediaType: for anything outside the accepted lists.
    """
    policy = policy or MediaPolicy()
    mime = normalize_mime(mime_type)

    if mime in policy.image_mime_types:
        return MediaType.IMAGE
    if mime in policy.video_mime_types:
        return MediaType.VIDEO

    logger.warning(f"Rejected upload with declared type {mime_type!r}")
    raise UnsupportedMediaType(f"declared type {mime_type!r} is not accepted")


def extension_for(mime_type: str) -> str:
    """Canonical file extension for an accepted MIME type."""
    return EXTENSIONS.get(normalize_mime(mime_type), ".bin")


def _signature_matches(mime: str, head: bytes) -> bool:
    if mime == "image/jpeg":
        return head[:3] == b"\xff\xd8\xff"
    if mime == "image/png":
        return head[:8] == b"\x89PNG\r\n\x1a\n"
    if mime == "image/gif":
        return head[:6] in (b"GIF87a", b"GIF89a")
    if mime == "image/webp":
        return head[:4] == b"RIFF" and head[8:12] == b"WEBP"
    return True


def verify_image_signature(path: Path, mime_type: str) -> None:
    """
    Check that an image file starts with the magic bytes of its declared type.

    Raises:
        UnsupportedMediaType: when the content does not match.
    """
    mime = normalize_mime(mime_type)
    with Path(path).open("rb") as f:
        head = f.read(16)

    if not _signature_matches(mime, head):
        logger.warning(f"Content of {path.name} does not look like {mime}")
        raise UnsupportedMediaType(f"content does not match declared type {mime}")
