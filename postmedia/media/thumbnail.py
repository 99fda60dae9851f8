"""
Thumbnail Generator — fixed-bound JPEG preview for images and videos.

Previews fit inside a square of ``max_edge`` pixels, keep the aspect
ratio and are never upscaled. Videos contribute one frame taken a short
way into the clip.
"""

from __future__ import annotations

import io
import logging
import threading
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps

from ..policy.models import ImagePolicy, ThumbnailPolicy
from .errors import ThumbnailError, UnsupportedMediaType
from .ffmpeg import EncoderError, EncoderMissing, FFmpeg
from .image_compress import open_image
from .workspace import write_atomic

logger = logging.getLogger(__name__)


def _flatten(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA", "P"):
        rgba = img.convert("RGBA")
        bg = Image.new("RGB", rgba.size, (255, 255, 255))
        bg.paste(rgba, mask=rgba.split()[-1])
        return bg
    return img.convert("RGB")


def render_thumbnail(
    source: Path,
    policy: Optional[ThumbnailPolicy] = None,
    max_pixels: Optional[int] = None,
) -> bytes:
    """
    Return JPEG bytes of ``source`` scaled to fit ``max_edge``.

    Raises:
        ImageTooLarge: ``source`` has more than ``max_pixels`` pixels.
        ThumbnailError: the source cannot be decoded or resized.
    """
    policy = policy or ThumbnailPolicy()
    if max_pixels is None:
        max_pixels = ImagePolicy().max_pixels

    try:
        img = open_image(source, max_pixels)
    except UnsupportedMediaType as e:
        raise ThumbnailError(f"cannot render thumbnail from {source.name}: {e}") from e

    try:
        with img:
            img.seek(0)
            preview = _flatten(ImageOps.exif_transpose(img) or img)
            # thumbnail() only ever shrinks
            preview.thumbnail((policy.max_edge, policy.max_edge), Image.LANCZOS)
            buf = io.BytesIO()
            preview.save(buf, format="JPEG", quality=policy.jpeg_quality)
    except (OSError, ValueError) as e:
        raise ThumbnailError(f"cannot render thumbnail from {source.name}: {e}") from e
    return buf.getvalue()


def thumbnail_for_image(
    source: Path,
    dest: Path,
    policy: Optional[ThumbnailPolicy] = None,
    max_pixels: Optional[int] = None,
) -> Path:
    data = render_thumbnail(source, policy, max_pixels)
    write_atomic(dest, data)
    logger.info(f"Thumbnail created: {dest.name} ({len(data):,} bytes)")
    return dest


def frame_offset(duration: Optional[float], policy: ThumbnailPolicy) -> float:
    """Preferred offset, or the first frame for clips shorter than it."""
    if duration is not None and duration <= policy.video_frame_seconds:
        return 0.0
    return policy.video_frame_seconds


def _extract_frame(
    source: Path,
    frame: Path,
    offset: float,
    ffmpeg: FFmpeg,
    cancel: Optional[threading.Event],
) -> Optional[str]:
    """Write the frame at ``offset`` to ``frame``; return the failure reason, if any."""
    frame.unlink(missing_ok=True)
    try:
        ffmpeg.run(
            [
                "-ss", f"{offset:g}",
                "-i", str(source),
                "-frames:v", "1",
                str(frame),
            ],
            cancel=cancel,
        )
    except EncoderMissing:
        raise
    except EncoderError as e:
        return str(e)
    if not frame.exists() or frame.stat().st_size == 0:
        return f"no frame at {offset:g}s"
    return None


def thumbnail_for_video(
    source: Path,
    dest: Path,
    ffmpeg: FFmpeg,
    policy: Optional[ThumbnailPolicy] = None,
    duration: Optional[float] = None,
    cancel: Optional[threading.Event] = None,
) -> Path:
    """
    Extract one frame from ``source`` and resize it like an image preview.

    A clip with no frame at or after the preferred offset (sparse frames
    near the end of a short clip) falls back to its first frame.

    Raises:
        ThumbnailError: frame extraction or resize failed.
    """
    policy = policy or ThumbnailPolicy()
    frame = dest.with_name(f"{dest.stem}.frame.png")
    offset = frame_offset(duration, policy)

    try:
        reason = _extract_frame(source, frame, offset, ffmpeg, cancel)
        if reason is not None and offset > 0:
            logger.info(f"Frame at {offset:g}s unavailable ({reason}), using first frame")
            reason = _extract_frame(source, frame, 0.0, ffmpeg, cancel)
        if reason is not None:
            raise ThumbnailError(f"frame extraction failed for {source.name}: {reason}")
        return thumbnail_for_image(frame, dest, policy)
    except EncoderMissing as e:
        raise ThumbnailError(f"frame extraction failed: {e}") from e
    finally:
        frame.unlink(missing_ok=True)
