"""
Image Compressor — re-encode an image until it fits the size budget.

The search is an ordered table of steps, tried until one fits:

1. Quality descent, format-specific (PNG palette + max zlib level,
   WebP quality, JPEG quality, GIF 80% width instead of quality)
2. Scale descent: JPEG at fixed quality, shrinking the width

Every step encodes from the decoded original, never from a previous
step's output, so losses do not compound.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from PIL import Image, ImageSequence, UnidentifiedImageError

from ..policy.models import ImagePolicy, MediaPolicy
from .classifier import FORMAT_EXTENSIONS
from .errors import CompressionBudgetExceeded, ImageTooLarge, UnsupportedMediaType
from .models import CompressionAttempt, CompressionResult
from .workspace import write_atomic

logger = logging.getLogger(__name__)

Encoder = Callable[[Image.Image], Tuple[bytes, str]]


@dataclass(frozen=True)
class ImageStep:
    """One entry of the search table."""

    parameter: str
    value: float
    encode: Encoder


# ── Encoders ─────────────────────────────────────────────────


def _to_rgb(img: Image.Image) -> Image.Image:
    """Flatten onto white; JPEG has no alpha."""
    if img.mode == "RGB":
        return img.copy()
    if img.mode in ("RGBA", "LA", "P"):
        rgba = img.convert("RGBA")
        bg = Image.new("RGB", rgba.size, (255, 255, 255))
        bg.paste(rgba, mask=rgba.split()[-1])
        return bg
    return img.convert("RGB")


def _resized(img: Image.Image, width: int) -> Image.Image:
    w, h = img.size
    width = max(1, min(width, w))
    height = max(1, round(h * width / w))
    return img.resize((width, height), Image.LANCZOS)


def encode_jpeg(img: Image.Image, quality: int) -> Tuple[bytes, str]:
    buf = io.BytesIO()
    _to_rgb(img).save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue(), "JPEG"


def encode_png(img: Image.Image, quality: int) -> Tuple[bytes, str]:
    """Quantize to a palette sized by quality, then max zlib compression."""
    colors = max(2, min(256, round(256 * quality / 100)))
    source = img if img.mode in ("RGB", "RGBA") else img.convert("RGBA")
    quantized = source.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
    buf = io.BytesIO()
    quantized.save(buf, format="PNG", compress_level=9)
    return buf.getvalue(), "PNG"


def encode_webp(img: Image.Image, quality: int) -> Tuple[bytes, str]:
    source = img if img.mode in ("RGB", "RGBA") else img.convert("RGBA")
    buf = io.BytesIO()
    source.save(buf, format="WEBP", quality=quality, method=4)
    return buf.getvalue(), "WEBP"


def encode_gif(img: Image.Image, factor: float) -> Tuple[bytes, str]:
    """Shrink every frame to ``factor`` of the original width, keeping animation."""
    width = max(1, round(img.size[0] * factor))
    frames = []
    durations = []
    for frame in ImageSequence.Iterator(img):
        frames.append(_resized(frame.convert("RGBA"), width))
        durations.append(frame.info.get("duration", img.info.get("duration", 100)))

    buf = io.BytesIO()
    save_kwargs = {"format": "GIF", "optimize": True}
    if len(frames) > 1:
        save_kwargs.update(
            save_all=True,
            append_images=frames[1:],
            duration=durations,
            loop=img.info.get("loop", 0),
            disposal=2,
        )
    frames[0].save(buf, **save_kwargs)
    return buf.getvalue(), "GIF"


def encode_scaled_jpeg(img: Image.Image, pct: int, quality: int) -> Tuple[bytes, str]:
    scaled = _resized(_to_rgb(img), round(img.size[0] * pct / 100))
    buf = io.BytesIO()
    scaled.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue(), "JPEG"


QUALITY_ENCODERS = {
    "PNG": encode_png,
    "WEBP": encode_webp,
}


def build_plan(image_format: str, policy: Optional[ImagePolicy] = None) -> List[ImageStep]:
    """
    The ordered list of attempts for an image of ``image_format``.

    GIF has no quality knob; its one width-reduction step replaces the
    whole quality descent, since repeating it on the original would
    produce the same bytes each time.
    """
    policy = policy or ImagePolicy()
    steps: List[ImageStep] = []

    if image_format == "GIF":
        steps.append(ImageStep(
            "width_factor",
            policy.gif_width_factor,
            partial(encode_gif, factor=policy.gif_width_factor),
        ))
    else:
        encoder = QUALITY_ENCODERS.get(image_format, encode_jpeg)
        for quality in policy.quality_steps():
            steps.append(ImageStep("quality", quality, partial(encoder, quality=quality)))

    for pct in policy.scale_steps():
        steps.append(ImageStep(
            "scale_pct",
            pct,
            partial(encode_scaled_jpeg, pct=pct, quality=policy.scale_jpeg_quality),
        ))
    return steps


# ── Decoding ─────────────────────────────────────────────────


def _draft_scale(width: int, height: int, max_pixels: int) -> Optional[int]:
    """Smallest JPEG DCT scale that brings the image within ``max_pixels``."""
    for scale in (2, 4, 8):
        if -(-width // scale) * -(-height // scale) <= max_pixels:
            return scale
    return None


def open_image(path: Path, max_pixels: int) -> Image.Image:
    """
    Open and fully decode ``path``, holding at most ``max_pixels`` pixels.

    JPEGs over the bound are decoded at a reduced DCT scale (``draft``)
    when one brings them under it. Other formats over the bound are
    rejected before any pixel data is read.

    Raises:
        ImageTooLarge: the image cannot be decoded within ``max_pixels``.
        UnsupportedMediaType: the file cannot be decoded as an image.
    """
    try:
        img = Image.open(path)
    except Image.DecompressionBombError as e:
        raise ImageTooLarge(f"{path.name}: {e}", max_pixels=max_pixels) from e
    except UnidentifiedImageError as e:
        raise UnsupportedMediaType(f"cannot decode image {path.name}: {e}") from e

    try:
        width, height = img.size
        if width * height > max_pixels and img.format == "JPEG":
            scale = _draft_scale(width, height, max_pixels)
            if scale is not None:
                img.draft(img.mode, (max(1, width // scale), max(1, height // scale)))
                logger.info(
                    f"Decoding {path.name} at reduced scale: "
                    f"{width}x{height} → {img.size[0]}x{img.size[1]}"
                )
        if img.size[0] * img.size[1] > max_pixels:
            raise ImageTooLarge(
                f"{path.name} is {width}x{height} ({width * height:,} pixels, "
                f"limit {max_pixels:,})",
                max_pixels=max_pixels,
            )
        img.load()
    except ImageTooLarge:
        img.close()
        raise
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        img.close()
        raise UnsupportedMediaType(f"cannot decode image {path.name}: {e}") from e
    return img


# ── Search ───────────────────────────────────────────────────


def compress_image(
    path: Path,
    byte_size: int,
    policy: Optional[MediaPolicy] = None,
) -> CompressionResult:
    """
    Bring the image at ``path`` under ``policy.max_bytes``.

    Returns the untouched file when it already fits. Otherwise the first
    fitting attempt is written atomically, as ``<stem><ext>`` where the
    extension matches the encoded format, and the original is removed.

    Raises:
        UnsupportedMediaType: the file cannot be decoded as an image.
        ImageTooLarge: the image has more pixels than ``policy.image.max_pixels``.
        CompressionBudgetExceeded: no step got under the budget.
    """
    policy = policy or MediaPolicy()
    budget = policy.max_bytes

    if byte_size <= budget:
        return CompressionResult(
            path=path, byte_size=byte_size, extension=path.suffix, changed=False
        )

    logger.info(
        f"Image size ({byte_size:,} bytes) exceeds {budget:,} byte limit. Compressing..."
    )

    attempts: List[CompressionAttempt] = []
    with open_image(path, policy.image.max_pixels) as source:
        image_format = (source.format or "JPEG").upper()
        for step in build_plan(image_format, policy.image):
            try:
                data, fmt = step.encode(source)
            except (OSError, ValueError) as e:
                logger.warning(f"Image encode failed at {step.parameter}={step.value}: {e}")
                attempts.append(CompressionAttempt(step.parameter, step.value, None, False))
                continue

            attempts.append(CompressionAttempt(step.parameter, step.value, len(data)))
            logger.debug(f"{fmt} {step.parameter}={step.value}: {len(data):,} bytes")

            if len(data) <= budget:
                target = path.with_suffix(FORMAT_EXTENSIONS.get(fmt, path.suffix))
                write_atomic(target, data)
                if target != path:
                    path.unlink(missing_ok=True)

                pct = len(data) / byte_size * 100
                logger.info(
                    f"Image compressed at {step.parameter}={step.value}: "
                    f"{byte_size:,} → {len(data):,} bytes ({pct:.0f}%) "
                    f"after {len(attempts)} attempt(s)"
                )
                return CompressionResult(
                    path=target,
                    byte_size=len(data),
                    extension=target.suffix,
                    changed=True,
                    attempts=attempts,
                )

    smallest = min((a.byte_size for a in attempts if a.byte_size is not None), default=None)
    raise CompressionBudgetExceeded(
        f"image still {smallest} bytes after {len(attempts)} attempts (budget {budget})"
    )
