"""
Video Transcoder — re-encode a video until it fits the size budget.

Walks the policy's level table (CRF, x264 preset, target width) from
least to most aggressive. Each level encodes the original input into its
own side file; a level that fails to encode or misses the budget is
discarded and the next one is tried. The first level that fits replaces
the original.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import List, Optional

from ..policy.models import MediaPolicy, VideoLevel
from .errors import CompressionBudgetExceeded
from .ffmpeg import EncoderError, FFmpeg
from .models import CompressionAttempt, CompressionResult
from .workspace import replace_file

logger = logging.getLogger(__name__)


def scale_filter(width: int) -> str:
    """Cap width at ``width`` (never upscale), even dimensions, keep aspect."""
    return f"scale=w='min({width},trunc(iw/2)*2)':h=-2"


def level_args(src: Path, dst: Path, level: VideoLevel, audio_bitrate: str) -> List[str]:
    return [
        "-i", str(src),
        "-map", "0:v:0",
        "-map", "0:a?",
        "-c:v", "libx264",
        "-preset", level.preset,
        "-crf", str(level.crf),
        "-vf", scale_filter(level.width),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", audio_bitrate,
        "-movflags", "+faststart",
        str(dst),
    ]


def transcode_video(
    path: Path,
    byte_size: int,
    ffmpeg: FFmpeg,
    policy: Optional[MediaPolicy] = None,
    cancel: Optional[threading.Event] = None,
) -> CompressionResult:
    """
    Bring the video at ``path`` under ``policy.max_bytes``.

    Encode failures at a level are logged and skipped; only running out
    of levels is reported.

    Raises:
        CompressionBudgetExceeded: no level produced a file within budget.
        IngestCancelled: ``cancel`` was set during an encode.
    """
    policy = policy or MediaPolicy()
    budget = policy.max_bytes

    if byte_size <= budget:
        return CompressionResult(
            path=path, byte_size=byte_size, extension=path.suffix, changed=False
        )

    logger.info(
        f"Video size ({byte_size:,} bytes) exceeds {budget:,} byte limit. Compressing..."
    )

    attempts: List[CompressionAttempt] = []
    for index, level in enumerate(policy.video.levels):
        out = path.with_name(f"{path.stem}.level{index}.mp4")
        out.unlink(missing_ok=True)

        try:
            ffmpeg.run(level_args(path, out, level, policy.video.audio_bitrate), cancel=cancel)
        except EncoderError as e:
            logger.warning(f"Compression failed at level {index}: {e}")
            attempts.append(CompressionAttempt("level", index, None, False))
            out.unlink(missing_ok=True)
            continue

        if not out.exists():
            logger.warning(f"Output file was not created at level {index}")
            attempts.append(CompressionAttempt("level", index, None, False))
            continue

        size = out.stat().st_size
        attempts.append(CompressionAttempt("level", index, size))
        logger.info(
            f"Level {index} (crf={level.crf}, preset={level.preset}, "
            f"width≤{level.width}): {size:,} bytes"
        )

        if size <= budget:
            target = path.with_suffix(".mp4")
            replace_file(out, target)
            if target != path:
                path.unlink(missing_ok=True)
            return CompressionResult(
                path=target,
                byte_size=size,
                extension=".mp4",
                changed=True,
                attempts=attempts,
            )

        out.unlink(missing_ok=True)

    logger.warning("All compression attempts failed")
    raise CompressionBudgetExceeded(
        f"no level of {len(policy.video.levels)} fit {budget} bytes"
    )
