"""
Duration Limiter — cap video length at the policy maximum.

Probe the file; if it is longer than allowed, cut it to the first N
seconds with a stream copy and swap the result over the original. When
the stream copy fails, or the container can only cut on a keyframe past
the limit, the cut is redone as a frame-accurate re-encode.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..policy.models import VideoPolicy
from .errors import ProbeError, TrimError
from .ffmpeg import EncoderError, FFmpeg
from .workspace import replace_file

logger = logging.getLogger(__name__)


@dataclass
class DurationCheck:
    """Where the (possibly trimmed) video now lives and how long it is."""

    path: Path
    duration: float
    trimmed: bool = False
    reencoded: bool = False


def probe_duration(
    path: Path,
    ffmpeg: FFmpeg,
    cancel: Optional[threading.Event] = None,
) -> float:
    """
    Return the duration of ``path`` in seconds.

    Raises:
        ProbeError: if ffprobe fails or reports no usable duration.
    """
    try:
        probe = ffmpeg.probe(path, cancel=cancel)
    except EncoderError as e:
        raise ProbeError(f"ffprobe failed for {path.name}: {e}") from e

    if probe.duration is None or probe.duration <= 0:
        raise ProbeError(f"no duration reported for {path.name}")
    return probe.duration


def limit_duration(
    path: Path,
    ffmpeg: FFmpeg,
    policy: Optional[VideoPolicy] = None,
    cancel: Optional[threading.Event] = None,
) -> DurationCheck:
    """
    Ensure the video at ``path`` is no longer than ``policy.max_duration_seconds``.

    The returned duration is the probed duration of the resulting file,
    which is never above the limit.

    Raises:
        ProbeError: duration could not be determined.
        TrimError: the file was too long and could not be truncated.
    """
    policy = policy or VideoPolicy()
    limit = policy.max_duration_seconds
    duration = probe_duration(path, ffmpeg, cancel)

    if duration <= limit:
        logger.info(f"Video duration {duration:.2f}s within {limit:.0f}s limit")
        return DurationCheck(path=path, duration=duration)

    logger.info(f"Video duration {duration:.2f}s exceeds {limit:.0f}s limit. Trimming...")

    copied = path.with_name(f"{path.stem}.trimmed{path.suffix}")
    new_duration = _stream_copy(path, copied, ffmpeg, limit, cancel)
    if new_duration is not None:
        replace_file(copied, path)
        logger.info(f"Trimmed to {new_duration:.2f}s (stream copy)")
        return DurationCheck(path=path, duration=new_duration, trimmed=True)

    copied.unlink(missing_ok=True)
    reencoded = path.with_name(f"{path.stem}.trimmed.mp4")
    new_duration = _reencode(path, reencoded, ffmpeg, limit, cancel)

    overshoot = new_duration - limit
    if 0 < overshoot < limit:
        # Encoder padding (AAC priming) can overshoot by a few milliseconds;
        # one pass with the overshoot taken off the cut point corrects it.
        reencoded.unlink(missing_ok=True)
        reencoded = path.with_name(f"{path.stem}.trimmed.exact.mp4")
        new_duration = _reencode(path, reencoded, ffmpeg, limit - overshoot, cancel)

    if new_duration > limit:
        reencoded.unlink(missing_ok=True)
        raise TrimError(f"trimmed video is {new_duration}s, limit {limit:g}s")

    target = path.with_suffix(".mp4")
    replace_file(reencoded, target)
    if target != path:
        path.unlink(missing_ok=True)
    logger.info(f"Trimmed to {new_duration:.2f}s (re-encode)")
    return DurationCheck(
        path=target,
        duration=new_duration,
        trimmed=True,
        reencoded=True,
    )


def _stream_copy(
    src: Path,
    dst: Path,
    ffmpeg: FFmpeg,
    seconds: float,
    cancel: Optional[threading.Event],
) -> Optional[float]:
    """Cut without re-encoding. Returns the new duration, or None to fall back."""
    try:
        ffmpeg.run(
            [
                "-i", str(src),
                "-t", f"{seconds:g}",
                "-map", "0",
                "-c", "copy",
                str(dst),
            ],
            cancel=cancel,
        )
        duration = ffmpeg.probe(dst, cancel=cancel).duration
    except EncoderError as e:
        logger.warning(f"Stream-copy trim failed ({e}), falling back to re-encode")
        return None

    # Copies can only cut on a keyframe, so they may run past the limit
    if duration is None or duration > seconds:
        logger.warning(
            f"Stream-copy trim produced {duration}s, falling back to re-encode"
        )
        return None
    return duration


def _reencode(
    src: Path,
    dst: Path,
    ffmpeg: FFmpeg,
    seconds: float,
    cancel: Optional[threading.Event],
) -> float:
    try:
        ffmpeg.run(
            [
                "-i", str(src),
                "-t", f"{seconds:g}",
                "-map", "0:v:0",
                "-map", "0:a?",
                "-c:v", "libx264",
                "-preset", "veryfast",
                "-crf", "23",
                "-pix_fmt", "yuv420p",
                "-c:a", "aac",
                "-movflags", "+faststart",
                str(dst),
            ],
            cancel=cancel,
        )
        duration = ffmpeg.probe(dst, cancel=cancel).duration
    except EncoderError as e:
        dst.unlink(missing_ok=True)
        raise TrimError(f"re-encode trim failed: {e}") from e

    if duration is None:
        dst.unlink(missing_ok=True)
        raise TrimError(f"no duration reported for {dst.name}")
    return duration
