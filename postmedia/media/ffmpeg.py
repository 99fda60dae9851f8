"""
ffmpeg / ffprobe invocation.

Every external encoder call in the pipeline goes through ``FFmpeg``.
A call is a scoped resource: the process is polled until it exits, and
it is killed and reaped on every other way out (cancellation, timeout,
exceptions in the caller's thread).

Runner failures are reported as ``EncoderError`` subclasses; the stages
translate them into their own ingestion errors. Cancellation is raised
directly as ``IngestCancelled`` so that no stage can swallow it.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .errors import IngestCancelled

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 30.0
STDERR_TAIL = 500


class EncoderError(Exception):
    """An external encoder invocation did not produce a usable result."""


class EncoderMissing(EncoderError):
    """The binary is not installed or not on PATH."""


class EncoderFailed(EncoderError):
    """Process exited non-zero (or printed something unparseable)."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class EncoderTimeout(EncoderError):
    """Process was killed after exceeding its wall-clock budget."""


@dataclass
class MediaProbe:
    """The parts of ffprobe output the pipeline cares about."""

    duration: Optional[float]
    width: Optional[int] = None
    height: Optional[int] = None
    video_codec: Optional[str] = None
    has_audio: bool = False

    @classmethod
    def from_ffprobe(cls, data: dict) -> "MediaProbe":
        streams = data.get("streams") or []
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        has_audio = any(s.get("codec_type") == "audio" for s in streams)

        duration = _as_float((data.get("format") or {}).get("duration"))
        if duration is None:
            stream_durations = [
                d for d in (_as_float(s.get("duration")) for s in streams) if d is not None
            ]
            duration = max(stream_durations) if stream_durations else None

        return cls(
            duration=duration,
            width=int(video["width"]) if video and video.get("width") else None,
            height=int(video["height"]) if video and video.get("height") else None,
            video_codec=video.get("codec_name") if video else None,
            has_audio=has_audio,
        )


def _as_float(value) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result or result < 0:  # NaN or negative
        return None
    return result


@contextmanager
def _spawn(cmd: Sequence[str]) -> Iterator[subprocess.Popen]:
    """Start ``cmd`` and guarantee the process is dead when the block exits."""
    try:
        proc = subprocess.Popen(
            list(cmd),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError as e:
        raise EncoderMissing(f"{cmd[0]} not found") from e

    try:
        yield proc
    finally:
        if proc.poll() is None:
            proc.kill()
            logger.info(f"Killed {Path(cmd[0]).name} (pid={proc.pid})")
        proc.wait()
        for stream in (proc.stdout, proc.stderr):
            if stream is not None:
                stream.close()


@dataclass
class FFmpeg:
    """Thin, cancellable wrapper around the ffmpeg and ffprobe binaries."""

    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    timeout: float = 900.0
    poll_interval: float = 0.25

    def available(self) -> bool:
        """Check if both binaries are on PATH."""
        return (
            shutil.which(self.ffmpeg_bin) is not None
            and shutil.which(self.ffprobe_bin) is not None
        )

    def run(
        self,
        args: Sequence[str],
        *,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Run ffmpeg with ``args`` (input/output options and paths).

        Returns:
            Captured stderr (ffmpeg's log).

        Raises:
            EncoderMissing, EncoderFailed, EncoderTimeout, IngestCancelled
        """
        cmd = [self.ffmpeg_bin, "-hide_banner", "-nostdin", "-y", *args]
        _, stderr = self._execute(cmd, cancel=cancel, timeout=timeout or self.timeout)
        return stderr

    def probe(
        self,
        path: Path,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> MediaProbe:
        """Probe a media file for duration, dimensions and streams."""
        cmd = [
            self.ffprobe_bin, "-v", "error",
            "-show_entries", "format=duration",
            "-show_entries", "stream=codec_type,codec_name,width,height,duration",
            "-of", "json",
            str(path),
        ]
        stdout, _ = self._execute(cmd, cancel=cancel, timeout=PROBE_TIMEOUT)
        try:
            data = json.loads(stdout or "{}")
        except json.JSONDecodeError as e:
            raise EncoderFailed(f"ffprobe printed invalid JSON: {e}") from e
        return MediaProbe.from_ffprobe(data)

    def _execute(
        self,
        cmd: List[str],
        *,
        cancel: Optional[threading.Event],
        timeout: float,
    ) -> tuple:
        if cancel is not None and cancel.is_set():
            raise IngestCancelled("cancelled before encoder start")

        name = Path(cmd[0]).name
        logger.debug(f"Running: {' '.join(cmd)}")
        started = time.monotonic()

        with _spawn(cmd) as proc:
            while True:
                try:
                    stdout, stderr = proc.communicate(timeout=self.poll_interval)
                    break
                except subprocess.TimeoutExpired:
                    if cancel is not None and cancel.is_set():
                        raise IngestCancelled(f"{name} cancelled by caller")
                    elapsed = time.monotonic() - started
                    if elapsed > timeout:
                        raise EncoderTimeout(f"{name} exceeded {timeout:.0f}s")

        elapsed = time.monotonic() - started
        if proc.returncode != 0:
            tail = (stderr or "")[-STDERR_TAIL:]
            logger.debug(f"{name} failed (rc={proc.returncode}) after {elapsed:.1f}s: {tail}")
            raise EncoderFailed(
                f"{name} exited with {proc.returncode}",
                returncode=proc.returncode,
                stderr=tail,
            )

        logger.debug(f"{name} finished in {elapsed:.1f}s")
        return stdout, stderr
