"""
Shared fixtures for pipeline tests.

Provides a pipeline config rooted in a temporary directory, a private
metrics registry per test, and ``FakeFFmpeg``, which stands in for the
encoder binaries: it writes output files of chosen sizes and answers
probes from a table, so video stages run without ffmpeg installed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional

import pytest

from postmedia.config.loader import PipelineConfig
from postmedia.media.errors import IngestCancelled
from postmedia.media.ffmpeg import EncoderFailed, MediaProbe
from postmedia.observability.metrics import MetricsRegistry
from postmedia.policy.models import MediaPolicy


class FakeFFmpeg:
    """
    Encoder double.

    ``durations`` and ``output_sizes`` map a substring of the file name to
    a value; the first matching entry wins. ``fail_on`` lists substrings
    of output names whose encode fails. Frame grabs seeking past
    ``last_frame_at`` write nothing, like ffmpeg past the final frame.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.probed: List[Path] = []
        self.durations: Dict[str, float] = {}
        self.default_duration: Optional[float] = 10.0
        self.output_sizes: Dict[str, int] = {}
        self.default_output_size = 4096
        self.fail_on: List[str] = []
        self.probe_fails = False
        self.frame_size = (640, 360)
        self.last_frame_at: Optional[float] = None

    def available(self) -> bool:
        return True

    def run(self, args, *, cancel=None, timeout=None) -> str:
        if cancel is not None and cancel.is_set():
            raise IngestCancelled("cancelled before encoder start")
        self.calls.append(list(args))
        out = Path(args[-1])

        if any(marker in out.name for marker in self.fail_on):
            raise EncoderFailed(f"ffmpeg exited with 1 for {out.name}", returncode=1)

        if out.suffix == ".png" and self._seeks_past_last_frame(args):
            return ""
        if out.suffix == ".png":
            from PIL import Image

            Image.new("RGB", self.frame_size, (20, 120, 220)).save(out, format="PNG")
        else:
            out.write_bytes(b"\x00" * self._lookup(self.output_sizes, out.name, self.default_output_size))
        return ""

    def probe(self, path, *, cancel=None) -> MediaProbe:
        if cancel is not None and cancel.is_set():
            raise IngestCancelled("cancelled before encoder start")
        path = Path(path)
        self.probed.append(path)
        if self.probe_fails:
            raise EncoderFailed("ffprobe exited with 1", returncode=1)
        return MediaProbe(
            duration=self._lookup(self.durations, path.name, self.default_duration),
            width=1920,
            height=1080,
            video_codec="h264",
            has_audio=True,
        )

    def encodes(self) -> List[List[str]]:
        """Calls that went through libx264 (trim re-encodes and levels)."""
        return [c for c in self.calls if "libx264" in c]

    def _seeks_past_last_frame(self, args) -> bool:
        if self.last_frame_at is None or "-ss" not in args:
            return False
        return float(args[args.index("-ss") + 1]) > self.last_frame_at

    @staticmethod
    def _lookup(table, name, default):
        for marker, value in table.items():
            if marker in name:
                return value
        return default


@pytest.fixture
def fake_ffmpeg() -> FakeFFmpeg:
    return FakeFFmpeg()


@pytest.fixture
def registry() -> MetricsRegistry:
    """Fresh metrics registry so counts do not leak between tests."""
    return MetricsRegistry()


@pytest.fixture
def policy() -> MediaPolicy:
    return MediaPolicy()


@pytest.fixture
def pipeline_config(tmp_path: Path) -> PipelineConfig:
    """Pipeline config with a temp upload root and default policy."""
    return PipelineConfig(upload_root=tmp_path / "uploads", workers=2)


@pytest.fixture
def upload_root(pipeline_config) -> Path:
    return pipeline_config.upload_root

