"""
Tests for the video transcoder level walk (encoder faked).
"""

from pathlib import Path

import pytest

from postmedia.media.errors import CompressionBudgetExceeded, IngestCancelled
from postmedia.media.video_transcode import level_args, scale_filter, transcode_video
from postmedia.policy.models import MIB, MediaPolicy, VideoLevel


def _video(tmp_path: Path, size: int, name: str = "source.mp4") -> Path:
    path = tmp_path / name
    path.write_bytes(b"\x00" * size)
    return path


class TestArgs:

    def test_scale_never_upscales(self):
        assert scale_filter(640) == "scale=w='min(640,trunc(iw/2)*2)':h=-2"

    def test_level_args(self, tmp_path: Path):
        args = level_args(
            tmp_path / "in.mov",
            tmp_path / "out.mp4",
            VideoLevel(crf=30, preset="faster", width=854),
            "64k",
        )
        assert args[:2] == ["-i", str(tmp_path / "in.mov")]
        assert args[-1] == str(tmp_path / "out.mp4")
        assert args[args.index("-c:v") + 1] == "libx264"
        assert args[args.index("-crf") + 1] == "30"
        assert args[args.index("-preset") + 1] == "faster"
        assert args[args.index("-b:a") + 1] == "64k"
        assert "+faststart" in args


class TestTranscodeVideo:

    def test_within_budget_untouched(self, tmp_path: Path, fake_ffmpeg):
        path = _video(tmp_path, 1000, "source.mov")

        result = transcode_video(path, 1000, fake_ffmpeg)

        assert result.changed is False
        assert result.path == path
        assert result.extension == ".mov"
        assert fake_ffmpeg.calls == []

    def test_first_fitting_level_wins(self, tmp_path: Path, fake_ffmpeg):
        path = _video(tmp_path, 3 * MIB, "source.mov")
        fake_ffmpeg.output_sizes = {".level0": 3 * MIB, ".level1": MIB}

        result = transcode_video(path, 3 * MIB, fake_ffmpeg)

        assert result.changed is True
        assert result.path == tmp_path / "source.mp4"
        assert result.extension == ".mp4"
        assert result.byte_size == MIB
        assert [a.value for a in result.attempts] == [0, 1]
        assert result.attempts[0].byte_size == 3 * MIB
        # Level 2 never ran; original and side files are gone
        assert len(fake_ffmpeg.calls) == 2
        assert sorted(p.name for p in tmp_path.iterdir()) == ["source.mp4"]

    def test_failed_level_is_skipped(self, tmp_path: Path, fake_ffmpeg):
        path = _video(tmp_path, 3 * MIB)
        fake_ffmpeg.fail_on = [".level0"]
        fake_ffmpeg.output_sizes = {".level1": MIB}

        result = transcode_video(path, 3 * MIB, fake_ffmpeg)

        assert result.attempts[0].succeeded is False
        assert result.attempts[0].byte_size is None
        assert result.attempts[1].succeeded is True
        assert result.path == path
        assert path.stat().st_size == MIB

    def test_all_levels_too_big(self, tmp_path: Path, fake_ffmpeg):
        path = _video(tmp_path, 3 * MIB)
        fake_ffmpeg.default_output_size = 3 * MIB

        with pytest.raises(CompressionBudgetExceeded):
            transcode_video(path, 3 * MIB, fake_ffmpeg)

        assert len(fake_ffmpeg.calls) == 4
        # Only the input is left
        assert [p.name for p in tmp_path.iterdir()] == ["source.mp4"]

    def test_all_levels_fail(self, tmp_path: Path, fake_ffmpeg):
        path = _video(tmp_path, 3 * MIB)
        fake_ffmpeg.fail_on = [".level"]
        with pytest.raises(CompressionBudgetExceeded):
            transcode_video(path, 3 * MIB, fake_ffmpeg)

    def test_custom_budget(self, tmp_path: Path, fake_ffmpeg):
        path = _video(tmp_path, 5000)
        fake_ffmpeg.default_output_size = 900
        result = transcode_video(path, 5000, fake_ffmpeg, MediaPolicy(max_bytes=1000))
        assert result.byte_size == 900

    def test_cancel_propagates(self, tmp_path: Path, fake_ffmpeg):
        import threading

        path = _video(tmp_path, 3 * MIB)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(IngestCancelled):
            transcode_video(path, 3 * MIB, fake_ffmpeg, cancel=cancel)
