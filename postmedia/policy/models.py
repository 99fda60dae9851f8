"""
Media Policy — Pydantic schema for the ingestion limits.

Defaults are the published policy constants; a YAML policy file may
override them for a deployment.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field, field_validator

MIB = 1024 * 1024

IMAGE_MIME_TYPES = ["image/jpeg", "image/png", "image/gif", "image/webp"]
VIDEO_MIME_TYPES = ["video/mp4", "video/quicktime", "video/x-msvideo", "video/webm"]


class ImagePolicy(BaseModel):
    """Quality-then-scale search used by the image compressor."""

    quality_start: int = Field(default=80, ge=1, le=100)
    quality_step: int = Field(default=10, ge=1)
    quality_floor: int = Field(default=10, ge=1, le=100)
    gif_width_factor: float = Field(default=0.8, gt=0, lt=1)
    scale_start_pct: int = Field(default=90, ge=1, le=100)
    scale_step_pct: int = Field(default=10, ge=1)
    scale_floor_pct: int = Field(default=30, ge=1, le=100)
    scale_jpeg_quality: int = Field(default=70, ge=1, le=100)
    # Pillow's own decompression-bomb threshold
    max_pixels: int = Field(default=178_956_970, gt=0)

    def quality_steps(self) -> List[int]:
        return list(range(self.quality_start, self.quality_floor - 1, -self.quality_step))

    def scale_steps(self) -> List[int]:
        return list(range(self.scale_start_pct, self.scale_floor_pct - 1, -self.scale_step_pct))


class VideoLevel(BaseModel):
    """One row of the transcoder's preset table."""

    crf: int = Field(ge=0, le=51)
    preset: str
    width: int = Field(gt=0)


def _default_levels() -> List[VideoLevel]:
    return [
        VideoLevel(crf=28, preset="medium", width=1280),
        VideoLevel(crf=30, preset="faster", width=854),
        VideoLevel(crf=32, preset="veryfast", width=640),
        VideoLevel(crf=35, preset="superfast", width=426),
    ]


class VideoPolicy(BaseModel):
    """Duration cap, trim behaviour and transcoder levels."""

    max_duration_seconds: float = Field(default=60, gt=0)
    audio_bitrate: str = "64k"
    levels: List[VideoLevel] = Field(default_factory=_default_levels)

    @field_validator("levels")
    @classmethod
    def _levels_not_empty(cls, v: List[VideoLevel]) -> List[VideoLevel]:
        if not v:
            raise ValueError("at least one transcoder level is required")
        return v


class ThumbnailPolicy(BaseModel):
    """Preview bound (long edge, fit-inside) and frame offset for videos."""

    max_edge: int = Field(default=300, gt=0)
    video_frame_seconds: float = Field(default=0.5, ge=0)
    jpeg_quality: int = Field(default=80, ge=1, le=100)


class MediaPolicy(BaseModel):
    """Complete ingestion policy."""

    version: int = 1
    max_bytes: int = Field(default=2 * MIB, gt=0)
    image_mime_types: List[str] = Field(default_factory=lambda: list(IMAGE_MIME_TYPES))
    video_mime_types: List[str] = Field(default_factory=lambda: list(VIDEO_MIME_TYPES))
    verify_image_signatures: bool = True
    image: ImagePolicy = Field(default_factory=ImagePolicy)
    video: VideoPolicy = Field(default_factory=VideoPolicy)
    thumbnail: ThumbnailPolicy = Field(default_factory=ThumbnailPolicy)
