"""
Ingestion error taxonomy.

Every failure the pipeline can report is one of these classes. Each
carries a stable machine code, an HTTP-equivalent status for the
boundary layer, and a message that is safe to show to the uploader.
"""

from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    """Base class for every classified ingestion failure."""

    code = "ingest_error"
    http_status = 500
    default_message = "The upload could not be processed."

    def __init__(self, detail: str = "", *, user_message: Optional[str] = None):
        super().__init__(detail or self.default_message)
        self.detail = detail
        self.user_message = user_message or self.default_message

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.user_message}


class UnsupportedMediaType(IngestError):
    """Declared MIME type (or content signature) is not an accepted encoding."""

    code = "unsupported_media_type"
    http_status = 415
    default_message = (
        "Only JPEG, PNG, GIF and WebP images or MP4, QuickTime, AVI and "
        "WebM videos are allowed."
    )


class ProbeError(IngestError):
    """Video duration could not be determined."""

    code = "probe_error"
    http_status = 422
    default_message = "Could not read the video. The file may be damaged or not a video."


class TrimError(IngestError):
    """Video longer than the maximum duration could not be truncated."""

    code = "trim_error"
    http_status = 422
    default_message = (
        "Could not shorten the video to 60 seconds. Please upload a shorter video."
    )


class CompressionBudgetExceeded(IngestError):
    """Every compression step ran without getting under the size budget."""

    code = "compression_budget_exceeded"
    http_status = 422
    default_message = (
        "Could not compress file below 2MB limit. Please upload a smaller "
        "file or reduce quality before uploading."
    )


class ThumbnailError(IngestError):
    """Preview image could not be produced."""

    code = "thumbnail_error"
    http_status = 422
    default_message = "Could not create a preview for this file."


class StorageError(IngestError):
    """Disk or permission failure while handling ingestion files."""

    code = "storage_error"
    http_status = 500
    default_message = "Something went wrong while saving your upload. Please try again."


class ImageTooLarge(IngestError):
    """Image dimensions exceed the pixel bound the decoder will accept."""

    code = "image_too_large"
    http_status = 422
    default_message = "This image is too large to process. Please upload a smaller image."

    def __init__(self, detail: str = "", *, max_pixels: Optional[int] = None):
        user_message = None
        if max_pixels is not None:
            user_message = (
                f"Images larger than {max_pixels:,} pixels cannot be "
                "processed. Please upload a smaller image."
            )
        super().__init__(detail, user_message=user_message)
        self.max_pixels = max_pixels


class IngestCancelled(IngestError):
    """The owning request was aborted while the pipeline was running."""

    code = "cancelled"
    http_status = 499
    default_message = "The upload was cancelled."


class InternalIngestError(IngestError):
    """Unexpected failure inside a pipeline stage."""

    code = "internal_error"
    http_status = 500
    default_message = "Something went wrong while processing your upload. Please try again."
