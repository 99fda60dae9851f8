"""
Data model for one ingestion: the raw upload going in, the normalized
asset coming out, and the per-attempt records of the compression search.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, List, Optional


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


@dataclass
class RawUpload:
    """
    Bytes delivered by the routing layer plus what the client declared.

    Exactly one of ``stream`` / ``source_path`` is set. When ``consume``
    is true the orchestrator deletes ``source_path`` once it is done with
    the upload, whatever the outcome.
    """

    mime_type: str
    filename: str = "upload"
    declared_size: Optional[int] = None
    stream: Optional[BinaryIO] = None
    source_path: Optional[Path] = None
    consume: bool = False

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str, filename: str = "upload") -> "RawUpload":
        return cls(
            mime_type=mime_type,
            filename=filename,
            declared_size=len(data),
            stream=io.BytesIO(data),
        )

    @classmethod
    def from_stream(
        cls,
        stream: BinaryIO,
        mime_type: str,
        filename: str = "upload",
        declared_size: Optional[int] = None,
    ) -> "RawUpload":
        return cls(
            mime_type=mime_type,
            filename=filename,
            declared_size=declared_size,
            stream=stream,
        )

    @classmethod
    def from_path(cls, path: Path, mime_type: str, *, consume: bool = False) -> "RawUpload":
        path = Path(path)
        return cls(
            mime_type=mime_type,
            filename=path.name,
            declared_size=path.stat().st_size if path.exists() else None,
            source_path=path,
            consume=consume,
        )

    def __post_init__(self):
        if (self.stream is None) == (self.source_path is None):
            raise ValueError("RawUpload needs exactly one of stream or source_path")


@dataclass
class CompressionAttempt:
    """One step of a compression search: the knob used and what it produced."""

    parameter: str
    value: float
    byte_size: Optional[int]
    succeeded: bool = True


@dataclass
class CompressionResult:
    """
    Outcome of a size-reduction stage.

    ``path`` is the compliant file (the untouched input when no
    compression was needed) and ``extension`` the suffix matching the
    bytes that were actually written.
    """

    path: Path
    byte_size: int
    extension: str
    changed: bool
    attempts: List[CompressionAttempt] = field(default_factory=list)


@dataclass
class NormalizedAsset:
    """The only thing the pipeline hands to the rest of the system."""

    media_type: MediaType
    storage_path: str
    byte_size: int
    thumbnail_path: str
    duration_seconds: Optional[float] = None

    def __post_init__(self):
        if self.media_type is MediaType.VIDEO and self.duration_seconds is None:
            raise ValueError("video assets must carry a duration")
        if self.media_type is MediaType.IMAGE and self.duration_seconds is not None:
            raise ValueError("image assets have no duration")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mediaType": self.media_type.value,
            "storagePath": self.storage_path,
            "byteSize": self.byte_size,
            "thumbnailPath": self.thumbnail_path,
            "durationSeconds": (
                round(self.duration_seconds, 2)
                if self.duration_seconds is not None
                else None
            ),
        }
