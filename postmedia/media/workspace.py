"""
Per-ingestion scratch directory.

Everything an ingestion produces before promotion (the received upload,
trimmed copies, compression attempts, extracted frames, thumbnails) is
created inside one private directory under ``<upload root>/.incoming``.
Removing that directory is the whole cleanup, and it happens on every
exit path. The directory sits on the same filesystem as the final
storage directories so promotion is a single ``os.replace``.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Optional

from .errors import StorageError
from .models import RawUpload

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MiB


def new_ingest_id() -> str:
    return uuid.uuid4().hex[:12]


class IngestWorkspace:
    """Scratch directory owned by exactly one ingestion call."""

    def __init__(self, directory: Path, ingest_id: str):
        self.directory = directory
        self.ingest_id = ingest_id

    @classmethod
    def create(cls, incoming_dir: Path, ingest_id: Optional[str] = None) -> "IngestWorkspace":
        ingest_id = ingest_id or new_ingest_id()
        directory = Path(incoming_dir) / ingest_id
        try:
            directory.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise StorageError(f"cannot create workspace {directory}: {e}") from e
        return cls(directory, ingest_id)

    def path(self, name: str) -> Path:
        return self.directory / name

    def receive(self, upload: RawUpload, suffix: str) -> Path:
        """Copy the upload's bytes into the workspace as ``source<suffix>``."""
        target = self.path(f"source{suffix}")
        try:
            if upload.source_path is not None:
                shutil.copyfile(upload.source_path, target)
            else:
                with target.open("wb") as sink:
                    shutil.copyfileobj(upload.stream, sink, CHUNK_SIZE)
        except OSError as e:
            raise StorageError(f"cannot store upload in workspace: {e}") from e

        logger.debug(
            f"Received {upload.filename} → {target.name} ({target.stat().st_size:,} bytes)",
            extra={"ingest_id": self.ingest_id},
        )
        return target

    def cleanup(self) -> None:
        if self.directory.exists():
            shutil.rmtree(self.directory, ignore_errors=True)
            if self.directory.exists():
                logger.error(
                    f"Workspace {self.directory} could not be fully removed",
                    extra={"ingest_id": self.ingest_id},
                )


def replace_file(src: Path, dst: Path) -> Path:
    """Atomically move ``src`` over ``dst`` (same filesystem)."""
    try:
        os.replace(src, dst)
    except OSError as e:
        raise StorageError(f"cannot replace {dst.name}: {e}") from e
    return dst


def write_atomic(dst: Path, data: bytes) -> Path:
    """Write ``data`` next to ``dst`` then swap it into place."""
    part = dst.with_name(f".{dst.name}.part")
    try:
        part.write_bytes(data)
        os.replace(part, dst)
    except OSError as e:
        part.unlink(missing_ok=True)
        raise StorageError(f"cannot write {dst.name}: {e}") from e
    return dst
