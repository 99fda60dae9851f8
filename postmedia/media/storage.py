"""
Final asset storage.

Layout under the upload root::

    images/file-<ms>-<rand>.<ext>
    videos/file-<ms>-<rand>.<ext>
    thumbnails/thumbnail-file-<ms>-<rand>.jpg

Names are made unique by timestamp + random suffix and reserved with an
exclusive create before the finished file is swapped in, so concurrent
ingestions never need a lock.
"""

from __future__ import annotations

import logging
import os
import secrets
import time
from pathlib import Path

from .errors import StorageError
from .models import MediaType

logger = logging.getLogger(__name__)

MAX_NAME_ATTEMPTS = 5


class MediaStore:
    """Directory-backed store for finished assets and thumbnails."""

    def __init__(self, root: Path, public_prefix: str = "/uploads"):
        self.root = Path(root)
        self.public_prefix = "/" + public_prefix.strip("/") if public_prefix.strip("/") else ""

    @property
    def images_dir(self) -> Path:
        return self.root / "images"

    @property
    def videos_dir(self) -> Path:
        return self.root / "videos"

    @property
    def thumbnails_dir(self) -> Path:
        return self.root / "thumbnails"

    def ensure_structure(self) -> None:
        try:
            for directory in (self.images_dir, self.videos_dir, self.thumbnails_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"cannot create storage directories under {self.root}: {e}") from e

    def dir_for(self, media_type: MediaType) -> Path:
        return self.images_dir if media_type is MediaType.IMAGE else self.videos_dir

    @staticmethod
    def unique_name(extension: str, prefix: str = "file") -> str:
        suffix = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9):09d}"
        return f"{prefix}-{suffix}{extension}"

    def promote(self, src: Path, media_type: MediaType, extension: str) -> Path:
        """Move a finished media file from the workspace into its final directory."""
        return self._promote(src, self.dir_for(media_type), lambda: self.unique_name(extension))

    def promote_thumbnail(self, src: Path, asset_path: Path) -> Path:
        """Move a finished thumbnail into place, named after its asset."""
        name = f"thumbnail-{asset_path.stem}.jpg"
        return self._promote(src, self.thumbnails_dir, lambda: name, unique=False)

    def _promote(self, src: Path, directory: Path, name_factory, unique: bool = True) -> Path:
        self.ensure_structure()
        for _ in range(MAX_NAME_ATTEMPTS):
            target = directory / name_factory()
            try:
                # Reserve the name, then swap the real file over the placeholder
                fd = os.open(target, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
                os.close(fd)
            except FileExistsError:
                if not unique:
                    raise StorageError(f"{target.name} already exists")
                continue
            except OSError as e:
                raise StorageError(f"cannot reserve {target}: {e}") from e

            try:
                os.replace(src, target)
            except OSError as e:
                target.unlink(missing_ok=True)
                raise StorageError(f"cannot move {src.name} to {target}: {e}") from e
            return target

        raise StorageError(f"could not find a free name in {directory}")

    def discard(self, path: Path) -> None:
        """Remove a stored file (used to roll back a half-finished promotion)."""
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove stored file {path}: {e}")

    def public_path(self, path: Path) -> str:
        relative = Path(path).resolve().relative_to(self.root.resolve()).as_posix()
        return f"{self.public_prefix}/{relative}"

    def resolve(self, public_path: str) -> Path:
        """Map a reported path back to the file on disk."""
        relative = public_path
        if self.public_prefix and relative.startswith(self.public_prefix + "/"):
            relative = relative[len(self.public_prefix) + 1:]
        candidate = (self.root / relative.lstrip("/")).resolve()
        if self.root.resolve() not in candidate.parents:
            raise ValueError(f"{public_path!r} is outside the upload root")
        return candidate
