"""
Config Loader — Build the pipeline configuration from the environment.

A ``.env`` file in the project root is loaded first (without overriding
variables that are already set), then the ``POSTMEDIA_*`` variables are
read.

## Environment Variables

- POSTMEDIA_UPLOAD_ROOT: storage root (default: ./uploads)
- POSTMEDIA_PUBLIC_PREFIX: prefix for reported paths (default: /uploads)
- POSTMEDIA_FFMPEG / POSTMEDIA_FFPROBE: encoder binaries (default: on PATH)
- POSTMEDIA_ENCODE_TIMEOUT: seconds per encoder call (default: 900)
- POSTMEDIA_INGEST_TIMEOUT: seconds a caller waits for one ingestion (default: none)
- POSTMEDIA_WORKERS: concurrent ingestions (default: CPU count)
- POSTMEDIA_MAX_UPLOAD_BYTES: raw request cap (default: 1 GiB)
- POSTMEDIA_POLICY_FILE: YAML policy overrides (optional)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from ..policy.loader import load_media_policy
from ..policy.models import MediaPolicy

logger = logging.getLogger(__name__)

DEFAULT_MAX_UPLOAD_BYTES = 1024 * 1024 * 1024  # 1 GB raw, compressed afterwards
DEFAULT_ENCODE_TIMEOUT = 900


def _default_workers() -> int:
    return os.cpu_count() or 1


@dataclass
class PipelineConfig:
    """Everything the pipeline needs that is not part of the media policy."""

    upload_root: Path = field(default_factory=lambda: Path("uploads"))
    public_prefix: str = "/uploads"
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    encode_timeout: float = DEFAULT_ENCODE_TIMEOUT
    ingest_timeout: Optional[float] = None
    workers: int = field(default_factory=_default_workers)
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    policy: MediaPolicy = field(default_factory=MediaPolicy)

    def __post_init__(self):
        self.upload_root = Path(self.upload_root)
        if self.workers < 1:
            raise ValueError("workers must be >= 1")

    @property
    def incoming_dir(self) -> Path:
        return self.upload_root / ".incoming"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upload_root": str(self.upload_root),
            "public_prefix": self.public_prefix,
            "ffmpeg_bin": self.ffmpeg_bin,
            "ffprobe_bin": self.ffprobe_bin,
            "encode_timeout": self.encode_timeout,
            "ingest_timeout": self.ingest_timeout,
            "workers": self.workers,
            "max_upload_bytes": self.max_upload_bytes,
            "policy": self.policy.model_dump(),
        }


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def load_config(env_file: Optional[Path] = None) -> PipelineConfig:
    """
    Load configuration from the environment.

    Args:
        env_file: Explicit .env path. Defaults to the project root .env.

    Returns:
        PipelineConfig with the media policy already loaded.
    """
    dotenv_path = env_file or (_project_root() / ".env")
    if dotenv_path.exists():
        load_dotenv(dotenv_path)

    policy_file = os.environ.get("POSTMEDIA_POLICY_FILE")
    policy = load_media_policy(Path(policy_file) if policy_file else None)

    try:
        encode_timeout = float(
            os.environ.get("POSTMEDIA_ENCODE_TIMEOUT", DEFAULT_ENCODE_TIMEOUT)
        )
    except ValueError:
        logger.warning("Ignoring invalid POSTMEDIA_ENCODE_TIMEOUT")
        encode_timeout = DEFAULT_ENCODE_TIMEOUT

    raw_ingest_timeout = os.environ.get("POSTMEDIA_INGEST_TIMEOUT", "").strip()
    try:
        ingest_timeout = float(raw_ingest_timeout) if raw_ingest_timeout else None
    except ValueError:
        logger.warning(f"Ignoring invalid POSTMEDIA_INGEST_TIMEOUT={raw_ingest_timeout!r}")
        ingest_timeout = None

    config = PipelineConfig(
        upload_root=Path(os.environ.get("POSTMEDIA_UPLOAD_ROOT", "uploads")),
        public_prefix=os.environ.get("POSTMEDIA_PUBLIC_PREFIX", "/uploads"),
        ffmpeg_bin=os.environ.get("POSTMEDIA_FFMPEG", "ffmpeg"),
        ffprobe_bin=os.environ.get("POSTMEDIA_FFPROBE", "ffprobe"),
        encode_timeout=encode_timeout,
        ingest_timeout=ingest_timeout,
        workers=max(1, _int_env("POSTMEDIA_WORKERS", _default_workers())),
        max_upload_bytes=_int_env("POSTMEDIA_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        policy=policy,
    )
    logger.debug(
        f"Config loaded: root={config.upload_root}, workers={config.workers}, "
        f"policy_file={policy_file or '-'}"
    )
    return config
