"""
Ingestion Orchestrator — one upload in, one normalized asset (or one
classified failure) out.

Stages, strictly in order:

    Received → Classified → (video: DurationChecked) → SizeCompliant
             → Thumbnailed → Finalized

Any stage may end the run in Failed(reason). All intermediate files live
in the ingestion's workspace, which is deleted on every exit path; the
final media file and its thumbnail are promoted into storage only after
every policy check has passed.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from ..config.loader import PipelineConfig
from ..observability.metrics import MetricsRegistry, metrics as default_metrics
from .classifier import classify, extension_for, normalize_mime, verify_image_signature
from .duration import limit_duration, probe_duration
from .errors import (
    CompressionBudgetExceeded,
    IngestCancelled,
    IngestError,
    InternalIngestError,
    StorageError,
)
from .ffmpeg import FFmpeg
from .image_compress import compress_image
from .models import CompressionResult, MediaType, NormalizedAsset, RawUpload
from .storage import MediaStore
from .thumbnail import thumbnail_for_image, thumbnail_for_video
from .video_transcode import transcode_video
from .workspace import IngestWorkspace, new_ingest_id

logger = logging.getLogger(__name__)


class IngestStage(str, Enum):
    RECEIVED = "received"
    CLASSIFIED = "classified"
    DURATION_CHECKED = "duration_checked"
    SIZE_COMPLIANT = "size_compliant"
    THUMBNAILED = "thumbnailed"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass
class IngestOutcome:
    """
    Tagged result of one ingestion.

    Exactly one of ``asset`` / ``error`` is set. ``stage`` is the last
    stage reached; for failures, ``failed_at`` is the last stage that
    completed before the error.
    """

    ingest_id: str
    stage: IngestStage
    asset: Optional[NormalizedAsset] = None
    error: Optional[IngestError] = None
    failed_at: Optional[IngestStage] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> NormalizedAsset:
        """Return the asset or raise the classified error."""
        if self.error is not None:
            raise self.error
        assert self.asset is not None
        return self.asset

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "ingest_id": self.ingest_id,
            "stage": self.stage.value,
            "success": self.ok,
        }
        if self.asset is not None:
            result["media"] = self.asset.to_dict()
        if self.error is not None:
            result.update(self.error.to_dict())
            result["failed_at"] = self.failed_at.value if self.failed_at else None
        return result


class _Run:
    """Mutable bookkeeping for one call: current stage + log context."""

    def __init__(self, ingest_id: str):
        self.ingest_id = ingest_id
        self.stage = IngestStage.RECEIVED
        self.media_type: Optional[MediaType] = None
        self.started = time.monotonic()

    def extra(self) -> Dict[str, Any]:
        return {
            "ingest_id": self.ingest_id,
            "stage": self.stage.value,
            "media_type": self.media_type.value if self.media_type else None,
        }

    def advance(self, stage: IngestStage) -> None:
        self.stage = stage
        logger.info(f"Stage → {stage.value}", extra=self.extra())


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise IngestCancelled("cancelled between stages")


class IngestionOrchestrator:
    """Run uploads through classify → duration → size → thumbnail → store."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        ffmpeg: Optional[FFmpeg] = None,
        store: Optional[MediaStore] = None,
        registry: Optional[MetricsRegistry] = None,
    ):
        self.config = config or PipelineConfig()
        self.policy = self.config.policy
        self.ffmpeg = ffmpeg or FFmpeg(
            ffmpeg_bin=self.config.ffmpeg_bin,
            ffprobe_bin=self.config.ffprobe_bin,
            timeout=self.config.encode_timeout,
        )
        self.store = store or MediaStore(self.config.upload_root, self.config.public_prefix)
        self.metrics = registry or default_metrics

    def ingest(
        self,
        upload: RawUpload,
        cancel: Optional[threading.Event] = None,
    ) -> IngestOutcome:
        """
        Normalize one upload.

        Never raises for pipeline failures: every error ends up in the
        returned outcome after cleanup has run.
        """
        run = _Run(new_ingest_id())
        workspace: Optional[IngestWorkspace] = None
        in_flight = self.metrics.gauge("ingest_in_flight")
        in_flight.inc()
        logger.info(
            f"Ingest started: {upload.filename} ({upload.mime_type}, "
            f"declared {upload.declared_size if upload.declared_size is not None else '?'} bytes)",
            extra=run.extra(),
        )

        try:
            run.media_type = classify(upload.mime_type, self.policy)
            run.advance(IngestStage.CLASSIFIED)

            workspace = IngestWorkspace.create(self.config.incoming_dir, run.ingest_id)
            source = workspace.receive(upload, extension_for(upload.mime_type))

            if run.media_type is MediaType.IMAGE:
                asset = self._ingest_image(run, workspace, source, upload.mime_type, cancel)
            else:
                asset = self._ingest_video(run, workspace, source, cancel)

            outcome = IngestOutcome(run.ingest_id, IngestStage.FINALIZED, asset=asset)

        except IngestError as e:
            outcome = self._failed(run, e)
        except OSError as e:
            outcome = self._failed(run, StorageError(f"{type(e).__name__}: {e}"), cause=e)
        except Exception as e:
            outcome = self._failed(
                run, InternalIngestError(f"{type(e).__name__}: {e}"), cause=e
            )
        finally:
            if workspace is not None:
                workspace.cleanup()
            self._discard_upload_source(upload, run)
            in_flight.dec()

        self._record(run, outcome)
        return outcome

    def abandon(self, upload: RawUpload, reason: str) -> IngestOutcome:
        """Outcome for an upload cancelled before any stage ran."""
        run = _Run(new_ingest_id())
        outcome = self._failed(run, IngestCancelled(reason))
        self._discard_upload_source(upload, run)
        self._record(run, outcome)
        return outcome

    # ── Stages ───────────────────────────────────────────────

    def _ingest_image(
        self,
        run: _Run,
        workspace: IngestWorkspace,
        source: Path,
        mime_type: str,
        cancel: Optional[threading.Event],
    ) -> NormalizedAsset:
        if self.policy.verify_image_signatures:
            verify_image_signature(source, normalize_mime(mime_type))

        _check_cancel(cancel)
        result = compress_image(source, source.stat().st_size, self.policy)
        self._require_budget(result)
        self.metrics.increment(
            "compression_attempts_total", len(result.attempts), labels={"media_type": "image"}
        )
        run.advance(IngestStage.SIZE_COMPLIANT)

        _check_cancel(cancel)
        thumb = thumbnail_for_image(
            result.path,
            workspace.path("thumbnail.jpg"),
            self.policy.thumbnail,
            max_pixels=self.policy.image.max_pixels,
        )
        run.advance(IngestStage.THUMBNAILED)

        return self._finalize(run, result, thumb, duration=None)

    def _ingest_video(
        self,
        run: _Run,
        workspace: IngestWorkspace,
        source: Path,
        cancel: Optional[threading.Event],
    ) -> NormalizedAsset:
        check = limit_duration(source, self.ffmpeg, self.policy.video, cancel)
        run.advance(IngestStage.DURATION_CHECKED)

        # Trimming changes the byte size, so size is measured afresh
        result = transcode_video(
            check.path, check.path.stat().st_size, self.ffmpeg, self.policy, cancel
        )
        self._require_budget(result)
        self.metrics.increment(
            "compression_attempts_total", len(result.attempts), labels={"media_type": "video"}
        )

        duration = check.duration
        if result.changed:
            duration = probe_duration(result.path, self.ffmpeg, cancel)
            if duration > self.policy.video.max_duration_seconds:
                # Re-encoded audio can pad the clip past the cut point
                recheck = limit_duration(result.path, self.ffmpeg, self.policy.video, cancel)
                result.path = recheck.path
                result.extension = recheck.path.suffix
                self._require_budget(result)
                duration = recheck.duration
        run.advance(IngestStage.SIZE_COMPLIANT)

        thumb = thumbnail_for_video(
            result.path,
            workspace.path("thumbnail.jpg"),
            self.ffmpeg,
            self.policy.thumbnail,
            duration=duration,
            cancel=cancel,
        )
        run.advance(IngestStage.THUMBNAILED)

        return self._finalize(run, result, thumb, duration=duration)

    def _require_budget(self, result: CompressionResult) -> None:
        actual = result.path.stat().st_size
        if actual > self.policy.max_bytes:
            raise CompressionBudgetExceeded(
                f"{result.path.name} is {actual} bytes after size control"
            )
        result.byte_size = actual

    def _finalize(
        self,
        run: _Run,
        result: CompressionResult,
        thumb: Path,
        duration: Optional[float],
    ) -> NormalizedAsset:
        media_type = run.media_type
        assert media_type is not None

        final_path = self.store.promote(result.path, media_type, result.extension)
        try:
            thumb_path = self.store.promote_thumbnail(thumb, final_path)
        except StorageError:
            self.store.discard(final_path)
            raise

        asset = NormalizedAsset(
            media_type=media_type,
            storage_path=self.store.public_path(final_path),
            byte_size=result.byte_size,
            thumbnail_path=self.store.public_path(thumb_path),
            duration_seconds=duration if media_type is MediaType.VIDEO else None,
        )
        run.advance(IngestStage.FINALIZED)
        logger.info(
            f"Ingest finished: {asset.storage_path} ({asset.byte_size:,} bytes)",
            extra=run.extra(),
        )
        return asset

    # ── Failure + bookkeeping ────────────────────────────────

    def _failed(
        self, run: _Run, error: IngestError, cause: Optional[BaseException] = None
    ) -> IngestOutcome:
        failed_at = run.stage
        extra = run.extra()
        if isinstance(error, (StorageError, InternalIngestError)):
            logger.error(
                f"Ingest failed at {failed_at.value}: {error.code}: {error}",
                exc_info=cause or error,
                extra=extra,
            )
        else:
            logger.warning(
                f"Ingest failed at {failed_at.value}: {error.code}: {error}",
                extra=extra,
            )
        run.stage = IngestStage.FAILED
        return IngestOutcome(
            run.ingest_id, IngestStage.FAILED, error=error, failed_at=failed_at
        )

    def _discard_upload_source(self, upload: RawUpload, run: _Run) -> None:
        if not upload.consume or upload.source_path is None:
            return
        try:
            Path(upload.source_path).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove upload source {upload.source_path}: {e}", extra=run.extra())

    def _record(self, run: _Run, outcome: IngestOutcome) -> None:
        media_type = run.media_type.value if run.media_type else "unknown"
        self.metrics.increment(
            "ingest_total",
            labels={"media_type": media_type, "outcome": "ok" if outcome.ok else "failed"},
        )
        if outcome.error is not None:
            self.metrics.increment("ingest_failures_total", labels={"code": outcome.error.code})
        self.metrics.timing("ingest_duration_seconds", time.monotonic() - run.started)
