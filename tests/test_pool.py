"""
Tests for the bounded ingestion pool.
"""

import io
import threading
import time

import pytest

from postmedia.config.loader import PipelineConfig
from postmedia.media.errors import IngestCancelled
from postmedia.media.models import RawUpload
from postmedia.media.orchestrator import IngestionOrchestrator, IngestOutcome, IngestStage
from postmedia.media.pool import IngestionPool


class BlockingOrchestrator:
    """Holds every ingestion until it is cancelled or released."""

    def __init__(self, workers: int = 1):
        self.config = PipelineConfig(workers=workers)
        self.release = threading.Event()
        self.started = threading.Semaphore(0)
        self.running = 0
        self.max_running = 0
        self.abandoned = []
        self._lock = threading.Lock()

    def ingest(self, upload, cancel=None) -> IngestOutcome:
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        self.started.release()
        try:
            while not self.release.is_set():
                if cancel is not None and cancel.is_set():
                    return IngestOutcome(
                        "blocked", IngestStage.FAILED, error=IngestCancelled("cancelled")
                    )
                time.sleep(0.01)
            return IngestOutcome("blocked", IngestStage.FINALIZED)
        finally:
            with self._lock:
                self.running -= 1

    def abandon(self, upload, reason) -> IngestOutcome:
        self.abandoned.append(upload)
        return IngestOutcome(
            "dropped", IngestStage.FAILED, error=IngestCancelled(reason),
            failed_at=IngestStage.RECEIVED,
        )


def _upload() -> RawUpload:
    return RawUpload.from_stream(io.BytesIO(b"x"), "image/png", "x.png")


class TestIngestionPool:

    def test_runs_real_orchestrator(self, pipeline_config, fake_ffmpeg, registry):
        from PIL import Image

        buf = io.BytesIO()
        Image.new("RGB", (64, 64), (255, 0, 0)).save(buf, format="PNG")
        orchestrator = IngestionOrchestrator(pipeline_config, ffmpeg=fake_ffmpeg, registry=registry)

        with IngestionPool(orchestrator) as pool:
            outcome = pool.ingest(RawUpload.from_bytes(buf.getvalue(), "image/png"))

        assert outcome.ok
        assert pool.workers == pipeline_config.workers

    def test_worker_bound(self):
        orchestrator = BlockingOrchestrator(workers=2)
        pool = IngestionPool(orchestrator)
        tickets = [pool.submit(_upload()) for _ in range(5)]

        orchestrator.started.acquire(timeout=5)
        orchestrator.started.acquire(timeout=5)
        time.sleep(0.1)
        assert orchestrator.max_running == 2

        orchestrator.release.set()
        assert all(t.result(timeout=5).ok for t in tickets)
        assert orchestrator.max_running == 2
        pool.shutdown()

    def test_cancel_running(self):
        orchestrator = BlockingOrchestrator()
        pool = IngestionPool(orchestrator)
        ticket = pool.submit(_upload())
        assert orchestrator.started.acquire(timeout=5)

        ticket.cancel()

        outcome = ticket.result(timeout=5)
        assert isinstance(outcome.error, IngestCancelled)
        pool.shutdown()

    def test_cancel_queued(self):
        orchestrator = BlockingOrchestrator(workers=1)
        pool = IngestionPool(orchestrator)
        first = pool.submit(_upload())
        second = pool.submit(_upload())
        assert orchestrator.started.acquire(timeout=5)

        assert second.cancel()
        assert second.future.cancelled()
        outcome = second.result()
        assert isinstance(outcome.error, IngestCancelled)
        assert outcome.failed_at is IngestStage.RECEIVED
        assert len(orchestrator.abandoned) == 1

        orchestrator.release.set()
        assert first.result(timeout=5).ok
        pool.shutdown()

    def test_timeout_cancels_and_waits(self):
        orchestrator = BlockingOrchestrator()
        pool = IngestionPool(orchestrator)

        outcome = pool.ingest(_upload(), timeout=0.1)

        assert isinstance(outcome.error, IngestCancelled)
        assert orchestrator.running == 0
        pool.shutdown()

    def test_timeout_while_queued_returns_immediately(self):
        orchestrator = BlockingOrchestrator(workers=1)
        pool = IngestionPool(orchestrator)
        first = pool.submit(_upload())
        assert orchestrator.started.acquire(timeout=5)

        started = time.monotonic()
        outcome = pool.ingest(_upload(), timeout=0.1)
        elapsed = time.monotonic() - started

        assert elapsed < 1.0
        assert isinstance(outcome.error, IngestCancelled)
        assert len(orchestrator.abandoned) == 1
        assert orchestrator.max_running == 1

        orchestrator.release.set()
        assert first.result(timeout=5).ok
        pool.shutdown()

    def test_explicit_worker_count(self):
        pool = IngestionPool(BlockingOrchestrator(workers=8), workers=3)
        assert pool.workers == 3
        pool.shutdown()
