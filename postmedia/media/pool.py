"""
Bounded worker pool for ingestions.

Encoding is CPU-heavy, so the number of ingestions running at once is
capped at the configured worker count. Every submission gets its own
cancellation event; setting it stops the running encoder and lets the
orchestrator clean up before the future resolves. A submission that is
cancelled while still queued never runs and resolves immediately.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Optional

from .models import RawUpload
from .orchestrator import IngestionOrchestrator, IngestOutcome

logger = logging.getLogger(__name__)


@dataclass
class IngestTicket:
    """Handle for one submitted ingestion."""

    future: Future
    cancel_event: threading.Event = field(default_factory=threading.Event)
    abandoned: Optional[IngestOutcome] = None

    def cancel(self) -> bool:
        """
        Ask the ingestion to stop.

        Returns True when it was still queued and will never run. A running
        ingestion cleans up before its future resolves.
        """
        self.cancel_event.set()
        return self.future.cancel()

    def result(self, timeout: Optional[float] = None) -> IngestOutcome:
        if self.future.cancelled() and self.abandoned is not None:
            return self.abandoned
        return self.future.result(timeout=timeout)


class IngestionPool:
    def __init__(self, orchestrator: IngestionOrchestrator, workers: Optional[int] = None):
        self.orchestrator = orchestrator
        self.workers = workers or orchestrator.config.workers
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="ingest"
        )

    def submit(self, upload: RawUpload) -> IngestTicket:
        cancel_event = threading.Event()
        future = self._executor.submit(self.orchestrator.ingest, upload, cancel_event)
        ticket = IngestTicket(future=future, cancel_event=cancel_event)

        def dropped(done: Future) -> None:
            # Runs in the cancelling thread, before Future.cancel() returns
            if done.cancelled():
                ticket.abandoned = self.orchestrator.abandon(upload, "cancelled while queued")

        future.add_done_callback(dropped)
        return ticket

    def ingest(self, upload: RawUpload, timeout: Optional[float] = None) -> IngestOutcome:
        """
        Run one ingestion on the pool and wait for its outcome.

        When ``timeout`` elapses the ingestion is cancelled. A queued one
        returns its cancelled outcome at once; a running one returns it
        after the worker has cleaned up.
        """
        ticket = self.submit(upload)
        try:
            return ticket.result(timeout=timeout)
        except FutureTimeout:
            queued = ticket.cancel()
            logger.warning(
                f"Ingestion of {upload.filename} exceeded {timeout:g}s "
                f"({'queued' if queued else 'running'}), cancelling"
            )
            return ticket.result()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "IngestionPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
