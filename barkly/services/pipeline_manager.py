"""
Per-document processing runs.

A document is embedded and analysed by at most one run at a time, whether
the run belongs to a synchronous ``/process`` request or to a background
task.  ``claim`` reserves a document for the calling task; ``submit``
reserves it and schedules the run as an ``asyncio.Task``.  The status of the
latest background run stays available for polling after it ends.
"""
from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import enum
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set

logger = logging.getLogger(__name__)


class JobPhase(str, enum.Enum):
    QUEUED = "queued"
    EMBEDDING = "embedding"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobConflict(RuntimeError):
    """The document already has a processing run in progress."""


@dataclasses.dataclass
class JobStatus:
    """Progress of one run, written by the pipeline and read by pollers."""

    document_id: int
    chunks_total: int = 0
    phase: JobPhase = JobPhase.QUEUED
    chunks_done: int = 0
    errors: List[str] = dataclasses.field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    started_at: float = dataclasses.field(default_factory=time.monotonic)
    completed_at: Optional[float] = None

    @property
    def finished(self) -> bool:
        return self.phase in (JobPhase.COMPLETED, JobPhase.FAILED)

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at if self.completed_at else time.monotonic()
        return round(end - self.started_at, 2)

    def chunk_done(self, done: int) -> None:
        self.chunks_done = min(done, self.chunks_total) if self.chunks_total else done

    def fail(self, error: str) -> None:
        self.errors.append(error[:200])
        self.phase = JobPhase.FAILED


JobRunner = Callable[[JobStatus], Awaitable[Optional[Dict[str, Any]]]]


class DocumentJobs:
    """Registry of running and finished processing runs, keyed by document id."""

    def __init__(self) -> None:
        self._running: Dict[int, JobStatus] = {}
        self._latest: Dict[int, JobStatus] = {}
        # Strong references so the event loop does not drop pending tasks
        self._tasks: Set[asyncio.Task] = set()

    def is_running(self, document_id: int) -> bool:
        return document_id in self._running

    def get_status(self, document_id: int) -> Optional[JobStatus]:
        """Status of the latest background run, or ``None`` if there was none."""
        return self._latest.get(document_id)

    @contextlib.contextmanager
    def claim(self, document_id: int, chunks_total: int = 0) -> Iterator[JobStatus]:
        """Hold *document_id* for a run inside the current task."""
        status = self._reserve(document_id, chunks_total)
        try:
            yield status
        except Exception as exc:
            status.fail(str(exc))
            raise
        else:
            if not status.finished:
                status.phase = JobPhase.COMPLETED
        finally:
            self._release(status)

    def submit(self, document_id: int, runner: JobRunner, chunks_total: int = 0) -> JobStatus:
        """
        Run ``runner(status)`` as a background task for *document_id*.

        The value the runner returns becomes ``status.result``.  A runner
        that raises or is cancelled leaves the job ``failed``.  Raises
        JobConflict if the document is busy.
        """
        status = self._reserve(document_id, chunks_total)
        self._latest[document_id] = status

        async def _run() -> None:
            try:
                result = await runner(status)
            except Exception as exc:
                logger.error(
                    "Processing job failed for document %d: %s", document_id, exc, exc_info=True
                )
                status.fail(f"job crash: {exc}")
            else:
                if result is not None:
                    status.result = result
                if not status.finished:
                    status.phase = JobPhase.COMPLETED
            finally:
                self._release(status)

        task = asyncio.create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("Processing job queued for document %d (%d chunks)", document_id, chunks_total)
        return status

    def _reserve(self, document_id: int, chunks_total: int) -> JobStatus:
        if self.is_running(document_id):
            raise JobConflict(f"Processing already running for document {document_id}.")
        status = JobStatus(document_id=document_id, chunks_total=chunks_total)
        self._running[document_id] = status
        return status

    def _release(self, status: JobStatus) -> None:
        status.completed_at = time.monotonic()
        if not status.finished:
            status.fail(f"stopped during {status.phase.value}")
        self._running.pop(status.document_id, None)


job_manager = DocumentJobs()
