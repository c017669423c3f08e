import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from phoneindex.catalog.models import DatabaseMetadata
from phoneindex.indexer.exceptions import IndexerBusyError
from phoneindex.indexer.indexer import Indexer
from phoneindex.indexer.models import IndexRequest
from phoneindex.indexer.progress import IndexingProgress, IndexingStats, ProgressCallback
from phoneindex.logging.logger import Log, format_bytes, format_duration


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class IndexingJob:
    """State of one ingestion run, owned by the supervisor."""

    request: IndexRequest
    status: JobStatus = JobStatus.PENDING
    stats: IndexingStats = field(default_factory=IndexingStats)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    last_progress: IndexingProgress | None = None
    metadata: DatabaseMetadata | None = None
    error: str | None = None


class IndexingSupervisor:
    """Single job slot per process: at most one ingestion runs at a time.

    The slot is claimed synchronously, so a second request fails with
    IndexerBusyError before any work starts.
    """

    def __init__(self, indexer: Indexer) -> None:
        self._indexer = indexer
        self._slot = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="indexer")
        self._job: IndexingJob | None = None

    @property
    def busy(self) -> bool:
        return self._slot.locked()

    @property
    def current_job(self) -> IndexingJob | None:
        """The active job, or the most recent one once the slot is free."""
        return self._job

    def run(
        self, request: IndexRequest, on_progress: ProgressCallback | None = None
    ) -> DatabaseMetadata:
        """Run an ingestion in the calling thread.

        Raises:
            IndexerBusyError: if another ingestion is active.
        """
        job = self._claim(request)
        try:
            return self._execute(job, on_progress)
        finally:
            self._slot.release()

    def submit(
        self, request: IndexRequest, on_progress: ProgressCallback | None = None
    ) -> "Future[DatabaseMetadata]":
        """Start an ingestion on the background thread and return its future.

        Raises:
            IndexerBusyError: if another ingestion is active.
        """
        job = self._claim(request)
        try:
            return self._executor.submit(self._execute_and_release, job, on_progress)
        except RuntimeError:
            self._slot.release()
            raise

    def status(self) -> dict[str, Any]:
        """Idle, or a human-readable snapshot of the running job."""
        job = self._job
        if job is None or not self.busy or job.status is not JobStatus.PROCESSING:
            return {"status": "idle"}
        stats = job.stats
        progress = job.last_progress
        percent = 0
        if stats.total_bytes > 0:
            percent = min(100, round(stats.bytes_processed / stats.total_bytes * 100))
        elapsed = (datetime.now(timezone.utc) - job.created_at).total_seconds()
        remaining = progress.estimated_seconds_remaining if progress else None
        return {
            "status": JobStatus.PROCESSING.value,
            "databaseId": job.request.database_id,
            "source": job.request.source,
            "percentComplete": percent,
            "processedLines": stats.processed_lines,
            "recordsIndexed": stats.records_indexed,
            "skippedLines": stats.skipped_lines,
            "prefixesFound": len(stats.prefixes),
            "linesPerSecond": progress.lines_per_second if progress else 0,
            "elapsed": format_duration(elapsed),
            "estimatedRemaining": format_duration(remaining) if remaining is not None else None,
            "bytesProcessed": format_bytes(stats.bytes_processed),
            "totalBytes": format_bytes(stats.total_bytes),
        }

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _claim(self, request: IndexRequest) -> IndexingJob:
        if not self._slot.acquire(blocking=False):
            active = self._job.request.database_id if self._job else "unknown"
            raise IndexerBusyError(
                f"Indexing already in progress (database {active}); "
                f"rejected request for {request.database_id}"
            )
        job = IndexingJob(request=request)
        self._job = job
        return job

    def _execute_and_release(
        self, job: IndexingJob, on_progress: ProgressCallback | None
    ) -> DatabaseMetadata:
        try:
            return self._execute(job, on_progress)
        finally:
            self._slot.release()

    def _execute(
        self, job: IndexingJob, on_progress: ProgressCallback | None
    ) -> DatabaseMetadata:
        job.status = JobStatus.PROCESSING
        consumer = on_progress

        def track(progress: IndexingProgress) -> None:
            nonlocal consumer
            job.last_progress = progress
            if consumer is None:
                return
            try:
                consumer(progress)
            except Exception as exc:
                Log.warning(f"Progress consumer failed, detaching it: {exc}")
                consumer = None

        try:
            metadata = self._indexer.index(job.request, stats=job.stats, on_progress=track)
        except Exception as exc:
            job.status = JobStatus.FAILED
            job.error = str(exc)
            job.finished_at = datetime.now(timezone.utc)
            Log.error(
                f"Indexing of {job.request.database_id} failed: {exc}",
                source=job.request.source,
            )
            raise
        job.status = JobStatus.DONE
        job.metadata = metadata
        job.finished_at = datetime.now(timezone.utc)
        return metadata
