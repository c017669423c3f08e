import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from phoneindex.logging.logger import Log, format_bytes, format_duration


@dataclass
class IndexingStats:
    """Run-scoped counters; a fresh instance is created for every run."""

    total_bytes: int = 0
    processed_lines: int = 0
    bytes_processed: int = 0
    records_indexed: int = 0
    prefixes: set[str] = field(default_factory=set)
    skipped: Counter[str] = field(default_factory=Counter)
    started_at: float | None = None

    @property
    def skipped_lines(self) -> int:
        return sum(self.skipped.values())


@dataclass(frozen=True)
class IndexingProgress:
    """Snapshot pushed to progress consumers."""

    percent_complete: int
    processed_lines: int
    records_indexed: int
    skipped_lines: int
    prefixes_found: int
    bytes_processed: int
    total_bytes: int
    lines_per_second: int
    estimated_seconds_remaining: float | None
    elapsed_seconds: float
    is_final: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "percentComplete": self.percent_complete,
            "processedLines": self.processed_lines,
            "recordsIndexed": self.records_indexed,
            "skippedLines": self.skipped_lines,
            "prefixesFound": self.prefixes_found,
            "bytesProcessed": self.bytes_processed,
            "totalBytes": self.total_bytes,
            "linesPerSecond": self.lines_per_second,
            "estimatedSecondsRemaining": self.estimated_seconds_remaining,
            "elapsedSeconds": self.elapsed_seconds,
            "isFinal": self.is_final,
        }


ProgressCallback = Callable[[IndexingProgress], None]


class ProgressReporter:
    """Emits IndexingProgress snapshots every ``interval_seconds`` plus a final one.

    A consumer callback that raises is treated as disconnected and receives
    no further snapshots.
    """

    def __init__(
        self,
        stats: IndexingStats,
        interval_seconds: float,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stats = stats
        self._interval = interval_seconds
        self._on_progress = on_progress
        self._clock = clock
        self._last_time = 0.0
        self._last_lines = 0

    def start(self) -> None:
        now = self._clock()
        self._stats.started_at = now
        self._last_time = now
        self._last_lines = self._stats.processed_lines

    def maybe_report(self) -> IndexingProgress | None:
        if self._clock() - self._last_time < self._interval:
            return None
        return self.report()

    def report(self, final: bool = False) -> IndexingProgress:
        now = self._clock()
        snapshot = self.snapshot(final=final, now=now)
        self._last_time = now
        self._last_lines = self._stats.processed_lines
        self._log(snapshot)
        self._emit(snapshot)
        return snapshot

    def snapshot(self, final: bool = False, now: float | None = None) -> IndexingProgress:
        """Build a snapshot of the current counters without emitting it."""
        now = self._clock() if now is None else now
        stats = self._stats
        started = stats.started_at if stats.started_at is not None else now
        elapsed = max(now - started, 0.0)
        since_last = now - self._last_time
        lines_delta = stats.processed_lines - self._last_lines
        lines_per_second = round(lines_delta / since_last) if since_last > 0 else 0

        if stats.total_bytes > 0:
            percent = min(100, round(stats.bytes_processed / stats.total_bytes * 100))
        else:
            percent = 100 if final else 0

        remaining: float | None = None
        if stats.total_bytes > 0 and stats.bytes_processed > 0 and elapsed > 0:
            bytes_per_second = stats.bytes_processed / elapsed
            remaining = max(stats.total_bytes - stats.bytes_processed, 0) / bytes_per_second

        return IndexingProgress(
            percent_complete=percent,
            processed_lines=stats.processed_lines,
            records_indexed=stats.records_indexed,
            skipped_lines=stats.skipped_lines,
            prefixes_found=len(stats.prefixes),
            bytes_processed=stats.bytes_processed,
            total_bytes=stats.total_bytes,
            lines_per_second=lines_per_second,
            estimated_seconds_remaining=remaining,
            elapsed_seconds=elapsed,
            is_final=final,
        )

    def _emit(self, snapshot: IndexingProgress) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(snapshot)
        except Exception as exc:
            Log.warning(f"Progress consumer failed, detaching it: {exc}")
            self._on_progress = None

    @staticmethod
    def _log(snapshot: IndexingProgress) -> None:
        eta = (
            format_duration(snapshot.estimated_seconds_remaining)
            if snapshot.estimated_seconds_remaining is not None
            else "calculating"
        )
        label = "Final progress" if snapshot.is_final else "Progress"
        Log.info(
            f"{label}: {snapshot.percent_complete}% | "
            f"lines {snapshot.processed_lines} | records {snapshot.records_indexed} | "
            f"skipped {snapshot.skipped_lines} | prefixes {snapshot.prefixes_found} | "
            f"{snapshot.lines_per_second} lines/s | "
            f"{format_bytes(snapshot.bytes_processed)} of {format_bytes(snapshot.total_bytes)} | "
            f"elapsed {format_duration(snapshot.elapsed_seconds)} | remaining {eta}"
        )
