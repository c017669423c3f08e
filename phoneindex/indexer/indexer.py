from contextlib import ExitStack

from botocore.exceptions import BotoCoreError, ClientError

from phoneindex.catalog.catalog import MetadataCatalog
from phoneindex.catalog.models import DatabaseMetadata
from phoneindex.config.settings import Settings
from phoneindex.indexer.decoding import LineReader, resolve_encoding
from phoneindex.indexer.exceptions import SourceUnreadableError
from phoneindex.indexer.models import IndexRequest
from phoneindex.indexer.parsing import resolve_delimiter
from phoneindex.indexer.pipeline import IndexingContext, IndexingStep
from phoneindex.indexer.progress import IndexingStats, ProgressCallback, ProgressReporter
from phoneindex.indexer.sources import SourceLoader
from phoneindex.indexer.steps import (
    DetectFormatStep,
    LoadSourceStep,
    PrepareContainerStep,
    SaveMetadataStep,
    StreamRecordsStep,
)
from phoneindex.logging.logger import Log, format_bytes, format_duration
from phoneindex.storage.base import BasePartitionStore, validate_database_id


class Indexer:
    """Runs one ingestion: source -> decode -> parse -> bucket -> flush -> metadata.

    Not reentrant; IndexingSupervisor guarantees a single active run.
    """

    def __init__(
        self,
        source_loader: SourceLoader,
        store: BasePartitionStore,
        catalog: MetadataCatalog,
        settings: Settings,
    ) -> None:
        self._settings = settings
        self._load_source = LoadSourceStep(source_loader)
        self._stream_steps: list[IndexingStep] = [
            DetectFormatStep(
                sample_bytes=settings.encoding_sample_bytes,
                default_delimiter=settings.delimiter,
                min_fields=settings.min_fields,
            ),
            PrepareContainerStep(store, settings.abort_on_write_failure),
            StreamRecordsStep(settings.flush_chunk_records),
            SaveMetadataStep(catalog),
        ]

    def index(
        self,
        request: IndexRequest,
        stats: IndexingStats | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DatabaseMetadata:
        """Index one source into one database and return its metadata."""
        validate_database_id(request.database_id)
        resolve_encoding(request.encoding, b"")
        resolve_delimiter(request.delimiter or self._settings.delimiter)
        partition_size = request.partition_size or self._settings.default_partition_size
        if partition_size <= 0:
            raise ValueError("partition_size must be positive")

        context = IndexingContext(
            request=request,
            partition_size=partition_size,
            stats=stats if stats is not None else IndexingStats(),
        )
        Log.info(f"Indexing {request.source} into database {request.database_id}")
        context = self._load_source.run(context)
        source = context.source
        if source is None:
            raise SourceUnreadableError(f"Source {request.source} could not be resolved")

        with ExitStack() as stack:
            try:
                stream = stack.enter_context(source.open())
            except (OSError, ClientError, BotoCoreError) as exc:
                raise SourceUnreadableError(f"Cannot open {source.locator}: {exc}") from exc
            context.reader = LineReader(stream, self._settings.read_chunk_bytes)
            context.reporter = ProgressReporter(
                context.stats,
                self._settings.progress_interval_seconds,
                on_progress,
            )
            for step in self._stream_steps:
                context = step.run(context)

        if context.metadata is None:
            raise RuntimeError("Indexing finished without metadata")
        stats = context.stats
        Log.info(
            f"Indexing of {request.database_id} complete: "
            f"{stats.processed_lines} lines, {stats.records_indexed} records, "
            f"{stats.skipped_lines} skipped, {format_bytes(stats.bytes_processed)} "
            f"in {format_duration(_elapsed(context))}",
            skipped=dict(stats.skipped),
        )
        return context.metadata


def _elapsed(context: IndexingContext) -> float:
    if context.reporter is None:
        return 0.0
    return context.reporter.snapshot().elapsed_seconds


def build_indexer(
    settings: Settings,
    store: BasePartitionStore,
    catalog: MetadataCatalog,
    source_loader: SourceLoader | None = None,
) -> Indexer:
    """Build an Indexer with the configured collaborators."""
    return Indexer(
        source_loader=source_loader or SourceLoader(),
        store=store,
        catalog=catalog,
        settings=settings,
    )
