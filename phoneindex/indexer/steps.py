import math
from datetime import datetime, timezone

from phoneindex.catalog.catalog import MetadataCatalog
from phoneindex.catalog.models import DatabaseMetadata
from phoneindex.indexer.buffer import PartitionBuffer
from phoneindex.indexer.decoding import resolve_encoding
from phoneindex.indexer.parsing import LineParser, PhoneLocator, resolve_delimiter
from phoneindex.indexer.pipeline import IndexingContext, IndexingStep
from phoneindex.indexer.sources import SourceLoader
from phoneindex.logging.logger import Log, format_bytes
from phoneindex.storage.base import BasePartitionStore


class LoadSourceStep(IndexingStep):
    def __init__(self, source_loader: SourceLoader) -> None:
        self._source_loader = source_loader

    def run(self, context: IndexingContext) -> IndexingContext:
        source = self._source_loader.load(context.request.source)
        context.source = source
        context.stats.total_bytes = source.size
        Log.info(f"Source {source.locator}: {format_bytes(source.size)}")
        return context


class DetectFormatStep(IndexingStep):
    def __init__(self, sample_bytes: int, default_delimiter: str, min_fields: int) -> None:
        self._sample_bytes = sample_bytes
        self._default_delimiter = default_delimiter
        self._min_fields = min_fields

    def run(self, context: IndexingContext) -> IndexingContext:
        if context.reader is None or context.source is None:
            raise ValueError("IndexingContext.reader must be set before format detection")
        sample = context.reader.peek(self._sample_bytes)
        context.codec = resolve_encoding(context.request.encoding, sample)
        parser = LineParser(
            codec=context.codec,
            locator=PhoneLocator.parse(context.request.phone_column),
            delimiter=resolve_delimiter(context.request.delimiter or self._default_delimiter),
            min_fields=self._min_fields,
        )
        first_line = _first_complete_line(sample, whole=len(sample) >= context.source.size)
        if first_line is not None:
            parser.inspect(first_line)
        context.parser = parser
        Log.info(
            f"Format of {context.source.name}: encoding={context.codec} "
            f"delimiter={parser.delimiter!r} phone_column={context.request.phone_column}"
        )
        return context


class PrepareContainerStep(IndexingStep):
    def __init__(self, store: BasePartitionStore, abort_on_write_failure: bool) -> None:
        self._store = store
        self._abort_on_write_failure = abort_on_write_failure

    def run(self, context: IndexingContext) -> IndexingContext:
        if context.source is None:
            raise ValueError("IndexingContext.source must be set before preparing the container")
        database_id = context.request.database_id
        self._store.create_container(database_id)
        context.buffer = PartitionBuffer(
            self._store,
            database_id,
            abort_on_write_failure=self._abort_on_write_failure,
        )
        context.metadata = DatabaseMetadata(
            id=database_id,
            original_file_name=context.source.name,
            phone_column=context.request.phone_column,
            partition_size=context.partition_size,
            created_at=datetime.now(timezone.utc),
        )
        Log.info(f"Container ready for database {database_id}")
        return context


class StreamRecordsStep(IndexingStep):
    """Parse every line, bucket records by prefix, and flush in chunks."""

    def __init__(self, flush_chunk_records: int) -> None:
        if flush_chunk_records <= 0:
            raise ValueError("flush_chunk_records must be positive")
        self._flush_chunk_records = flush_chunk_records

    def run(self, context: IndexingContext) -> IndexingContext:
        reader, parser, buffer, reporter = (
            context.reader,
            context.parser,
            context.buffer,
            context.reporter,
        )
        if reader is None or parser is None or buffer is None or reporter is None:
            raise ValueError("IndexingContext must be fully prepared before streaming")
        stats = context.stats
        debug = Log.is_debug()

        reporter.start()
        for raw_line in reader:
            stats.processed_lines += 1
            stats.bytes_processed = reader.bytes_consumed
            result = parser.parse(raw_line)
            if result.skip_reason is not None:
                stats.skipped[result.skip_reason.value] += 1
                if debug:
                    Log.debug(
                        f"Skipped line {stats.processed_lines}: {result.skip_reason.value}"
                    )
            elif result.record is not None:
                prefix = buffer.add(result.phone, result.record)
                stats.records_indexed += 1
                stats.prefixes.add(prefix)
                if buffer.size >= self._flush_chunk_records:
                    buffer.flush()
            reporter.maybe_report()

        buffer.flush()
        reporter.report(final=True)
        return context


class SaveMetadataStep(IndexingStep):
    def __init__(self, catalog: MetadataCatalog) -> None:
        self._catalog = catalog

    def run(self, context: IndexingContext) -> IndexingContext:
        if context.metadata is None or context.buffer is None:
            raise ValueError("IndexingContext.metadata must be set before saving metadata")
        metadata = context.metadata
        metadata.total_records = context.stats.records_indexed
        metadata.partitions_count = math.ceil(metadata.total_records / context.partition_size)
        metadata.failed_prefixes = sorted(context.buffer.failed_prefixes)
        self._catalog.save(context.request.database_id, metadata)
        if metadata.failed_prefixes:
            Log.warning(
                f"Database {metadata.id} is degraded: "
                f"writes failed for prefixes {metadata.failed_prefixes}"
            )
        Log.info(
            f"Saved metadata for database {metadata.id}: "
            f"{metadata.total_records} records, {metadata.partitions_count} partitions"
        )
        return context


def _first_complete_line(sample: bytes, whole: bool) -> bytes | None:
    """First non-blank line of the sample that is known to be complete."""
    lines = sample.split(b"\n")
    if not whole:
        lines = lines[:-1]
    for line in lines:
        if line.strip():
            return line.rstrip(b"\r")
    return None
