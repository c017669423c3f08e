from collections.abc import Callable
from contextlib import nullcontext
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from phoneindex.catalog.catalog import MetadataCatalog
from phoneindex.config.settings import Settings
from phoneindex.indexer.exceptions import (
    PhoneColumnNotFoundError,
    SourceUnreadableError,
    UnsupportedEncodingError,
)
from phoneindex.indexer.indexer import Indexer, build_indexer
from phoneindex.indexer.models import IndexRequest
from phoneindex.indexer.progress import IndexingStats
from phoneindex.indexer.sources import Source
from phoneindex.storage.base import Partition
from phoneindex.storage.exceptions import StorageError, StoreWriteError
from phoneindex.storage.filesystem_store import FilesystemPartitionStore

SCENARIO_A = [
    "id\tname\tphone",
    "1\tIvan\t9991234567",
    "2\tPetr\t89991234568",
    "3\tAnna\t79991234569",
]


class FailingPrefixStore(FilesystemPartitionStore):
    """Filesystem store whose partition writes fail for one prefix."""

    def __init__(self, root: Path, failing_prefix: str) -> None:
        super().__init__(root)
        self._failing_prefix = failing_prefix

    def write(
        self, database_id: str, prefix: str, records: Partition, *, merge: bool = False
    ) -> None:
        if prefix == self._failing_prefix:
            raise StoreWriteError(f"simulated failure for {prefix}")
        super().write(database_id, prefix, records, merge=merge)


class UnreadablePrefixStore(FilesystemPartitionStore):
    """Filesystem store whose partition reads fail for one prefix."""

    def __init__(self, root: Path, failing_prefix: str) -> None:
        super().__init__(root)
        self._failing_prefix = failing_prefix

    def read(self, database_id: str, prefix: str) -> Partition:
        if prefix == self._failing_prefix:
            raise StorageError(f"simulated read failure for {prefix}")
        return super().read(database_id, prefix)


class BrokenStream:
    """Returns one chunk, then fails like a dropped connection."""

    def __init__(self, first_chunk: bytes) -> None:
        self._chunks = [first_chunk]

    def read(self, size: int = -1, /) -> bytes:
        if self._chunks:
            return self._chunks.pop(0)
        raise OSError("connection reset")


def _make_indexer(
    settings: Settings,
    store: FilesystemPartitionStore,
    **overrides: object,
) -> Indexer:
    if overrides:
        settings = settings.model_copy(update=overrides)
    return build_indexer(settings, store, MetadataCatalog(store))


class TestScenarioA:
    def test_indexes_three_records(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(SCENARIO_A)
        metadata = _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1")
        )

        assert metadata.total_records == 3
        assert metadata.original_file_name == "extract.txt"
        assert fs_store.list_prefixes("db1") == {"799"}
        assert set(fs_store.read("db1", "799")) == {
            "79991234567",
            "79991234568",
            "79991234569",
        }

    def test_metadata_is_persisted(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        catalog: MetadataCatalog,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(SCENARIO_A)
        metadata = _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1", partition_size=2)
        )

        stored = catalog.load("db1")
        assert stored == metadata
        assert stored.partition_size == 2
        assert stored.partitions_count == 2

    def test_named_phone_column(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(SCENARIO_A)
        stats = IndexingStats()
        _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1", phone_column="phone"),
            stats=stats,
        )

        record = fs_store.read("db1", "799")["79991234567"]
        assert record["name"] == "Ivan"
        assert record["formattedPhone"] == "+7 (999) 123-45-67"
        assert stats.processed_lines == 4
        assert stats.skipped_lines == 0

    def test_crlf_source(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(SCENARIO_A, newline="\r\n")
        metadata = _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1", phone_column="2")
        )
        assert metadata.total_records == 3


class TestScenarioD:
    def test_short_line_is_skipped_and_counted(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(["1\tIvan\t9991234567", "9991234568", "2\tPetr\t9991234569"])
        stats = IndexingStats()
        metadata = _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1"), stats=stats
        )

        assert stats.processed_lines == 3
        assert stats.records_indexed == 2
        assert stats.skipped["too_few_fields"] == 1
        assert metadata.total_records == 2

    def test_invalid_and_empty_lines_are_skipped(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(["1\tIvan\t9991234567", "", "2\tPetr\t12345", "3\tAnna\t9991234569"])
        stats = IndexingStats()
        _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1"), stats=stats
        )

        assert stats.records_indexed == 2
        assert stats.skipped["empty_line"] == 1
        assert stats.skipped["invalid_phone"] == 1


class TestFormats:
    def test_cp1251_pipe_source_with_header(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(
            ["фамилия|телефон", "Иванов|8 (999) 123-45-67"], encoding="cp1251"
        )
        _make_indexer(settings, fs_store).index(
            IndexRequest(
                source=str(path),
                database_id="db1",
                phone_column="Телефон",
                encoding="windows1251",
            )
        )
        assert fs_store.read("db1", "799")["79991234567"]["фамилия"] == "Иванов"

    def test_json_enveloped_lines(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(['{"_0": "1\\tIvan\\t9991234567"}', '{"_0": "2\\tPetr\\t4951234567"}'])
        metadata = _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1")
        )
        assert metadata.total_records == 2
        assert fs_store.list_prefixes("db1") == {"799", "749"}

    def test_comma_source(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(['name,phone', '"Ivanov, Ivan",9991234567'])
        _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1", phone_column="phone")
        )
        assert fs_store.read("db1", "799")["79991234567"]["name"] == "Ivanov, Ivan"


class TestChunkedFlush:
    def test_records_accumulate_across_flushes(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        lines = [f"{i}\tName\t999123456{i}" for i in range(5)]
        path = write_source(lines)
        metadata = _make_indexer(settings, fs_store, flush_chunk_records=2).index(
            IndexRequest(source=str(path), database_id="db1")
        )

        assert metadata.total_records == 5
        assert len(fs_store.read("db1", "799")) == 5

    def test_reindex_replaces_previous_content(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        indexer = _make_indexer(settings, fs_store)
        indexer.index(IndexRequest(source=str(write_source(SCENARIO_A)), database_id="db1"))
        second = write_source(["9\tOnly\t9990000000"], name="second.txt")

        metadata = indexer.index(IndexRequest(source=str(second), database_id="db1"))

        assert metadata.total_records == 1
        assert set(fs_store.read("db1", "799")) == {"79990000000"}


class TestProgress:
    def test_final_snapshot_is_pushed(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(SCENARIO_A)
        on_progress = MagicMock()
        _make_indexer(settings, fs_store).index(
            IndexRequest(source=str(path), database_id="db1"), on_progress=on_progress
        )

        final = on_progress.call_args.args[0]
        assert final.is_final
        assert final.percent_complete == 100
        assert final.bytes_processed == path.stat().st_size
        assert final.records_indexed == 3
        assert final.prefixes_found == 1


class TestFailures:
    def test_missing_source_has_no_side_effects(
        self, settings: Settings, fs_store: FilesystemPartitionStore, tmp_path: Path
    ) -> None:
        with pytest.raises(SourceUnreadableError):
            _make_indexer(settings, fs_store).index(
                IndexRequest(source=str(tmp_path / "missing.txt"), database_id="db1")
            )
        assert not fs_store.exists("db1")

    def test_unknown_encoding_fails_fast(
        self, settings: Settings, fs_store: FilesystemPartitionStore, tmp_path: Path
    ) -> None:
        with pytest.raises(UnsupportedEncodingError):
            _make_indexer(settings, fs_store).index(
                IndexRequest(source=str(tmp_path / "x.txt"), database_id="db1", encoding="latin1")
            )

    def test_invalid_database_id(
        self, settings: Settings, fs_store: FilesystemPartitionStore, tmp_path: Path
    ) -> None:
        with pytest.raises(ValueError):
            _make_indexer(settings, fs_store).index(
                IndexRequest(source=str(tmp_path / "x.txt"), database_id="../up")
            )

    def test_missing_phone_column(
        self,
        settings: Settings,
        fs_store: FilesystemPartitionStore,
        write_source: Callable[..., Path],
    ) -> None:
        path = write_source(SCENARIO_A)
        with pytest.raises(PhoneColumnNotFoundError):
            _make_indexer(settings, fs_store).index(
                IndexRequest(source=str(path), database_id="db1", phone_column="mobile")
            )
        assert not fs_store.exists("db1")

    def test_failed_prefix_marks_database_degraded(
        self,
        settings: Settings,
        storage_root: Path,
        write_source: Callable[..., Path],
    ) -> None:
        store = FailingPrefixStore(storage_root, failing_prefix="749")
        path = write_source(["1\tIvan\t9991234567", "2\tPetr\t4951234567"])

        metadata = _make_indexer(settings, store).index(
            IndexRequest(source=str(path), database_id="db1")
        )

        assert metadata.failed_prefixes == ["749"]
        assert MetadataCatalog(store).stats("db1").degraded
        assert store.list_prefixes("db1") == {"799"}

    def test_failed_merge_read_marks_prefix_and_run_continues(
        self,
        settings: Settings,
        storage_root: Path,
        write_source: Callable[..., Path],
    ) -> None:
        store = UnreadablePrefixStore(storage_root, failing_prefix="799")
        path = write_source(
            ["1\tIvan\t9991234567", "2\tPetr\t9991234568", "3\tAnna\t9001234567"]
        )

        metadata = _make_indexer(settings, store, flush_chunk_records=1).index(
            IndexRequest(source=str(path), database_id="db1")
        )

        assert metadata.failed_prefixes == ["799"]
        assert metadata.total_records == 3
        assert store.read_metadata("db1") is not None
        assert store.list_prefixes("db1") == {"799", "900"}

    def test_abort_on_write_failure_writes_no_metadata(
        self,
        settings: Settings,
        storage_root: Path,
        write_source: Callable[..., Path],
    ) -> None:
        store = FailingPrefixStore(storage_root, failing_prefix="749")
        path = write_source(["1\tIvan\t9991234567", "2\tPetr\t4951234567"])

        with pytest.raises(StoreWriteError):
            _make_indexer(settings, store, abort_on_write_failure=True).index(
                IndexRequest(source=str(path), database_id="db1")
            )
        assert store.read_metadata("db1") is None

    def test_mid_stream_error_keeps_flushed_blobs_without_metadata(
        self, settings: Settings, fs_store: FilesystemPartitionStore
    ) -> None:
        first_chunk = b"1\tIvan\t9991234567\n2\tPetr\t9991234568\n"
        source = Source(
            name="remote.txt",
            size=1000,
            locator="remote.txt",
            opener=lambda: nullcontext(BrokenStream(first_chunk)),
        )
        source_loader = MagicMock()
        source_loader.load.return_value = source
        tuned = settings.model_copy(update={"flush_chunk_records": 1, "encoding_sample_bytes": 8})
        indexer = build_indexer(tuned, fs_store, MetadataCatalog(fs_store), source_loader)

        with pytest.raises(OSError, match="connection reset"):
            indexer.index(IndexRequest(source="remote.txt", database_id="db1"))

        assert set(fs_store.read("db1", "799")) == {"79991234567", "79991234568"}
        assert fs_store.read_metadata("db1") is None
