from collections.abc import Callable
from pathlib import Path

import pytest

from phoneindex.catalog.catalog import MetadataCatalog
from phoneindex.config.settings import Settings
from phoneindex.storage.filesystem_store import FilesystemPartitionStore


@pytest.fixture()
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "uploads"


@pytest.fixture()
def fs_store(storage_root: Path) -> FilesystemPartitionStore:
    return FilesystemPartitionStore(storage_root)


@pytest.fixture()
def catalog(fs_store: FilesystemPartitionStore) -> MetadataCatalog:
    return MetadataCatalog(fs_store)


@pytest.fixture()
def settings(storage_root: Path) -> Settings:
    return Settings(
        storage_backend="filesystem",
        storage_root=storage_root,
        progress_interval_seconds=3600.0,
        read_chunk_bytes=64,
    )


@pytest.fixture()
def write_source(tmp_path: Path) -> Callable[..., Path]:
    """Write lines to a source file and return its path."""

    def _write(
        lines: list[str],
        name: str = "extract.txt",
        encoding: str = "utf-8",
        newline: str = "\n",
    ) -> Path:
        path = tmp_path / name
        path.write_bytes(newline.join(lines).encode(encoding))
        return path

    return _write
