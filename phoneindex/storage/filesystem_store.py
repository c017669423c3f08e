import json
import os
import tempfile
from pathlib import Path
from typing import Any

from phoneindex.storage.base import (
    BasePartitionStore,
    Partition,
    validate_database_id,
    validate_prefix,
)
from phoneindex.storage.exceptions import PrefixNotFoundError, StorageError, StoreWriteError

DATA_FILE = "data.json"
METADATA_FILE = "metadata.json"


def partition_path(root: Path, database_id: str, prefix: str) -> Path:
    """Build path to a partition blob: {root}/{database_id}/{prefix}/data.json"""
    return root / database_id / prefix / DATA_FILE


class FilesystemPartitionStore(BasePartitionStore):
    """Partition store laid out as a directory tree under ``root``."""

    def __init__(self, root: Path) -> None:
        self._root = root

    def exists(self, database_id: str) -> bool:
        return self._database_dir(database_id).is_dir()

    def exists_prefix(self, database_id: str, prefix: str) -> bool:
        return self._partition_path(database_id, prefix).is_file()

    def read(self, database_id: str, prefix: str) -> Partition:
        path = self._partition_path(database_id, prefix)
        if not path.is_file():
            raise PrefixNotFoundError(database_id, prefix)
        return self._read_json(path)

    def write(
        self,
        database_id: str,
        prefix: str,
        records: Partition,
        *,
        merge: bool = False,
    ) -> None:
        path = self._partition_path(database_id, prefix)
        payload = self._merge_with_existing(database_id, prefix, records) if merge else records
        self._write_json(path, payload)

    def list_prefixes(self, database_id: str) -> set[str]:
        database_dir = self._database_dir(database_id)
        if not database_dir.is_dir():
            return set()
        return {
            entry.name
            for entry in database_dir.iterdir()
            if entry.is_dir() and (entry / DATA_FILE).is_file()
        }

    def create_container(self, database_id: str) -> None:
        try:
            self._database_dir(database_id).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreWriteError(
                f"Failed to create container for database '{database_id}': {exc}"
            ) from exc

    def list_containers(self) -> set[str]:
        if not self._root.is_dir():
            return set()
        return {entry.name for entry in self._root.iterdir() if entry.is_dir()}

    def read_metadata(self, database_id: str) -> dict[str, Any] | None:
        path = self._database_dir(database_id) / METADATA_FILE
        if not path.is_file():
            return None
        return self._read_json(path)

    def write_metadata(self, database_id: str, payload: dict[str, Any]) -> None:
        self._write_json(self._database_dir(database_id) / METADATA_FILE, payload)

    def _database_dir(self, database_id: str) -> Path:
        return self._root / validate_database_id(database_id)

    def _partition_path(self, database_id: str, prefix: str) -> Path:
        validate_database_id(database_id)
        return partition_path(self._root, database_id, validate_prefix(prefix))

    @staticmethod
    def _read_json(path: Path) -> dict[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Blob {path} must contain a JSON object")
        return data

    @staticmethod
    def _write_json(path: Path, payload: dict[str, Any]) -> None:
        """Write via a temp file in the same directory, then atomically replace."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StoreWriteError(f"Failed to write {path}: {exc}") from exc
