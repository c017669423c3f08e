import re
from abc import ABC, abstractmethod
from typing import Any

from phoneindex.storage.exceptions import StorageError, StoreWriteError

Record = dict[str, Any]
Partition = dict[str, Record]

_DATABASE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_PREFIX = re.compile(r"^\d{3}$")


def validate_database_id(database_id: str) -> str:
    """Reject ids that are not a single safe path segment / key component."""
    if not _DATABASE_ID.match(database_id) or ".." in database_id:
        raise ValueError(f"Invalid database id: {database_id!r}")
    return database_id


def validate_prefix(prefix: str) -> str:
    if not _PREFIX.match(prefix):
        raise ValueError(f"Invalid partition prefix: {prefix!r}")
    return prefix


class BasePartitionStore(ABC):
    """Contract for durable keyed-blob storage of phone partitions.

    A database is a container; each container holds one blob per phone prefix
    (mapping canonical phone -> record) and one metadata blob.
    """

    @abstractmethod
    def exists(self, database_id: str) -> bool:
        """Whether the database container exists."""

    @abstractmethod
    def exists_prefix(self, database_id: str, prefix: str) -> bool:
        """Whether the container holds a blob for ``prefix``."""

    @abstractmethod
    def read(self, database_id: str, prefix: str) -> Partition:
        """Return the blob for ``prefix``.

        Raises:
            PrefixNotFoundError: if the blob does not exist.
            StorageError: if the blob exists but cannot be read or decoded.
        """

    @abstractmethod
    def write(
        self,
        database_id: str,
        prefix: str,
        records: Partition,
        *,
        merge: bool = False,
    ) -> None:
        """Replace the blob for ``prefix``, or merge ``records`` into it.

        Raises:
            StoreWriteError: if the write fails.
        """

    @abstractmethod
    def list_prefixes(self, database_id: str) -> set[str]:
        """Prefixes that currently have a blob in the container."""

    @abstractmethod
    def create_container(self, database_id: str) -> None:
        """Create the container. Idempotent."""

    @abstractmethod
    def list_containers(self) -> set[str]:
        """Ids of all database containers."""

    @abstractmethod
    def read_metadata(self, database_id: str) -> dict[str, Any] | None:
        """Return the metadata blob or None when it has not been written."""

    @abstractmethod
    def write_metadata(self, database_id: str, payload: dict[str, Any]) -> None:
        """Fully replace the metadata blob.

        Raises:
            StoreWriteError: if the write fails.
        """

    def _merge_with_existing(
        self, database_id: str, prefix: str, records: Partition
    ) -> Partition:
        """Union of the stored blob and ``records``; new entries win.

        Raises:
            StoreWriteError: if the stored blob cannot be checked or read.
        """
        try:
            if not self.exists_prefix(database_id, prefix):
                return records
            merged = self.read(database_id, prefix)
        except StoreWriteError:
            raise
        except StorageError as exc:
            raise StoreWriteError(
                f"Cannot merge prefix '{prefix}' of database '{database_id}': {exc}"
            ) from exc
        merged.update(records)
        return merged
