from typing import Any

from phoneindex.catalog.models import DatabaseMetadata, DatabaseStats
from phoneindex.logging.logger import Log
from phoneindex.storage.base import BasePartitionStore
from phoneindex.storage.exceptions import DatabaseNotFoundError, StorageError


class MetadataCatalog:
    """Per-database metadata records stored alongside the partitions."""

    def __init__(self, store: BasePartitionStore) -> None:
        self._store = store

    def save(self, database_id: str, metadata: DatabaseMetadata) -> None:
        """Fully replace the metadata record of a database."""
        self._store.write_metadata(database_id, metadata.to_dict())

    def load(self, database_id: str) -> DatabaseMetadata:
        """Load the metadata record.

        Raises:
            DatabaseNotFoundError: if the container or its metadata is missing.
            StorageError: if the stored record is malformed.
        """
        if not self._store.exists(database_id):
            raise DatabaseNotFoundError(database_id)
        payload = self._store.read_metadata(database_id)
        if payload is None:
            raise DatabaseNotFoundError(database_id, "metadata missing")
        try:
            return DatabaseMetadata.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Malformed metadata for database '{database_id}': {exc}") from exc

    def list_databases(self) -> list[str]:
        """Database ids derived from the store's containers, in sorted order."""
        return sorted(self._store.list_containers())

    def stats(self, database_id: str) -> DatabaseStats:
        metadata = self.load(database_id)
        prefixes = sorted(self._store.list_prefixes(database_id))
        return DatabaseStats(
            database_id=database_id,
            total_records=metadata.total_records,
            actual_partition_count=len(prefixes),
            prefixes=prefixes,
            created_at=metadata.created_at,
            advisory_partitions_count=metadata.partitions_count,
            failed_prefixes=sorted(metadata.failed_prefixes),
        )

    def summary(self) -> dict[str, Any]:
        """Totals over all databases; unreadable databases are listed with zeros."""
        databases: list[dict[str, Any]] = []
        total_records = 0
        for database_id in self.list_databases():
            try:
                stats = self.stats(database_id)
            except StorageError as exc:
                Log.warning(f"Cannot read stats for database {database_id}: {exc}")
                databases.append({"id": database_id, "records": 0, "partitions": 0})
                continue
            total_records += stats.total_records
            databases.append(
                {
                    "id": database_id,
                    "records": stats.total_records,
                    "partitions": stats.actual_partition_count,
                    "degraded": stats.degraded,
                }
            )
        return {
            "totalDatabases": len(databases),
            "totalRecords": total_records,
            "databases": databases,
        }
