from typing import Any

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from phoneindex.database.connection import get_connection
from phoneindex.storage.base import (
    BasePartitionStore,
    Partition,
    validate_database_id,
    validate_prefix,
)
from phoneindex.storage.exceptions import PrefixNotFoundError, StorageError, StoreWriteError

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS index_databases (
    database_id TEXT PRIMARY KEY,
    metadata JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE TABLE IF NOT EXISTS index_partitions (
    database_id TEXT NOT NULL REFERENCES index_databases (database_id) ON DELETE CASCADE,
    prefix CHAR(3) NOT NULL,
    records JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (database_id, prefix)
);
"""


class PostgresPartitionStore(BasePartitionStore):
    """Partition store backed by two PostgreSQL tables with JSONB payloads."""

    def ensure_schema(self) -> None:
        """Create the index tables if they are missing."""
        try:
            with get_connection() as conn:
                conn.execute(SCHEMA_SQL)
                conn.commit()
        except psycopg.Error as exc:
            raise StorageError(f"Failed to create index schema: {exc}") from exc

    def exists(self, database_id: str) -> bool:
        row = self._fetch_one(
            "SELECT 1 FROM index_databases WHERE database_id = %s",
            (validate_database_id(database_id),),
        )
        return row is not None

    def exists_prefix(self, database_id: str, prefix: str) -> bool:
        row = self._fetch_one(
            "SELECT 1 FROM index_partitions WHERE database_id = %s AND prefix = %s",
            (validate_database_id(database_id), validate_prefix(prefix)),
        )
        return row is not None

    def read(self, database_id: str, prefix: str) -> Partition:
        row = self._fetch_one(
            "SELECT records FROM index_partitions WHERE database_id = %s AND prefix = %s",
            (validate_database_id(database_id), validate_prefix(prefix)),
        )
        if row is None:
            raise PrefixNotFoundError(database_id, prefix)
        records: Partition = row["records"]
        return records

    def write(
        self,
        database_id: str,
        prefix: str,
        records: Partition,
        *,
        merge: bool = False,
    ) -> None:
        on_conflict = (
            "index_partitions.records || EXCLUDED.records" if merge else "EXCLUDED.records"
        )
        self._execute(
            f"""
            INSERT INTO index_partitions (database_id, prefix, records)
            VALUES (%s, %s, %s)
            ON CONFLICT (database_id, prefix)
            DO UPDATE SET records = {on_conflict}, updated_at = NOW()
            """,
            (validate_database_id(database_id), validate_prefix(prefix), Jsonb(records)),
        )

    def list_prefixes(self, database_id: str) -> set[str]:
        rows = self._fetch_all(
            "SELECT prefix FROM index_partitions WHERE database_id = %s",
            (validate_database_id(database_id),),
        )
        return {row["prefix"] for row in rows}

    def create_container(self, database_id: str) -> None:
        self._execute(
            """
            INSERT INTO index_databases (database_id)
            VALUES (%s)
            ON CONFLICT (database_id) DO NOTHING
            """,
            (validate_database_id(database_id),),
        )

    def list_containers(self) -> set[str]:
        rows = self._fetch_all("SELECT database_id FROM index_databases", ())
        return {row["database_id"] for row in rows}

    def read_metadata(self, database_id: str) -> dict[str, Any] | None:
        row = self._fetch_one(
            "SELECT metadata FROM index_databases WHERE database_id = %s",
            (validate_database_id(database_id),),
        )
        if row is None:
            return None
        metadata: dict[str, Any] | None = row["metadata"]
        return metadata

    def write_metadata(self, database_id: str, payload: dict[str, Any]) -> None:
        self._execute(
            """
            INSERT INTO index_databases (database_id, metadata)
            VALUES (%s, %s)
            ON CONFLICT (database_id) DO UPDATE SET metadata = EXCLUDED.metadata
            """,
            (validate_database_id(database_id), Jsonb(payload)),
        )

    @staticmethod
    def _fetch_one(query: str, params: tuple[Any, ...]) -> dict[str, Any] | None:
        try:
            with get_connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    return cur.fetchone()
        except psycopg.Error as exc:
            raise StorageError(f"Partition store query failed: {exc}") from exc

    @staticmethod
    def _fetch_all(query: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        try:
            with get_connection() as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(query, params)
                    return cur.fetchall()
        except psycopg.Error as exc:
            raise StorageError(f"Partition store query failed: {exc}") from exc

    @staticmethod
    def _execute(query: str, params: tuple[Any, ...]) -> None:
        try:
            with get_connection() as conn:
                conn.execute(query, params)
                conn.commit()
        except psycopg.Error as exc:
            raise StoreWriteError(f"Partition store write failed: {exc}") from exc
