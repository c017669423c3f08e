import pytest

from phoneindex.catalog.catalog import MetadataCatalog
from phoneindex.search.engine import SearchEngine
from phoneindex.storage.exceptions import PrefixNotFoundError
from phoneindex.storage.postgres_store import PostgresPartitionStore


@pytest.mark.integration
class TestPostgresPartitions:
    def test_write_read_merge(self, pg_store: PostgresPartitionStore, database_id: str) -> None:
        pg_store.create_container(database_id)
        pg_store.write(database_id, "799", {"79991234567": {"phone": "79991234567", "v": 1}})
        pg_store.write(
            database_id,
            "799",
            {
                "79991234567": {"phone": "79991234567", "v": 2},
                "79991234568": {"phone": "79991234568"},
            },
            merge=True,
        )

        blob = pg_store.read(database_id, "799")

        assert set(blob) == {"79991234567", "79991234568"}
        assert blob["79991234567"]["v"] == 2

    def test_replace(self, pg_store: PostgresPartitionStore, database_id: str) -> None:
        pg_store.create_container(database_id)
        pg_store.write(database_id, "799", {"79991234567": {"phone": "79991234567"}})
        pg_store.write(database_id, "799", {"79991234568": {"phone": "79991234568"}})
        assert set(pg_store.read(database_id, "799")) == {"79991234568"}

    def test_containers_and_prefixes(
        self, pg_store: PostgresPartitionStore, database_id: str
    ) -> None:
        pg_store.create_container(database_id)
        pg_store.create_container(database_id)
        pg_store.write(database_id, "749", {})

        assert pg_store.exists(database_id)
        assert database_id in pg_store.list_containers()
        assert pg_store.list_prefixes(database_id) == {"749"}
        assert pg_store.exists_prefix(database_id, "749")
        with pytest.raises(PrefixNotFoundError):
            pg_store.read(database_id, "799")

    def test_metadata(self, pg_store: PostgresPartitionStore, database_id: str) -> None:
        pg_store.create_container(database_id)
        assert pg_store.read_metadata(database_id) is None
        pg_store.write_metadata(database_id, {"id": database_id, "totalRecords": 1})
        assert pg_store.read_metadata(database_id) == {"id": database_id, "totalRecords": 1}


@pytest.mark.integration
class TestPostgresSearch:
    def test_point_lookup(self, pg_store: PostgresPartitionStore, database_id: str) -> None:
        pg_store.create_container(database_id)
        pg_store.write(database_id, "799", {"79991234567": {"phone": "79991234567"}})

        engine = SearchEngine(pg_store, MetadataCatalog(pg_store))

        assert engine.find(database_id, "89991234567")["phone"] == "79991234567"
