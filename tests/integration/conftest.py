import os
import uuid
from collections.abc import Generator

import pytest

from phoneindex.config.settings import Settings
from phoneindex.database.connection import close_pool, get_connection, init_pool
from phoneindex.storage.postgres_store import PostgresPartitionStore


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "phone_index_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        with get_connection() as conn:
            conn.execute("SELECT 1")
    except Exception as e:
        close_pool()
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to run.")
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def pg_store(integration_pool: None) -> PostgresPartitionStore:
    store = PostgresPartitionStore()
    store.ensure_schema()
    return store


@pytest.fixture
def database_id(pg_store: PostgresPartitionStore) -> Generator[str, None, None]:
    database_id = f"it-{uuid.uuid4().hex[:12]}"
    yield database_id
    with get_connection() as conn:
        conn.execute("DELETE FROM index_databases WHERE database_id = %s", (database_id,))
        conn.commit()
