from phoneindex.config.settings import Settings
from phoneindex.database.connection import init_pool
from phoneindex.storage.base import BasePartitionStore
from phoneindex.storage.filesystem_store import FilesystemPartitionStore
from phoneindex.storage.postgres_store import PostgresPartitionStore
from phoneindex.storage.s3_client import build_s3_client
from phoneindex.storage.s3_store import S3PartitionStore


class PartitionStoreFactory:
    """Creates the partition store adapter selected by settings."""

    BACKENDS = ("filesystem", "s3", "postgres")

    @classmethod
    def create(cls, settings: Settings) -> BasePartitionStore:
        backend = settings.storage_backend.lower()
        if backend == "filesystem":
            return FilesystemPartitionStore(settings.storage_root)
        if backend == "s3":
            return S3PartitionStore(
                build_s3_client(settings),
                bucket=settings.s3_bucket,
                key_prefix=settings.s3_key_prefix,
            )
        if backend == "postgres":
            init_pool(settings)
            store = PostgresPartitionStore()
            store.ensure_schema()
            return store
        raise ValueError(
            f"Unknown storage backend '{backend}'. Choose from: {list(cls.BACKENDS)}"
        )
