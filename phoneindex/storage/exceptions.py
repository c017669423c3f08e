class StorageError(Exception):
    """Base exception for all partition store errors."""


class DatabaseNotFoundError(StorageError):
    """Raised when a database container (or its metadata) does not exist."""

    def __init__(self, database_id: str, detail: str = "") -> None:
        self.database_id = database_id
        message = f"Database '{database_id}' not found"
        super().__init__(f"{message}: {detail}" if detail else message)


class PrefixNotFoundError(StorageError):
    """Raised when a database exists but holds no blob for the prefix."""

    def __init__(self, database_id: str, prefix: str) -> None:
        self.database_id = database_id
        self.prefix = prefix
        super().__init__(f"Prefix '{prefix}' not found in database '{database_id}'")


class StoreWriteError(StorageError):
    """Raised when a partition, container, or metadata write fails."""
