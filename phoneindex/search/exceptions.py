class SearchError(Exception):
    """Base exception for all search errors."""


class RecordNotFoundError(SearchError):
    """Raised when no record matches the phone.

    ``database_id`` is None for federated lookups; ``errors`` holds the
    per-database anomalies collected along the way.
    """

    def __init__(
        self,
        phone: str,
        database_id: str | None = None,
        errors: dict[str, str] | None = None,
    ) -> None:
        self.phone = phone
        self.database_id = database_id
        self.errors = dict(errors or {})
        where = f"database '{database_id}'" if database_id else "any database"
        super().__init__(f"Phone {phone} not found in {where}")
