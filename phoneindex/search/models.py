from dataclasses import dataclass, field
from typing import Any

from phoneindex.storage.base import Record


@dataclass(frozen=True)
class SearchMatch:
    database_id: str
    record: Record = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"database": self.database_id, **self.record}


@dataclass(frozen=True)
class SearchProgressEvent:
    """One progressive-search event; ``to_dict`` gives the wire shape."""

    current_database: str
    progress: int
    searching: bool
    found: bool
    is_complete: bool
    total_databases: int
    current_database_index: int
    result: SearchMatch | None = None
    error: str | None = None
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "currentDatabase": self.current_database,
            "progress": self.progress,
            "searching": self.searching,
            "found": self.found,
            "isComplete": self.is_complete,
            "totalDatabases": self.total_databases,
            "currentDatabaseIndex": self.current_database_index,
        }
        if self.result is not None:
            payload["result"] = self.result.to_dict()
        if self.error is not None:
            payload["error"] = self.error
        if self.cancelled:
            payload["cancelled"] = True
        return payload
