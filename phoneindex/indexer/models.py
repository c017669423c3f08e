from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class IndexRequest:
    """Ingestion trigger: which source to index into which database."""

    source: str
    database_id: str
    phone_column: str = "auto"
    partition_size: int | None = None
    encoding: str = "auto"
    delimiter: str | None = None


class SkipReason(str, Enum):
    EMPTY_LINE = "empty_line"
    TOO_FEW_FIELDS = "too_few_fields"
    INVALID_PHONE = "invalid_phone"
    DECODE_ERROR = "decode_error"


@dataclass(frozen=True)
class LineResult:
    """Outcome of parsing one source line: a record, a header, or a skip."""

    record: dict[str, Any] | None = None
    skip_reason: SkipReason | None = None
    is_header: bool = False

    @property
    def phone(self) -> str:
        if self.record is None:
            raise ValueError("LineResult has no record")
        phone: str = self.record["phone"]
        return phone

    @classmethod
    def skipped(cls, reason: SkipReason) -> "LineResult":
        return cls(skip_reason=reason)

    @classmethod
    def header(cls) -> "LineResult":
        return cls(is_header=True)
