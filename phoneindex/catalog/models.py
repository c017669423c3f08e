from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class DatabaseMetadata:
    """Per-database summary persisted as the metadata blob.

    ``partitions_count`` is advisory (ceil(total_records / partition_size));
    the store's prefix listing is the ground truth for partitioning.
    """

    id: str
    original_file_name: str
    phone_column: str
    partition_size: int
    created_at: datetime
    total_records: int = 0
    partitions_count: int = 0
    failed_prefixes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "originalFileName": self.original_file_name,
            "totalRecords": self.total_records,
            "partitionsCount": self.partitions_count,
            "partitionSize": self.partition_size,
            "createdAt": self.created_at.isoformat(),
            "phoneColumn": self.phone_column,
            "failedPrefixes": sorted(self.failed_prefixes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DatabaseMetadata":
        return cls(
            id=str(data["id"]),
            original_file_name=str(data.get("originalFileName", "")),
            phone_column=str(data.get("phoneColumn", "")),
            partition_size=int(data.get("partitionSize", 0)),
            created_at=datetime.fromisoformat(str(data["createdAt"]).replace("Z", "+00:00")),
            total_records=int(data.get("totalRecords", 0)),
            partitions_count=int(data.get("partitionsCount", 0)),
            failed_prefixes=list(data.get("failedPrefixes", [])),
        )


@dataclass(frozen=True)
class DatabaseStats:
    """Stats of one database; ``actual_partition_count`` comes from the store."""

    database_id: str
    total_records: int
    actual_partition_count: int
    prefixes: list[str]
    created_at: datetime
    advisory_partitions_count: int
    failed_prefixes: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        """True when some partition writes failed during ingestion."""
        return bool(self.failed_prefixes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "databaseId": self.database_id,
            "totalRecords": self.total_records,
            "actualPartitionCount": self.actual_partition_count,
            "partitionsCount": self.advisory_partitions_count,
            "prefixes": self.prefixes,
            "createdAt": self.created_at.isoformat(),
            "degraded": self.degraded,
            "failedPrefixes": self.failed_prefixes,
        }
