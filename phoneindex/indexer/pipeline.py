from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from phoneindex.catalog.models import DatabaseMetadata
from phoneindex.indexer.buffer import PartitionBuffer
from phoneindex.indexer.decoding import LineReader
from phoneindex.indexer.models import IndexRequest
from phoneindex.indexer.parsing import LineParser
from phoneindex.indexer.progress import IndexingStats, ProgressReporter
from phoneindex.indexer.sources import Source


@dataclass(slots=True)
class IndexingContext:
    request: IndexRequest
    partition_size: int
    stats: IndexingStats = field(default_factory=IndexingStats)
    source: Source | None = None
    reader: LineReader | None = None
    codec: str = ""
    parser: LineParser | None = None
    buffer: PartitionBuffer | None = None
    reporter: ProgressReporter | None = None
    metadata: DatabaseMetadata | None = None


class IndexingStep(ABC):
    @abstractmethod
    def run(self, context: IndexingContext) -> IndexingContext:
        raise NotImplementedError
