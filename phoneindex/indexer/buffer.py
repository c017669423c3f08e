from collections import defaultdict

from phoneindex.logging.logger import Log
from phoneindex.phone.normalizer import phone_prefix
from phoneindex.storage.base import BasePartitionStore, Partition, Record
from phoneindex.storage.exceptions import StoreWriteError


class PartitionBuffer:
    """In-memory per-prefix record buffers for one ingestion run.

    The first flush of a prefix replaces its blob; later flushes in the same
    run merge into it, so blobs accumulate across chunks.
    """

    def __init__(
        self,
        store: BasePartitionStore,
        database_id: str,
        *,
        abort_on_write_failure: bool = False,
    ) -> None:
        self._store = store
        self._database_id = database_id
        self._abort_on_write_failure = abort_on_write_failure
        self._buffers: defaultdict[str, Partition] = defaultdict(dict)
        self._size = 0
        self._written_prefixes: set[str] = set()
        self.failed_prefixes: set[str] = set()

    @property
    def size(self) -> int:
        """Records added since the last flush (duplicates included)."""
        return self._size

    def add(self, phone: str, record: Record) -> str:
        """Buffer a record under its prefix and return the prefix."""
        prefix = phone_prefix(phone)
        self._buffers[prefix][phone] = record
        self._size += 1
        return prefix

    def flush(self) -> int:
        """Write every buffered prefix to the store and clear the buffers.

        A failed prefix write is logged and remembered in ``failed_prefixes``.

        Raises:
            StoreWriteError: on a failed write when abort_on_write_failure is set.
        """
        if not self._buffers:
            return 0
        written = 0
        for prefix in sorted(self._buffers):
            records = self._buffers[prefix]
            try:
                self._store.write(
                    self._database_id,
                    prefix,
                    records,
                    merge=prefix in self._written_prefixes,
                )
            except StoreWriteError as exc:
                self.failed_prefixes.add(prefix)
                Log.error(
                    f"Failed to write prefix {prefix} of database {self._database_id}: {exc}",
                    database_id=self._database_id,
                    prefix=prefix,
                    lost_records=len(records),
                )
                if self._abort_on_write_failure:
                    raise
                continue
            self._written_prefixes.add(prefix)
            written += len(records)
        Log.info(
            f"Flushed {written} records across {len(self._buffers)} prefixes "
            f"for database {self._database_id}"
        )
        self._buffers.clear()
        self._size = 0
        return written
