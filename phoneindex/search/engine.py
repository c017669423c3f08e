import math
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor

from phoneindex.catalog.catalog import MetadataCatalog
from phoneindex.config.settings import Settings
from phoneindex.events.channel import EventChannel
from phoneindex.logging.logger import Log
from phoneindex.phone.exceptions import InvalidPhoneError
from phoneindex.phone.normalizer import normalize_phone, phone_prefix
from phoneindex.search.exceptions import RecordNotFoundError
from phoneindex.search.models import SearchMatch, SearchProgressEvent
from phoneindex.storage.base import BasePartitionStore, Record, validate_database_id
from phoneindex.storage.exceptions import (
    DatabaseNotFoundError,
    PrefixNotFoundError,
    StorageError,
)

ProgressSink = Callable[[SearchProgressEvent], None]


class SearchEngine:
    """Point, federated, and progressive lookups over the partition store.

    Read-only; safe to call from many threads and alongside an ingestion.
    """

    def __init__(
        self,
        store: BasePartitionStore,
        catalog: MetadataCatalog,
        batch_size: int = 3,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._store = store
        self._catalog = catalog
        self._batch_size = batch_size

    def find(self, database_id: str, raw_phone: str) -> Record:
        """Point lookup in one database.

        Raises:
            InvalidPhoneError: if the phone does not normalize.
            DatabaseNotFoundError: if the database container is absent.
            PrefixNotFoundError: if the database has no blob for the prefix.
            RecordNotFoundError: if the blob has no entry for the phone.
        """
        return self._lookup(database_id, normalize_phone(raw_phone))

    def find_federated(self, raw_phone: str) -> SearchMatch:
        """Search all databases in batches of ``batch_size``, concurrently per batch.

        The first match in listing order within the first matching batch wins;
        later batches are never queried.

        Raises:
            InvalidPhoneError: if the phone does not normalize.
            RecordNotFoundError: if no database holds the phone.
        """
        phone = normalize_phone(raw_phone)
        databases = self._catalog.list_databases()
        errors: dict[str, str] = {}
        for start in range(0, len(databases), self._batch_size):
            batch = databases[start : start + self._batch_size]
            Log.debug(f"Federated search for {phone}: batch {batch}")
            with ThreadPoolExecutor(
                max_workers=len(batch), thread_name_prefix="federated-search"
            ) as pool:
                outcomes = list(pool.map(lambda db: self._try_lookup(db, phone), batch))
            for database_id, (match, error) in zip(batch, outcomes):
                if error is not None:
                    errors[database_id] = error
            for match, _ in outcomes:
                if match is not None:
                    Log.info(f"Phone {phone} found in database {match.database_id}")
                    return match
        raise RecordNotFoundError(phone, errors=errors)

    def iter_progress(
        self, raw_phone: str, cancel: threading.Event | None = None
    ) -> Iterator[SearchProgressEvent]:
        """Sequential search yielding an event before and after each database.

        Exactly one event has ``is_complete`` set and it is always the last.
        Setting ``cancel`` stops the search before the next database.
        """
        try:
            phone = normalize_phone(raw_phone)
            databases = self._catalog.list_databases()
        except (InvalidPhoneError, StorageError) as exc:
            Log.warning(f"Progressive search for {raw_phone!r} failed: {exc}")
            yield _terminal("", 0, 0, error=str(exc))
            return

        total = len(databases)
        for index, database_id in enumerate(databases):
            if cancel is not None and cancel.is_set():
                Log.info(f"Progressive search for {phone} cancelled at {database_id}")
                yield _terminal(
                    database_id, total, index, progress=_percent(index, total), cancelled=True
                )
                return
            yield SearchProgressEvent(
                current_database=database_id,
                progress=_percent(index, total),
                searching=True,
                found=False,
                is_complete=False,
                total_databases=total,
                current_database_index=index,
            )
            match, error = self._try_lookup(database_id, phone)
            if match is not None:
                yield SearchProgressEvent(
                    current_database=database_id,
                    progress=100,
                    searching=False,
                    found=True,
                    is_complete=True,
                    total_databases=total,
                    current_database_index=index + 1,
                    result=match,
                )
                return
            yield SearchProgressEvent(
                current_database=database_id,
                progress=_percent(index + 1, total),
                searching=False,
                found=False,
                is_complete=False,
                total_databases=total,
                current_database_index=index + 1,
                error=error,
            )
        yield _terminal(databases[-1] if databases else "", total, total)

    def find_with_progress(
        self,
        raw_phone: str,
        on_progress: ProgressSink,
        cancel: threading.Event | None = None,
    ) -> SearchMatch | None:
        """Push every progressive event to ``on_progress``; return the match.

        A sink that raises is treated as a disconnected consumer and ends the search.
        """
        match: SearchMatch | None = None
        events = self.iter_progress(raw_phone, cancel)
        try:
            for event in events:
                if event.result is not None:
                    match = event.result
                try:
                    on_progress(event)
                except Exception as exc:
                    Log.warning(f"Progress consumer disconnected: {exc}")
                    return match
        finally:
            events.close()
        return match

    def stream_progress(self, raw_phone: str) -> EventChannel[SearchProgressEvent]:
        """Run progressive search on a background thread feeding a channel.

        Closing the channel cancels the search before the next database.
        """
        channel: EventChannel[SearchProgressEvent] = EventChannel()
        thread = threading.Thread(
            target=self._pump,
            args=(raw_phone, channel),
            name="progressive-search",
            daemon=True,
        )
        thread.start()
        return channel

    def _pump(self, raw_phone: str, channel: EventChannel[SearchProgressEvent]) -> None:
        try:
            for event in self.iter_progress(raw_phone, cancel=channel.cancelled):
                if not channel.publish(event):
                    break
        finally:
            channel.complete()

    def _lookup(self, database_id: str, phone: str) -> Record:
        try:
            validate_database_id(database_id)
        except ValueError as exc:
            raise DatabaseNotFoundError(database_id, str(exc)) from exc
        if not self._store.exists(database_id):
            raise DatabaseNotFoundError(database_id)
        partition = self._store.read(database_id, phone_prefix(phone))
        record = partition.get(phone)
        if record is None:
            raise RecordNotFoundError(phone, database_id)
        return record

    def _try_lookup(
        self, database_id: str, phone: str
    ) -> tuple[SearchMatch | None, str | None]:
        """Lookup for federated callers: misses are None, anomalies are logged."""
        try:
            return SearchMatch(database_id, self._lookup(database_id, phone)), None
        except (PrefixNotFoundError, RecordNotFoundError):
            return None, None
        except StorageError as exc:
            Log.warning(f"Error searching database {database_id}: {exc}")
            return None, str(exc)


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return math.floor(done / total * 100 + 0.5)


def _terminal(
    database_id: str,
    total: int,
    index: int,
    progress: int = 100,
    error: str | None = None,
    cancelled: bool = False,
) -> SearchProgressEvent:
    return SearchProgressEvent(
        current_database=database_id,
        progress=progress,
        searching=False,
        found=False,
        is_complete=True,
        total_databases=total,
        current_database_index=index,
        error=error,
        cancelled=cancelled,
    )


def build_search_engine(
    settings: Settings, store: BasePartitionStore, catalog: MetadataCatalog
) -> SearchEngine:
    return SearchEngine(store, catalog, batch_size=settings.search_batch_size)
