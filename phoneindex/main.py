import argparse
import json
import sys
from collections.abc import Sequence
from typing import Any

from phoneindex.catalog.catalog import MetadataCatalog
from phoneindex.config.settings import Settings
from phoneindex.database.connection import close_pool
from phoneindex.indexer.exceptions import IndexerError
from phoneindex.indexer.indexer import build_indexer
from phoneindex.indexer.models import IndexRequest
from phoneindex.indexer.sources import SourceLoader
from phoneindex.jobs.supervisor import IndexingSupervisor
from phoneindex.logging.logger import Log
from phoneindex.phone.exceptions import InvalidPhoneError
from phoneindex.search.engine import build_search_engine
from phoneindex.search.exceptions import SearchError
from phoneindex.storage.base import BasePartitionStore
from phoneindex.storage.exceptions import StorageError
from phoneindex.storage.factory import PartitionStoreFactory
from phoneindex.storage.s3_client import build_s3_client


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="phone-index", description="Build and query prefix-partitioned phone indexes."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    index = commands.add_parser("index", help="Index a source into a database")
    index.add_argument("source", help="Local path or s3://bucket/key")
    index.add_argument("--database-id", required=True)
    index.add_argument(
        "--phone-column", default="auto", help="Header column name, field index, or 'auto'"
    )
    index.add_argument("--partition-size", type=int, default=None)
    index.add_argument("--encoding", default=None, help="auto|utf8|windows1251|koi8r|iso88595")
    index.add_argument("--delimiter", default=None, help="auto|pipe|tab|comma")
    index.set_defaults(handler=_run_index)

    search = commands.add_parser("search", help="Look up a phone")
    search.add_argument("phone")
    search.add_argument("--database-id", default=None, help="Omit to search all databases")
    search.set_defaults(handler=_run_search)

    stream = commands.add_parser("search-stream", help="Search all databases with progress")
    stream.add_argument("phone")
    stream.set_defaults(handler=_run_search_stream)

    stats = commands.add_parser("stats", help="Stats of one database, or a summary of all")
    stats.add_argument("database_id", nargs="?", default=None)
    stats.set_defaults(handler=_run_stats)

    databases = commands.add_parser("databases", help="List database ids")
    databases.set_defaults(handler=_run_databases)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point: settings -> logging -> store -> command."""
    args = build_parser().parse_args(argv)
    settings = Settings()
    Log.configure(settings.log_level)

    try:
        store = PartitionStoreFactory.create(settings)
        catalog = MetadataCatalog(store)
        return int(args.handler(args, settings, store, catalog))
    except (IndexerError, SearchError, StorageError, InvalidPhoneError, ValueError) as exc:
        Log.error(f"{args.command} failed: {type(exc).__name__}: {exc}")
        return 1
    finally:
        close_pool()


def _run_index(
    args: argparse.Namespace,
    settings: Settings,
    store: BasePartitionStore,
    catalog: MetadataCatalog,
) -> int:
    s3_client = None
    if args.source.startswith("s3://"):
        s3_client = build_s3_client(settings)
    indexer = build_indexer(settings, store, catalog, SourceLoader(s3_client))
    supervisor = IndexingSupervisor(indexer)
    request = IndexRequest(
        source=args.source,
        database_id=args.database_id,
        phone_column=args.phone_column,
        partition_size=args.partition_size,
        encoding=args.encoding or settings.default_encoding,
        delimiter=args.delimiter,
    )
    try:
        metadata = supervisor.run(request)
    finally:
        supervisor.shutdown()
    _emit(metadata.to_dict())
    return 0


def _run_search(
    args: argparse.Namespace,
    settings: Settings,
    store: BasePartitionStore,
    catalog: MetadataCatalog,
) -> int:
    engine = build_search_engine(settings, store, catalog)
    if args.database_id:
        record = engine.find(args.database_id, args.phone)
        _emit({"database": args.database_id, **record})
    else:
        _emit(engine.find_federated(args.phone).to_dict())
    return 0


def _run_search_stream(
    args: argparse.Namespace,
    settings: Settings,
    store: BasePartitionStore,
    catalog: MetadataCatalog,
) -> int:
    engine = build_search_engine(settings, store, catalog)
    match = engine.find_with_progress(
        args.phone, lambda event: _emit(event.to_dict(), indent=None)
    )
    return 0 if match is not None else 1


def _run_stats(
    args: argparse.Namespace,
    settings: Settings,
    store: BasePartitionStore,
    catalog: MetadataCatalog,
) -> int:
    if args.database_id:
        _emit(catalog.stats(args.database_id).to_dict())
    else:
        _emit(catalog.summary())
    return 0


def _run_databases(
    args: argparse.Namespace,
    settings: Settings,
    store: BasePartitionStore,
    catalog: MetadataCatalog,
) -> int:
    _emit(catalog.list_databases())
    return 0


def _emit(payload: Any, indent: int | None = 2) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=indent), flush=True)


if __name__ == "__main__":
    sys.exit(main())
