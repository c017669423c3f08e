from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from phoneindex.indexer.exceptions import SourceUnreadableError
from phoneindex.storage.s3_client import NOT_FOUND_CODES, client_error_code


class ReadableStream(Protocol):
    def read(self, size: int = -1, /) -> bytes: ...


@dataclass(frozen=True)
class Source:
    """A byte source with a known total size, opened on demand."""

    name: str
    size: int
    locator: str
    opener: Callable[[], AbstractContextManager[ReadableStream]] = field(
        repr=False, compare=False
    )

    def open(self) -> AbstractContextManager[ReadableStream]:
        return self.opener()


class SourceLoader:
    """Resolves a source locator (local path or s3://bucket/key) to a Source."""

    def __init__(self, s3_client: BaseClient | None = None) -> None:
        self._s3_client = s3_client

    def load(self, locator: str) -> Source:
        """Resolve the source and determine its size without reading it.

        Raises:
            SourceUnreadableError: if the source is missing, not a regular file,
                or its size cannot be determined.
        """
        if locator.startswith("s3://"):
            return self._load_s3(locator)
        return self._load_local(Path(locator))

    def _load_local(self, path: Path) -> Source:
        if not path.exists():
            raise SourceUnreadableError(f"Source not found: {path}")
        if not path.is_file():
            raise SourceUnreadableError(f"Source is not a file: {path}")
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise SourceUnreadableError(f"Cannot determine size of {path}: {exc}") from exc
        return Source(
            name=path.name,
            size=size,
            locator=str(path),
            opener=lambda: path.open("rb"),
        )

    def _load_s3(self, locator: str) -> Source:
        if self._s3_client is None:
            raise SourceUnreadableError(f"No S3 client configured for {locator}")
        parsed = urlparse(locator)
        bucket, key = parsed.netloc, parsed.path.lstrip("/")
        if not bucket or not key:
            raise SourceUnreadableError(f"Malformed S3 locator: {locator}")
        client = self._s3_client
        try:
            head = client.head_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if client_error_code(exc) in NOT_FOUND_CODES:
                raise SourceUnreadableError(f"Source not found: {locator}") from exc
            raise SourceUnreadableError(f"Cannot stat {locator}: {exc}") from exc
        except BotoCoreError as exc:
            raise SourceUnreadableError(f"Cannot stat {locator}: {exc}") from exc
        size = head.get("ContentLength")
        if size is None:
            raise SourceUnreadableError(f"Cannot determine size of {locator}")

        @contextmanager
        def opener() -> Iterator[ReadableStream]:
            body = client.get_object(Bucket=bucket, Key=key)["Body"]
            try:
                yield body
            finally:
                body.close()

        return Source(name=Path(key).name, size=int(size), locator=locator, opener=opener)
