import json
from typing import Any

from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from phoneindex.storage.base import (
    BasePartitionStore,
    Partition,
    validate_database_id,
    validate_prefix,
)
from phoneindex.storage.exceptions import PrefixNotFoundError, StorageError, StoreWriteError
from phoneindex.storage.s3_client import NOT_FOUND_CODES, client_error_code


class S3PartitionStore(BasePartitionStore):
    """Partition store on a flat-namespace object store.

    Layout under ``key_prefix``:
        {database_id}/                  zero-byte container marker
        {database_id}/metadata.json
        {database_id}/{prefix}/data.json
    """

    def __init__(self, client: BaseClient, bucket: str, key_prefix: str = "") -> None:
        if not bucket:
            raise ValueError("s3_bucket is required for storage_backend=s3")
        self._client = client
        self._bucket = bucket
        self._key_prefix = key_prefix.strip("/") + "/" if key_prefix.strip("/") else ""

    def exists(self, database_id: str) -> bool:
        response = self._list(Prefix=self._container_key(database_id), MaxKeys=1)
        return response.get("KeyCount", 0) > 0

    def exists_prefix(self, database_id: str, prefix: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=self._partition_key(database_id, prefix))
        except ClientError as exc:
            if client_error_code(exc) in NOT_FOUND_CODES:
                return False
            raise StorageError(f"Failed to check prefix '{prefix}': {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to check prefix '{prefix}': {exc}") from exc
        return True

    def read(self, database_id: str, prefix: str) -> Partition:
        payload = self._get_json(self._partition_key(database_id, prefix))
        if payload is None:
            raise PrefixNotFoundError(database_id, prefix)
        return payload

    def write(
        self,
        database_id: str,
        prefix: str,
        records: Partition,
        *,
        merge: bool = False,
    ) -> None:
        payload = self._merge_with_existing(database_id, prefix, records) if merge else records
        self._put(self._partition_key(database_id, prefix), json.dumps(payload, ensure_ascii=False))

    def list_prefixes(self, database_id: str) -> set[str]:
        container = self._container_key(database_id)
        prefixes: set[str] = set()
        for page in self._paginate(Prefix=container, Delimiter="/"):
            for common in page.get("CommonPrefixes", []):
                prefixes.add(common["Prefix"][len(container):].rstrip("/"))
        return prefixes

    def create_container(self, database_id: str) -> None:
        self._put(self._container_key(database_id), "")

    def list_containers(self) -> set[str]:
        containers: set[str] = set()
        for page in self._paginate(Prefix=self._key_prefix, Delimiter="/"):
            for common in page.get("CommonPrefixes", []):
                containers.add(common["Prefix"][len(self._key_prefix):].rstrip("/"))
        return containers

    def read_metadata(self, database_id: str) -> dict[str, Any] | None:
        return self._get_json(self._container_key(database_id) + "metadata.json")

    def write_metadata(self, database_id: str, payload: dict[str, Any]) -> None:
        self._put(
            self._container_key(database_id) + "metadata.json",
            json.dumps(payload, ensure_ascii=False, indent=2),
        )

    def _container_key(self, database_id: str) -> str:
        return f"{self._key_prefix}{validate_database_id(database_id)}/"

    def _partition_key(self, database_id: str, prefix: str) -> str:
        return f"{self._container_key(database_id)}{validate_prefix(prefix)}/data.json"

    def _get_json(self, key: str) -> dict[str, Any] | None:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            body = response["Body"].read()
        except ClientError as exc:
            if client_error_code(exc) in NOT_FOUND_CODES:
                return None
            raise StorageError(f"Failed to read s3://{self._bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to read s3://{self._bucket}/{key}: {exc}") from exc
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Object s3://{self._bucket}/{key} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Object s3://{self._bucket}/{key} must contain a JSON object")
        return data

    def _put(self, key: str, body: str) -> None:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body.encode("utf-8"),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as exc:
            raise StoreWriteError(f"Failed to write s3://{self._bucket}/{key}: {exc}") from exc

    def _list(self, **kwargs: Any) -> dict[str, Any]:
        try:
            return self._client.list_objects_v2(Bucket=self._bucket, **kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to list s3://{self._bucket}: {exc}") from exc

    def _paginate(self, **kwargs: Any) -> list[dict[str, Any]]:
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            return list(paginator.paginate(Bucket=self._bucket, **kwargs))
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"Failed to list s3://{self._bucket}: {exc}") from exc
