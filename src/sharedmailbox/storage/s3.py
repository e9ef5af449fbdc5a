"""
S3 object storage backend for sharedmailbox.

Wraps a boto3 S3 client. The client is synchronous, so every call runs
in a worker thread via ``asyncio.to_thread`` to keep the event loop
responsive while waiting on the network.
"""

import asyncio
import logging
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..common.exceptions import ObjectNotFoundError, StorageError
from .backend import ObjectInfo, ObjectStorageBackend, StoredObject

logger = logging.getLogger(__name__)

# Error codes S3 returns when a conditional write finds the key present
CONDITIONAL_CONFLICT_CODES = frozenset({"PreconditionFailed", "ConditionalRequestConflict"})

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3Backend(ObjectStorageBackend):
    """
    Object storage backed by an S3 bucket.

    Conditional create is implemented with ``PutObject`` and
    ``If-None-Match: *``, which S3 rejects with 412 when the key exists.
    """

    def __init__(
        self,
        bucket: str,
        region: str = "eu-west-2",
        endpoint_url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        """
        Initialize the S3 backend.

        Args:
            bucket: Bucket name.
            region: AWS region of the bucket.
            endpoint_url: Optional endpoint for S3-compatible services.
            client: Pre-built boto3 S3 client; created when omitted.
        """
        self.bucket = bucket
        if client is None:
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        self._client = client

    @property
    def client(self) -> Any:
        """The underlying boto3 client."""
        return self._client

    async def put_if_absent(self, key: str, body: bytes) -> bool:
        try:
            await asyncio.to_thread(
                lambda: self._client.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=body,
                    ContentType="application/json",
                    IfNoneMatch="*",
                )
            )
            return True
        except ClientError as e:
            if _error_code(e) in CONDITIONAL_CONFLICT_CODES:
                logger.debug("Conditional create rejected, key exists: %s", key)
                return False
            raise StorageError(
                f"Failed to write '{key}' to bucket '{self.bucket}': {e}",
                key=key,
                details={"code": _error_code(e)},
            ) from e
        except BotoCoreError as e:
            raise StorageError(
                f"Failed to write '{key}' to bucket '{self.bucket}': {e}", key=key
            ) from e

    async def head(self, key: str) -> ObjectInfo | None:
        try:
            response = await asyncio.to_thread(
                lambda: self._client.head_object(Bucket=self.bucket, Key=key)
            )
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return None
            raise StorageError(
                f"Failed to read metadata for '{key}': {e}",
                key=key,
                details={"code": _error_code(e)},
            ) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read metadata for '{key}': {e}", key=key) from e

        return ObjectInfo(
            key=key,
            last_modified=response["LastModified"],
            size=response.get("ContentLength", 0),
        )

    async def get(self, key: str) -> StoredObject:
        def _fetch() -> tuple[bytes, Any]:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            stream = response["Body"]
            try:
                return stream.read(), response["LastModified"]
            finally:
                stream.close()

        try:
            body, last_modified = await asyncio.to_thread(_fetch)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            raise StorageError(
                f"Failed to read '{key}': {e}",
                key=key,
                details={"code": _error_code(e)},
            ) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to read '{key}': {e}", key=key) from e

        return StoredObject(key=key, body=body, last_modified=last_modified)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                lambda: self._client.delete_object(Bucket=self.bucket, Key=key)
            )
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return
            raise StorageError(
                f"Failed to delete '{key}': {e}",
                key=key,
                details={"code": _error_code(e)},
            ) from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete '{key}': {e}", key=key) from e

    async def list_prefix(self, prefix: str, max_keys: int = 1000) -> list[ObjectInfo]:
        try:
            response = await asyncio.to_thread(
                lambda: self._client.list_objects_v2(
                    Bucket=self.bucket, Prefix=prefix, MaxKeys=max_keys
                )
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(
                f"Failed to list '{prefix}' in bucket '{self.bucket}': {e}"
            ) from e

        return [
            ObjectInfo(
                key=item["Key"],
                last_modified=item["LastModified"],
                size=item.get("Size", 0),
            )
            for item in response.get("Contents", [])
        ]
