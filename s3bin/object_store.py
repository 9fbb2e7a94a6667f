from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from functools import partial
from typing import Any

import anyio
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from s3bin.errors import StoreError

logger = logging.getLogger(__name__)

# SigV2 is rejected by newer regions
S3_CONFIG = Config(signature_version="s3v4")

NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


class ObjectStore(ABC):
    """Blob storage addressed by slash-delimited keys.

    Implementations raise [`StoreError`][s3bin.errors.StoreError] for any
    failed request, with `not_found=True` when a key does not exist. Retries,
    if any, are the implementation's business.
    """

    @abstractmethod
    async def put(self, key: str, body: bytes) -> None:
        pass

    @abstractmethod
    async def get(self, key: str) -> bytes:
        pass


class S3ObjectStore(ObjectStore):
    """Object store backed by an AWS S3 bucket.

    boto3 is blocking, so every request runs in a worker thread.

    Parameters:
        bucket: Name of the S3 bucket where blobs are stored
        region: The bucket's AWS region
        endpoint_url: Override the regional endpoint, e.g. for S3-compatible
            services. By default boto3 resolves the endpoint from `region`.
        client: Pre-built boto3 S3 client, mostly useful for tests
    """

    def __init__(
        self,
        bucket: str,
        region: str,
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        self._bucket = bucket

        if client is None:
            client = boto3.client(
                "s3",
                region_name=region,
                endpoint_url=endpoint_url,
                config=S3_CONFIG,
            )
        self._client = client

    @property
    def bucket(self) -> str:
        return self._bucket

    async def put(self, key: str, body: bytes) -> None:
        logger.debug("PUT s3://%s/%s (%d bytes)", self._bucket, key, len(body))
        try:
            await anyio.to_thread.run_sync(
                partial(self._client.put_object, Bucket=self._bucket, Key=key, Body=body)
            )
        except (ClientError, BotoCoreError) as exc:
            raise self._store_error("failed to write", key, exc) from exc

    async def get(self, key: str) -> bytes:
        logger.debug("GET s3://%s/%s", self._bucket, key)
        try:
            return await anyio.to_thread.run_sync(self._get_object, key)
        except (ClientError, BotoCoreError) as exc:
            raise self._store_error("failed to read", key, exc) from exc

    def _get_object(self, key: str) -> bytes:
        response = self._client.get_object(Bucket=self._bucket, Key=key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def _store_error(
        self, action: str, key: str, exc: ClientError | BotoCoreError
    ) -> StoreError:
        not_found = (
            isinstance(exc, ClientError)
            and exc.response.get("Error", {}).get("Code") in NOT_FOUND_CODES
        )
        return StoreError(
            f"{action} {key!r} in S3 bucket {self._bucket!r}: {exc}",
            not_found=not_found,
        )


class MemoryObjectStore(ObjectStore):
    """Dict-backed object store.

    Records the keys of every `put` and `get` call, in order.
    """

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects: dict[str, bytes] = dict(objects or {})
        self.puts: list[str] = []
        self.gets: list[str] = []

    async def put(self, key: str, body: bytes) -> None:
        self.puts.append(key)
        self.objects[key] = bytes(body)

    async def get(self, key: str) -> bytes:
        self.gets.append(key)
        try:
            return self.objects[key]
        except KeyError:
            raise StoreError(f"key {key!r} not found", not_found=True) from None
