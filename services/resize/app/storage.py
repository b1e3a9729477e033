"""
Object storage gateway — originals and rendition cache share one bucket.

Renditions live under the ``cache/`` prefix; everything else is an original
written by the upload endpoint. Two backends implement the same capability
interface and are chosen at startup from ``STORAGE_BACKEND``:

  s3      — aioboto3 against any S3-compatible endpoint (MinIO, Garage, AWS).
  memory  — process-local dict, for development and tests.

Every remote call is bounded by ``STORAGE_TIMEOUT_SECONDS`` and is attempted
exactly once; only the startup connectivity check retries.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

import aioboto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings
from app.exceptions import ObjectNotFound, StorageError, StorageUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# S3 DeleteObjects accepts at most 1000 keys per call
DELETE_BATCH_SIZE = 1000

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_NO_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}
_NO_LISTING_CODES = {"NotImplemented", "501", "MethodNotAllowed"}


@dataclass
class BatchFailure:
    keys: list[str]
    error: str


@dataclass
class RemovalReport:
    """Outcome of a batched delete. Earlier batches stay deleted when a later one fails."""
    deleted: int = 0
    failures: list[BatchFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return sum(len(f.keys) for f in self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures


class ObjectStore(Protocol):
    async def initialize(self) -> None: ...

    async def get(self, path: str) -> bytes: ...

    async def put(self, path: str, data: bytes, content_type: str) -> str: ...

    async def exists(self, path: str) -> bool: ...

    async def remove(self, path: str) -> None: ...

    async def remove_many(
        self, paths: list[str], batch_size: int = DELETE_BATCH_SIZE,
    ) -> RemovalReport: ...

    async def list(self, prefix: str = "", recursive: bool = True) -> list[str]: ...

    def url_for(self, path: str, base_url: str | None = None) -> str: ...


def _chunks(items: list[str], size: int) -> Iterable[list[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def resize_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/images/resize/{path}"


# ── S3 ───────────────────────────────────────────────────────────────────────

class S3ObjectStore:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._bucket = settings.s3_bucket
        self._timeout = settings.storage_timeout_seconds
        self._session = aioboto3.Session(
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
        )
        self._config = BotoConfig(
            connect_timeout=settings.storage_timeout_seconds,
            read_timeout=settings.storage_timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
            s3={"addressing_style": "path"},
        )

    def _client(self):
        return self._session.client(
            "s3", endpoint_url=self._settings.s3_endpoint_url, config=self._config,
        )

    async def _bounded(self, awaitable: Awaitable[T], path: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError:
            raise StorageError(f"Storage call timed out after {self._timeout}s: {path}")

    async def initialize(self) -> None:
        try:
            await self._bounded(self._ensure_bucket(), self._bucket)
        except (StorageError, BotoCoreError, ClientError) as exc:
            logger.error("S3 connection error for bucket %s: %s", self._bucket, exc)
            raise StorageUnavailable(f"Failed to connect to S3: {exc}") from exc
        logger.info("Connected to bucket '%s'", self._bucket)

    async def _ensure_bucket(self) -> None:
        async with self._client() as s3:
            try:
                await s3.head_bucket(Bucket=self._bucket)
            except ClientError as exc:
                if _error_code(exc) not in _NO_BUCKET_CODES:
                    raise
                logger.info("Creating bucket '%s'", self._bucket)
                await s3.create_bucket(Bucket=self._bucket)

    async def get(self, path: str) -> bytes:
        try:
            return await self._bounded(self._get(path), path)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise ObjectNotFound(path)
            raise StorageError(f"S3 get_object failed for {path}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 get_object failed for {path}: {exc}") from exc

    async def _get(self, path: str) -> bytes:
        async with self._client() as s3:
            response = await s3.get_object(Bucket=self._bucket, Key=path)
            return await response["Body"].read()

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            await self._bounded(self._put(path, data, content_type), path)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"S3 put_object failed for {path}: {exc}") from exc
        return path

    async def _put(self, path: str, data: bytes, content_type: str) -> None:
        async with self._client() as s3:
            await s3.put_object(
                Bucket=self._bucket, Key=path, Body=data, ContentType=content_type,
            )

    async def exists(self, path: str) -> bool:
        try:
            await self._bounded(self._head(path), path)
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                return False
            raise StorageError(f"S3 head_object failed for {path}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 head_object failed for {path}: {exc}") from exc
        return True

    async def _head(self, path: str) -> None:
        async with self._client() as s3:
            await s3.head_object(Bucket=self._bucket, Key=path)

    async def remove(self, path: str) -> None:
        try:
            await self._bounded(self._delete(path), path)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"S3 delete_object failed for {path}: {exc}") from exc

    async def _delete(self, path: str) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self._bucket, Key=path)

    async def remove_many(
        self, paths: list[str], batch_size: int = DELETE_BATCH_SIZE,
    ) -> RemovalReport:
        report = RemovalReport()
        for batch in _chunks(paths, batch_size):
            try:
                errors = await self._bounded(self._delete_batch(batch), batch[0])
            except (StorageError, BotoCoreError, ClientError) as exc:
                logger.error("S3 delete_objects failed for batch of %d: %s", len(batch), exc)
                report.failures.append(BatchFailure(keys=batch, error=str(exc)))
                continue
            if errors:
                failed = [e.get("Key", "") for e in errors]
                report.failures.append(BatchFailure(
                    keys=failed, error=errors[0].get("Message", "delete rejected"),
                ))
            report.deleted += len(batch) - len(errors)
        return report

    async def _delete_batch(self, batch: list[str]) -> list[dict]:
        async with self._client() as s3:
            response = await s3.delete_objects(
                Bucket=self._bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
        return list(response.get("Errors", []))

    async def list(self, prefix: str = "", recursive: bool = True) -> list[str]:
        try:
            return await self._bounded(self._list(prefix, recursive), prefix)
        except ClientError as exc:
            if _error_code(exc) in _NO_LISTING_CODES:
                logger.warning("Storage backend does not support listing; returning no objects")
                return []
            raise StorageError(f"S3 list_objects failed for {prefix!r}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"S3 list_objects failed for {prefix!r}: {exc}") from exc

    async def _list(self, prefix: str, recursive: bool) -> list[str]:
        params = {"Bucket": self._bucket, "Prefix": prefix}
        if not recursive:
            params["Delimiter"] = "/"
        keys: list[str] = []
        async with self._client() as s3:
            paginator = s3.get_paginator("list_objects_v2")
            async for page in paginator.paginate(**params):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def url_for(self, path: str, base_url: str | None = None) -> str:
        if base_url:
            return resize_url(base_url, path)
        return f"{self._settings.s3_endpoint_url}/{self._bucket}/{path}"


# ── In-memory ────────────────────────────────────────────────────────────────

class MemoryObjectStore:
    """Dict-backed store. ``supports_listing=False`` models a backend without native listing."""

    def __init__(self, bucket: str = "images", *, supports_listing: bool = True) -> None:
        self.bucket = bucket
        self.supports_listing = supports_listing
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def initialize(self) -> None:
        logger.info("Using in-memory object store for bucket '%s'", self.bucket)

    async def get(self, path: str) -> bytes:
        try:
            return self.objects[path][0]
        except KeyError:
            raise ObjectNotFound(path)

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        self.objects[path] = (data, content_type)
        return path

    async def exists(self, path: str) -> bool:
        return path in self.objects

    async def remove(self, path: str) -> None:
        self.objects.pop(path, None)

    async def remove_many(
        self, paths: list[str], batch_size: int = DELETE_BATCH_SIZE,
    ) -> RemovalReport:
        report = RemovalReport()
        for batch in _chunks(paths, batch_size):
            for key in batch:
                self.objects.pop(key, None)
            report.deleted += len(batch)
        return report

    async def list(self, prefix: str = "", recursive: bool = True) -> list[str]:
        if not self.supports_listing:
            logger.warning("Storage backend does not support listing; returning no objects")
            return []
        keys = sorted(k for k in self.objects if k.startswith(prefix))
        if recursive:
            return keys
        return [k for k in keys if "/" not in k[len(prefix):]]

    def url_for(self, path: str, base_url: str | None = None) -> str:
        if base_url:
            return resize_url(base_url, path)
        return f"memory://{self.bucket}/{path}"


def build_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "memory":
        return MemoryObjectStore(settings.s3_bucket)
    return S3ObjectStore(settings)


async def connect_with_retry(store: ObjectStore, max_retries: int, base_delay: float = 1.0) -> bool:
    """Run ``initialize`` with exponential backoff. Returns False when every attempt failed."""
    for attempt in range(1, max_retries + 1):
        try:
            await store.initialize()
            logger.info("Successfully connected to object storage")
            return True
        except StorageUnavailable as exc:
            logger.error(
                "Failed to connect to object storage (attempt %d/%d): %s",
                attempt, max_retries, exc,
            )
            if attempt < max_retries:
                delay = base_delay * 2 ** attempt
                logger.info("Retrying in %.0f seconds...", delay)
                await asyncio.sleep(delay)
    logger.error("Object storage unreachable after %d attempts; continuing without it", max_retries)
    return False
