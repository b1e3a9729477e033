import asyncio

import pytest
from botocore.exceptions import ClientError

from app.exceptions import ObjectNotFound, StorageError, StorageUnavailable
from app.storage import MemoryObjectStore, S3ObjectStore, connect_with_retry
from conftest import make_settings


@pytest.mark.asyncio
async def test_put_get_exists_remove(store: MemoryObjectStore) -> None:
    assert await store.put("a/b.jpg", b"data", "image/jpeg") == "a/b.jpg"
    assert await store.exists("a/b.jpg")
    assert await store.get("a/b.jpg") == b"data"
    assert store.objects["a/b.jpg"][1] == "image/jpeg"

    await store.remove("a/b.jpg")
    assert not await store.exists("a/b.jpg")


@pytest.mark.asyncio
async def test_get_missing_raises_not_found(store: MemoryObjectStore) -> None:
    with pytest.raises(ObjectNotFound) as exc_info:
        await store.get("nope.jpg")
    assert exc_info.value.path == "nope.jpg"


@pytest.mark.asyncio
async def test_list_by_prefix(store: MemoryObjectStore) -> None:
    for key in ("cache/b", "cache/a", "cache/sub/c", "orig.jpg"):
        await store.put(key, b"x", "image/webp")

    assert await store.list("cache/") == ["cache/a", "cache/b", "cache/sub/c"]
    assert await store.list("cache/", recursive=False) == ["cache/a", "cache/b"]
    assert await store.list() == ["cache/a", "cache/b", "cache/sub/c", "orig.jpg"]


@pytest.mark.asyncio
async def test_backend_without_listing_returns_nothing() -> None:
    store = MemoryObjectStore(supports_listing=False)
    await store.put("cache/a", b"x", "image/webp")
    assert await store.list("cache/") == []


@pytest.mark.asyncio
async def test_remove_many_in_batches(store: MemoryObjectStore) -> None:
    keys = [f"cache/{i:05d}" for i in range(2500)]
    for key in keys:
        await store.put(key, b"x", "image/webp")

    report = await store.remove_many(keys, batch_size=1000)

    assert report.ok
    assert report.deleted == 2500
    assert report.failed == 0
    assert store.objects == {}


def test_url_for(store: MemoryObjectStore) -> None:
    assert store.url_for("a/b.jpg") == "memory://images/a/b.jpg"
    assert store.url_for("a/b.jpg", "https://img.example.com/") == (
        "https://img.example.com/images/resize/a/b.jpg"
    )


def test_s3_direct_url() -> None:
    s3 = S3ObjectStore(make_settings(storage_backend="s3", s3_endpoint="minio", s3_port=9000))
    assert s3.url_for("a.jpg") == "http://minio:9000/images/a.jpg"


class FlakyStore(MemoryObjectStore):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def initialize(self) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StorageUnavailable("endpoint unreachable")


@pytest.mark.asyncio
async def test_connect_with_retry_recovers() -> None:
    store = FlakyStore(failures=2)
    assert await connect_with_retry(store, max_retries=5, base_delay=0)
    assert store.attempts == 3


@pytest.mark.asyncio
async def test_connect_with_retry_gives_up() -> None:
    store = FlakyStore(failures=10)
    assert not await connect_with_retry(store, max_retries=3, base_delay=0)
    assert store.attempts == 3


# ── S3 backend against a stand-in client ─────────────────────────────────────

def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised"}}, operation)


class FakeBody:
    def __init__(self, data: bytes) -> None:
        self.data = data

    async def read(self) -> bytes:
        return self.data


class FakePaginator:
    def __init__(self, s3: "FakeS3") -> None:
        self.s3 = s3

    async def paginate(self, **params):
        self.s3.calls.append(("list_objects_v2", params))
        self.s3.raise_queued("list_objects_v2")
        for page in self.s3.pages:
            yield page


class FakeS3:
    """Async-context-manager stand-in for an aioboto3 S3 client."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.delete_results: list[Exception | list[dict]] = []
        self.pages: list[dict] = []
        self.delay = 0.0
        self.calls: list[tuple[str, dict]] = []

    async def __aenter__(self) -> "FakeS3":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    def raise_queued(self, operation: str) -> None:
        queued = self.failures.get(operation)
        if queued:
            raise queued.pop(0)

    async def head_bucket(self, Bucket: str) -> dict:
        self.calls.append(("head_bucket", {"Bucket": Bucket}))
        self.raise_queued("head_bucket")
        return {}

    async def create_bucket(self, Bucket: str) -> dict:
        self.calls.append(("create_bucket", {"Bucket": Bucket}))
        return {}

    async def get_object(self, Bucket: str, Key: str) -> dict:
        self.calls.append(("get_object", {"Key": Key}))
        if self.delay:
            await asyncio.sleep(self.delay)
        self.raise_queued("get_object")
        if Key not in self.objects:
            raise client_error("NoSuchKey", "GetObject")
        return {"Body": FakeBody(self.objects[Key])}

    async def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str) -> dict:
        self.calls.append(("put_object", {"Key": Key, "ContentType": ContentType}))
        self.raise_queued("put_object")
        self.objects[Key] = Body
        return {}

    async def head_object(self, Bucket: str, Key: str) -> dict:
        self.calls.append(("head_object", {"Key": Key}))
        self.raise_queued("head_object")
        if Key not in self.objects:
            raise client_error("404", "HeadObject")
        return {}

    async def delete_objects(self, Bucket: str, Delete: dict) -> dict:
        keys = [o["Key"] for o in Delete["Objects"]]
        self.calls.append(("delete_objects", {"Keys": keys}))
        result = self.delete_results.pop(0) if self.delete_results else []
        if isinstance(result, Exception):
            raise result
        for key in keys:
            if key not in {e["Key"] for e in result}:
                self.objects.pop(key, None)
        return {"Errors": result} if result else {}

    def get_paginator(self, name: str) -> FakePaginator:
        assert name == "list_objects_v2"
        return FakePaginator(self)


@pytest.fixture
def fake_s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def s3_store(fake_s3: FakeS3, monkeypatch) -> S3ObjectStore:
    store = S3ObjectStore(make_settings(storage_backend="s3", storage_timeout_seconds=0.2))
    monkeypatch.setattr(store, "_client", lambda: fake_s3)
    return store


@pytest.mark.asyncio
async def test_s3_put_then_get(s3_store: S3ObjectStore, fake_s3: FakeS3) -> None:
    assert await s3_store.put("a/b.jpg", b"data", "image/jpeg") == "a/b.jpg"
    assert await s3_store.get("a/b.jpg") == b"data"
    assert ("put_object", {"Key": "a/b.jpg", "ContentType": "image/jpeg"}) in fake_s3.calls


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["NoSuchKey", "404", "NotFound"])
async def test_s3_missing_key_raises_not_found(
    s3_store: S3ObjectStore, fake_s3: FakeS3, code: str,
) -> None:
    fake_s3.failures["get_object"] = [client_error(code, "GetObject")]
    with pytest.raises(ObjectNotFound):
        await s3_store.get("missing.jpg")


@pytest.mark.asyncio
async def test_s3_other_get_errors_are_storage_errors(
    s3_store: S3ObjectStore, fake_s3: FakeS3,
) -> None:
    fake_s3.failures["get_object"] = [client_error("AccessDenied", "GetObject")]
    with pytest.raises(StorageError) as exc_info:
        await s3_store.get("a.jpg")
    assert not isinstance(exc_info.value, ObjectNotFound)


@pytest.mark.asyncio
async def test_s3_get_timeout_is_storage_error(s3_store: S3ObjectStore, fake_s3: FakeS3) -> None:
    fake_s3.objects["slow.jpg"] = b"data"
    fake_s3.delay = 5.0
    with pytest.raises(StorageError, match="timed out"):
        await s3_store.get("slow.jpg")


@pytest.mark.asyncio
async def test_s3_exists(s3_store: S3ObjectStore, fake_s3: FakeS3) -> None:
    fake_s3.objects["a.jpg"] = b"data"
    assert await s3_store.exists("a.jpg")
    assert not await s3_store.exists("b.jpg")

    fake_s3.failures["head_object"] = [client_error("AccessDenied", "HeadObject")]
    with pytest.raises(StorageError):
        await s3_store.exists("a.jpg")


@pytest.mark.asyncio
async def test_s3_list_follows_pages(s3_store: S3ObjectStore, fake_s3: FakeS3) -> None:
    fake_s3.pages = [
        {"Contents": [{"Key": "cache/a"}, {"Key": "cache/b"}]},
        {"Contents": [{"Key": "cache/c"}]},
        {},
    ]
    assert await s3_store.list("cache/") == ["cache/a", "cache/b", "cache/c"]
    assert fake_s3.calls[-1] == ("list_objects_v2", {"Bucket": "images", "Prefix": "cache/"})

    await s3_store.list("cache/", recursive=False)
    assert fake_s3.calls[-1][1]["Delimiter"] == "/"


@pytest.mark.asyncio
async def test_s3_list_unsupported_returns_nothing(s3_store: S3ObjectStore, fake_s3: FakeS3) -> None:
    fake_s3.pages = [{"Contents": [{"Key": "cache/a"}]}]
    fake_s3.failures["list_objects_v2"] = [client_error("NotImplemented", "ListObjectsV2")]
    assert await s3_store.list("cache/") == []


@pytest.mark.asyncio
async def test_s3_list_failure_raises(s3_store: S3ObjectStore, fake_s3: FakeS3) -> None:
    fake_s3.failures["list_objects_v2"] = [client_error("AccessDenied", "ListObjectsV2")]
    with pytest.raises(StorageError):
        await s3_store.list("cache/")


@pytest.mark.asyncio
async def test_s3_remove_many_reports_failures_and_continues(
    s3_store: S3ObjectStore, fake_s3: FakeS3,
) -> None:
    keys = [f"cache/{c}" for c in "abcde"]
    fake_s3.objects.update({k: b"x" for k in keys})
    fake_s3.delete_results = [
        [{"Key": "cache/a", "Code": "AccessDenied", "Message": "Access Denied"}],
        client_error("InternalError", "DeleteObjects"),
        [],
    ]

    report = await s3_store.remove_many(keys, batch_size=2)

    batches = [c[1]["Keys"] for c in fake_s3.calls if c[0] == "delete_objects"]
    assert batches == [["cache/a", "cache/b"], ["cache/c", "cache/d"], ["cache/e"]]
    assert not report.ok
    assert report.deleted == 2
    assert report.failed == 3
    assert report.failures[0].keys == ["cache/a"]
    assert report.failures[0].error == "Access Denied"
    assert report.failures[1].keys == ["cache/c", "cache/d"]
    assert set(fake_s3.objects) == {"cache/a", "cache/c", "cache/d"}


@pytest.mark.asyncio
async def test_s3_initialize_creates_missing_bucket(s3_store: S3ObjectStore, fake_s3: FakeS3) -> None:
    fake_s3.failures["head_bucket"] = [client_error("404", "HeadBucket")]
    await s3_store.initialize()
    assert ("create_bucket", {"Bucket": "images"}) in fake_s3.calls


@pytest.mark.asyncio
async def test_s3_initialize_unreachable(s3_store: S3ObjectStore, fake_s3: FakeS3) -> None:
    fake_s3.failures["head_bucket"] = [client_error("AccessDenied", "HeadBucket")]
    with pytest.raises(StorageUnavailable):
        await s3_store.initialize()
