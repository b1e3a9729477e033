import asyncio
import io
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from redis.exceptions import ConnectionError as RedisConnectionError

from app.config import Settings
from app.fast_cache import FastCache
from app.image.service import ImageService
from app.image.transform import TransformEngine
from app.main import create_app
from app.monitoring import MonitoringService
from app.storage import MemoryObjectStore


def make_image(
    width: int = 800,
    height: int = 600,
    fmt: str = "JPEG",
    color: tuple[int, ...] = (200, 30, 30),
    mode: str = "RGB",
) -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


def open_image(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


class FakeRedis:
    """The slice of ``redis.asyncio.Redis`` that FastCache uses, backed by a dict."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.closed = False

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def dbsize(self) -> int:
        return len(self.data)

    async def flushdb(self) -> bool:
        self.data.clear()
        self.ttls.clear()
        return True

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


class FailingRedis(FakeRedis):
    """Every call fails the way an unreachable server does."""

    async def get(self, key: str) -> str | None:
        raise RedisConnectionError("Connection refused")

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        raise RedisConnectionError("Connection refused")

    async def delete(self, *keys: str) -> int:
        raise RedisConnectionError("Connection refused")

    async def dbsize(self) -> int:
        raise RedisConnectionError("Connection refused")

    async def flushdb(self) -> bool:
        raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        raise RedisConnectionError("Connection refused")


class SlowRedis(FakeRedis):
    async def get(self, key: str) -> str | None:
        await asyncio.sleep(1)
        return await super().get(key)


class CountingEngine(TransformEngine):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.calls = 0

    def transform(self, *args, **kwargs) -> bytes:
        self.calls += 1
        return super().transform(*args, **kwargs)


def make_settings(**overrides) -> Settings:
    values = {
        "storage_backend": "memory",
        "startup_max_retries": 1,
        "rate_limit_enabled": False,
        "dragonfly_enabled": False,
        "enable_api_key_auth": False,
        "public_base_url": "",
        "cache_enabled": True,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def monitoring() -> MonitoringService:
    return MonitoringService()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image()


@pytest.fixture
def engine(settings: Settings) -> CountingEngine:
    return CountingEngine(settings.max_width, settings.max_height, settings.image_quality)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fast_cache(fake_redis: FakeRedis, monitoring: MonitoringService) -> FastCache:
    return FastCache(fake_redis, monitoring, default_ttl=86400, timeout_seconds=0.5)


@pytest.fixture
def service(
    store: MemoryObjectStore,
    monitoring: MonitoringService,
    engine: CountingEngine,
    settings: Settings,
) -> ImageService:
    return ImageService(store, FastCache.disabled(monitoring), engine, monitoring, settings)


@pytest.fixture
def client(settings: Settings, store: MemoryObjectStore) -> Generator[TestClient, None, None]:
    with TestClient(create_app(settings, object_store=store)) as c:
        yield c


@pytest.fixture
def cached_client(
    store: MemoryObjectStore, fake_redis: FakeRedis,
) -> Generator[TestClient, None, None]:
    """App with the fast cache enabled over FakeRedis."""
    app = create_app(make_settings(dragonfly_enabled=True), object_store=store, redis_client=fake_redis)
    with TestClient(app) as c:
        yield c
