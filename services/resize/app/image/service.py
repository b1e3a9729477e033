"""
Resize orchestrator — pure business logic.

Zero FastAPI imports. Collaborators (object store, fast cache, transform
engine, metrics) are injected, so the whole pipeline is testable with the
in-memory store and a fake Redis client.

Lookup order for a rendition: fast cache, then object cache (when enabled),
then transform from the original. Cache write-backs are best effort: a
failure is logged and the freshly rendered bytes are still returned.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from app.config import Settings
from app.exceptions import ImageNotFoundError, ObjectNotFound, StorageError
from app.fast_cache import FastCache
from app.image.cache_key import derive_key, fast_cache_key, object_cache_path
from app.image.constants import CacheTier
from app.image.schemas import TransformOptions, Watermark
from app.image.transform import TransformEngine, content_type_for
from app.monitoring import ImageProcessingMetric, MonitoringService
from app.storage import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class Rendition:
    data: bytes
    content_type: str
    tier: CacheTier = CacheTier.NONE
    cache_time: float = field(default_factory=lambda: time.time() * 1000)

    def to_cache(self) -> dict[str, Any]:
        return {
            "data": base64.b64encode(self.data).decode("ascii"),
            "content_type": self.content_type,
            "cache_time": self.cache_time,
        }

    @classmethod
    def from_cache(cls, value: Any) -> Rendition | None:
        """Rebuild a fast-cache entry; anything malformed counts as a miss."""
        if not isinstance(value, dict):
            return None
        try:
            return cls(
                data=base64.b64decode(value["data"], validate=True),
                content_type=str(value["content_type"]),
                tier=CacheTier.FAST,
                cache_time=float(value.get("cache_time") or 0),
            )
        except (KeyError, TypeError, ValueError, binascii.Error):
            return None


class ImageService:
    def __init__(
        self,
        store: ObjectStore,
        fast_cache: FastCache,
        engine: TransformEngine,
        monitoring: MonitoringService,
        settings: Settings,
    ) -> None:
        self._store = store
        self._fast_cache = fast_cache
        self._engine = engine
        self._monitoring = monitoring
        self._settings = settings

    # ── Resize ───────────────────────────────────────────────────────────────

    async def render(self, path: str, options: TransformOptions) -> Rendition:
        """Return the rendition of ``path`` under ``options``, from cache when possible.

        Raises ImageNotFoundError when the original is absent, StorageError when
        the original cannot be read, ImageProcessingError when it cannot be
        transformed.
        """
        digest = derive_key(path, options)

        rendition = await self._from_fast_cache(digest)
        if rendition is not None:
            self._record_hit(path, CacheTier.FAST)
            return rendition

        if self._settings.cache_enabled:
            rendition = await self._from_object_cache(digest, options)
            if rendition is not None:
                self._record_hit(path, CacheTier.STORAGE)
                await self._fast_cache.set(fast_cache_key(digest), rendition.to_cache())
                return rendition

        logger.debug("Cache miss for %s (%s)", path, digest)
        try:
            original = await self._store.get(path)
        except ObjectNotFound:
            raise ImageNotFoundError(path)

        asset = await self._watermark_asset(options.watermark)

        started = time.perf_counter()
        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(
            None, self._engine.transform, original, options, asset,
        )
        elapsed_ms = (time.perf_counter() - started) * 1000

        self._monitoring.record_image_processing(ImageProcessingMetric(
            original_path=path,
            output_format=options.format.value,
            input_size=len(original),
            output_size=len(data),
            processing_ms=elapsed_ms,
        ))
        self._monitoring.record_metric("image_cache", {
            "path": path, "cache_hit": False, "tier": CacheTier.NONE.value,
        })

        rendition = Rendition(data=data, content_type=content_type_for(options.format))
        await self._write_back(digest, rendition)
        return rendition

    async def _from_fast_cache(self, digest: str) -> Rendition | None:
        if not self._fast_cache.enabled:
            return None
        value = await self._fast_cache.get(fast_cache_key(digest))
        if value is None:
            return None
        rendition = Rendition.from_cache(value)
        if rendition is None:
            logger.warning("Discarding malformed fast cache entry %s", digest)
        return rendition

    async def _from_object_cache(
        self, digest: str, options: TransformOptions,
    ) -> Rendition | None:
        try:
            data = await self._store.get(object_cache_path(digest))
        except ObjectNotFound:
            return None
        except StorageError as exc:
            logger.warning("Object cache read failed for %s: %s", digest, exc)
            return None
        return Rendition(
            data=data,
            content_type=content_type_for(options.format),
            tier=CacheTier.STORAGE,
        )

    async def _write_back(self, digest: str, rendition: Rendition) -> None:
        if self._settings.cache_enabled:
            try:
                await self._store.put(
                    object_cache_path(digest), rendition.data, rendition.content_type,
                )
            except StorageError as exc:
                logger.warning("Object cache write failed for %s: %s", digest, exc)
        await self._fast_cache.set(fast_cache_key(digest), rendition.to_cache())

    def _record_hit(self, path: str, tier: CacheTier) -> None:
        logger.debug("Cache hit (%s) for %s", tier.value, path)
        self._monitoring.record_metric("image_cache", {
            "path": path, "cache_hit": True, "tier": tier.value,
        })

    async def _watermark_asset(self, watermark: Watermark | None) -> bytes | None:
        if watermark is None or watermark.text or not watermark.image:
            return None
        try:
            return await self._store.get(watermark.image)
        except StorageError as exc:
            logger.warning("Watermark image %s could not be loaded: %s", watermark.image, exc)
            return None

    # ── Upload ───────────────────────────────────────────────────────────────

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str,
        watermark: Watermark | None = None,
    ) -> str:
        """Store an original, watermarking it first when asked. Returns its URL."""
        if watermark is not None:
            asset = await self._watermark_asset(watermark)
            loop = asyncio.get_running_loop()
            data = await loop.run_in_executor(
                None, self._engine.apply_watermark, data, watermark, asset,
            )

        await self._store.put(path, data, content_type)
        logger.info("Stored original %s (%d bytes, %s)", path, len(data), content_type)
        return self._store.url_for(path, self._settings.public_base_url or None)
