"""
Admin domain — request orchestration layer.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from app.admin import service
from app.admin.schemas import (
    AdminHealthResponse,
    CacheInfo,
    CacheListResponse,
    ClearCacheResponse,
    DragonflyInfo,
    MemoryUsage,
    ServiceStatuses,
)
from app.exceptions import (
    CacheClearFailed,
    CacheListFailed,
    FastCacheDisabled,
    PatternClearUnsupported,
    StorageError,
)

if TYPE_CHECKING:
    from app.config import Settings
    from app.fast_cache import FastCache
    from app.monitoring import MonitoringService
    from app.storage import ObjectStore

logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


def stats(monitoring: MonitoringService) -> dict[str, Any]:
    return monitoring.get_stats()


async def clear_minio_cache(store: ObjectStore, pattern: str | None) -> ClearCacheResponse:
    try:
        report = await service.clear_object_cache(store, pattern)
    except StorageError:
        logger.exception("Error clearing MinIO cache")
        raise CacheClearFailed("MinIO")

    if report.deleted == 0 and report.ok:
        return ClearCacheResponse(
            success=True, message="No MinIO cache entries found to clear", count=0,
        )
    if not report.ok:
        return ClearCacheResponse(
            success=False,
            message="MinIO cache partially cleared",
            count=report.deleted,
            failed=report.failed,
        )
    return ClearCacheResponse(
        success=True, message="MinIO cache cleared successfully", count=report.deleted,
    )


async def list_minio_cache(
    store: ObjectStore, prefix: str, limit: int, marker: str | None,
) -> CacheListResponse:
    try:
        page = await service.list_object_cache(store, prefix, limit, marker)
    except StorageError:
        logger.exception("Error listing MinIO cache")
        raise CacheListFailed()
    return CacheListResponse(
        items=page.items,
        count=len(page.items),
        total=page.total,
        next_marker=page.next_marker,
    )


async def clear_dragonfly_cache(
    fast_cache: FastCache, pattern: str | None,
) -> ClearCacheResponse:
    if not fast_cache.enabled:
        raise FastCacheDisabled()
    if pattern:
        raise PatternClearUnsupported()

    count = await fast_cache.clear()
    if count is None:
        raise CacheClearFailed("Dragonfly")
    return ClearCacheResponse(
        success=True, message="Dragonfly cache cleared successfully", count=count,
    )


async def health(
    store: ObjectStore,
    fast_cache: FastCache,
    monitoring: MonitoringService,
    settings: Settings,
) -> AdminHealthResponse:
    return AdminHealthResponse(
        version=SERVICE_VERSION,
        uptime=monitoring.uptime_seconds,
        memory=MemoryUsage(rss=service.current_rss(), max_rss=service.max_rss()),
        services=ServiceStatuses(
            minio=await service.storage_status(store),
            dragonfly=await service.fast_cache_status(fast_cache),
        ),
        cache=CacheInfo(dragonfly=DragonflyInfo(
            enabled=settings.dragonfly_enabled,
            host=settings.dragonfly_host,
            port=settings.dragonfly_port,
        )),
    )
