"""
Admin domain — maintenance routes.

Routes:
  GET   /admin/stats                   Metrics snapshot
  POST  /admin/cache/minio/clear       Delete cached renditions from object storage
  GET   /admin/cache/minio/list        Page through object keys
  POST  /admin/cache/dragonfly/clear   Flush the fast cache
  GET   /admin/health                  Dependency health

Every route requires the API key when ENABLE_API_KEY_AUTH is set.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from app.admin import controller as ctrl
from app.admin.schemas import AdminHealthResponse, CacheListResponse, ClearCacheResponse
from app.config import Settings
from app.dependencies import get_fast_cache, get_monitoring, get_object_store, get_settings
from app.fast_cache import FastCache
from app.image.constants import OBJECT_CACHE_PREFIX
from app.monitoring import MonitoringService
from app.storage import ObjectStore
from shared.auth import require_api_key

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_api_key)])


@router.get("/stats", summary="Metrics snapshot")
async def stats(monitoring: MonitoringService = Depends(get_monitoring)) -> dict[str, Any]:
    return ctrl.stats(monitoring)


@router.post(
    "/cache/minio/clear",
    response_model=ClearCacheResponse,
    summary="Clear the object-storage rendition cache",
    description=(
        "Deletes keys under `cache/` in batches of 1000. With `pattern`, only "
        "keys containing it are deleted. Originals are never touched."
    ),
)
async def clear_minio_cache(
    pattern: str | None = Query(default=None, max_length=1024),
    store: ObjectStore = Depends(get_object_store),
) -> ClearCacheResponse:
    return await ctrl.clear_minio_cache(store, pattern)


@router.get(
    "/cache/minio/list",
    response_model=CacheListResponse,
    summary="List object keys",
)
async def list_minio_cache(
    prefix: str = Query(default=OBJECT_CACHE_PREFIX),
    limit: int = Query(default=100, ge=1, le=1000),
    marker: str | None = Query(default=None, description="First key of the page to return"),
    store: ObjectStore = Depends(get_object_store),
) -> CacheListResponse:
    return await ctrl.list_minio_cache(store, prefix, limit, marker)


@router.post(
    "/cache/dragonfly/clear",
    response_model=ClearCacheResponse,
    summary="Flush the Dragonfly fast cache",
)
async def clear_dragonfly_cache(
    pattern: str | None = Query(default=None),
    fast_cache: FastCache = Depends(get_fast_cache),
) -> ClearCacheResponse:
    return await ctrl.clear_dragonfly_cache(fast_cache, pattern)


@router.get(
    "/health",
    response_model=AdminHealthResponse,
    summary="Dependency health",
)
async def health(
    store: ObjectStore = Depends(get_object_store),
    fast_cache: FastCache = Depends(get_fast_cache),
    monitoring: MonitoringService = Depends(get_monitoring),
    settings: Settings = Depends(get_settings),
) -> AdminHealthResponse:
    return await ctrl.health(store, fast_cache, monitoring, settings)
