"""
Admin domain — Pydantic V2 response schemas.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Base(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# ── Cache maintenance ────────────────────────────────────────────────────────

class ClearCacheResponse(_Base):
    success: bool
    message: str
    count: int
    failed: int = Field(default=0, description="Keys left behind by failed delete batches.")


class CacheListResponse(_Base):
    """One page of object keys. Pass ``nextMarker`` back as ``marker`` for the next page."""

    success: bool = True
    items: list[str]
    count: int
    total: int
    next_marker: str | None = Field(default=None, alias="nextMarker")


# ── Health ───────────────────────────────────────────────────────────────────

class MemoryUsage(_Base):
    rss: str | None = None
    max_rss: str


class ServiceStatuses(_Base):
    minio: str
    dragonfly: str


class DragonflyInfo(_Base):
    enabled: bool
    host: str
    port: int


class CacheInfo(_Base):
    dragonfly: DragonflyInfo


class AdminHealthResponse(_Base):
    status: str = "ok"
    version: str
    uptime: float
    memory: MemoryUsage
    services: ServiceStatuses
    cache: CacheInfo
