"""
Admin domain — cache maintenance and health probes.

Zero FastAPI imports.
"""
from __future__ import annotations

import logging
import resource
import sys
from dataclasses import dataclass

from app.exceptions import StorageError
from app.fast_cache import FastCache
from app.image.constants import OBJECT_CACHE_PREFIX
from app.storage import ObjectStore, RemovalReport

logger = logging.getLogger(__name__)


@dataclass
class KeyPage:
    items: list[str]
    total: int
    next_marker: str | None


def paginate(keys: list[str], limit: int, marker: str | None = None) -> KeyPage:
    """Slice ``keys`` into a page starting at ``marker`` (inclusive).

    An unknown or empty marker starts from the first key. ``next_marker`` is
    the first key after the page, or None on the last page.
    """
    start = 0
    if marker:
        try:
            start = keys.index(marker)
        except ValueError:
            start = 0
    end = start + limit
    return KeyPage(
        items=keys[start:end],
        total=len(keys),
        next_marker=keys[end] if len(keys) > end else None,
    )


async def list_object_cache(
    store: ObjectStore, prefix: str, limit: int, marker: str | None = None,
) -> KeyPage:
    keys = await store.list(prefix)
    return paginate(keys, limit, marker)


async def clear_object_cache(store: ObjectStore, pattern: str | None = None) -> RemovalReport:
    """Delete cached renditions, optionally only keys containing ``pattern``.

    Originals are never touched: only keys under the cache prefix are listed.
    """
    keys = await store.list(OBJECT_CACHE_PREFIX)
    if pattern:
        keys = [k for k in keys if pattern in k]
    if not keys:
        return RemovalReport()
    report = await store.remove_many(keys)
    logger.info(
        "Object cache clear: %d deleted, %d failed (pattern=%r)",
        report.deleted, report.failed, pattern,
    )
    return report


async def storage_status(store: ObjectStore) -> str:
    try:
        await store.initialize()
    except StorageError as exc:
        logger.warning("Object storage health check failed: %s", exc)
        return "error"
    return "ok"


async def fast_cache_status(fast_cache: FastCache) -> str:
    if not fast_cache.enabled:
        return "disabled"
    return "ok" if await fast_cache.ping() else "error"


def _megabytes(size_bytes: int) -> str:
    return f"{round(size_bytes / (1024 * 1024))}MB"


def current_rss() -> str | None:
    """Current resident set size from /proc. None where procfs is unavailable."""
    try:
        with open("/proc/self/statm") as f:
            resident_pages = int(f.read().split()[1])
    except (OSError, IndexError, ValueError):
        return None
    return _megabytes(resident_pages * resource.getpagesize())


def max_rss() -> str:
    """Peak resident set size of this process, in whole megabytes."""
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # kilobytes on Linux, bytes on macOS
    return _megabytes(usage if sys.platform == "darwin" else usage * 1024)
