"""
In-process metrics aggregator behind ``GET /admin/stats``.

Every series is a ``deque(maxlen=...)``: appends are atomic and the oldest
entries fall off once the buffer is full, so memory stays bounded without a
lock on the request path.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

MAX_METRICS = 1000


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class RequestMetric:
    path: str
    method: str
    status_code: int
    duration_ms: float
    ip: str
    user_agent: str | None = None
    timestamp: float = field(default_factory=_now_ms)


@dataclass
class ImageProcessingMetric:
    original_path: str
    output_format: str
    input_size: int
    output_size: int
    processing_ms: float
    timestamp: float = field(default_factory=_now_ms)


def _avg(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class MonitoringService:
    def __init__(self, max_metrics: int = MAX_METRICS) -> None:
        self._max = max_metrics
        self._requests: deque[RequestMetric] = deque(maxlen=max_metrics)
        self._processing: deque[ImageProcessingMetric] = deque(maxlen=max_metrics)
        self._cache: deque[dict[str, Any]] = deque(maxlen=max_metrics)
        self._generic: dict[str, deque[dict[str, Any]]] = {}
        self._started = time.monotonic()

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started

    def record_request(self, metric: RequestMetric) -> None:
        self._requests.append(metric)

    def record_image_processing(self, metric: ImageProcessingMetric) -> None:
        self._processing.append(metric)

    def record_metric(self, metric_type: str, data: dict[str, Any]) -> None:
        entry = {**data, "timestamp": data.get("timestamp") or _now_ms()}
        # setdefault is atomic on dict, so two first writers share one buffer
        self._generic.setdefault(metric_type, deque(maxlen=self._max)).append(entry)
        if metric_type.startswith("cache_"):
            self._cache.append({
                "operation": metric_type.removeprefix("cache_"),
                "duration": data.get("duration", 0.0),
                **entry,
            })

    def series(self, metric_type: str) -> list[dict[str, Any]]:
        return list(self._generic.get(metric_type, ()))

    def get_stats(self) -> dict[str, Any]:
        now = _now_ms()
        requests = list(self._requests)
        processing = list(self._processing)
        cache_ops = list(self._cache)
        renditions = self.series("image_cache")

        status_codes: dict[str, int] = {}
        endpoint_usage: dict[str, int] = {}
        for m in requests:
            bucket = f"{m.status_code // 100}xx"
            status_codes[bucket] = status_codes.get(bucket, 0) + 1
            endpoint_usage[m.path] = endpoint_usage.get(m.path, 0) + 1

        format_distribution: dict[str, int] = {}
        for m in processing:
            format_distribution[m.output_format] = format_distribution.get(m.output_format, 0) + 1

        gets = [m for m in cache_ops if m["operation"] == "get"]
        hits = sum(1 for m in gets if m.get("hit"))
        misses = len(gets) - hits

        rendition_hits: dict[str, int] = {}
        for m in renditions:
            if m.get("cache_hit"):
                tier = m.get("tier", "unknown")
                rendition_hits[tier] = rendition_hits.get(tier, 0) + 1

        return {
            "uptime": self.uptime_seconds,
            "requests": {
                "total": len(requests),
                "recent_per_minute": sum(1 for m in requests if now - m.timestamp < 60_000),
                "avg_response_time": _avg([m.duration_ms for m in requests]),
                "status_codes": status_codes,
                "endpoint_usage": endpoint_usage,
            },
            "image_processing": {
                "total": len(processing),
                "avg_processing_time": _avg([m.processing_ms for m in processing]),
                "avg_compression_ratio": _avg([
                    m.input_size / m.output_size for m in processing if m.output_size
                ]),
                "format_distribution": format_distribution,
            },
            "cache": {
                "total": len(cache_ops),
                "hits": hits,
                "misses": misses,
                "hit_rate": hits / len(gets) if gets else 0.0,
                "avg_get_time": _avg([m["duration"] for m in gets]),
                "avg_set_time": _avg([m["duration"] for m in cache_ops if m["operation"] == "set"]),
            },
            "renditions": {
                "hits": rendition_hits,
                "misses": sum(1 for m in renditions if not m.get("cache_hit")),
            },
        }


def request_metrics_middleware(monitoring: MonitoringService):
    """Build an ``http`` middleware that records one RequestMetric per request."""

    async def middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        forwarded = request.headers.get("x-forwarded-for", "")
        client_ip = forwarded.split(",")[0].strip() or (
            request.client.host if request.client else "unknown"
        )
        monitoring.record_request(RequestMetric(
            path=request.url.path,
            method=request.method,
            status_code=response.status_code,
            duration_ms=(time.perf_counter() - started) * 1000,
            ip=client_ip,
            user_agent=request.headers.get("user-agent"),
        ))
        return response

    return middleware
