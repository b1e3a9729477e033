"""
slowapi rate limiter.

In-memory moving window keyed by client address (first X-Forwarded-For hop,
else the socket peer). One Limiter per app instance; counters are not shared
across worker processes.
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.config import Settings

RATE_LIMIT_MESSAGE = "Too many requests, please try again later."


def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    return forwarded.split(",")[0].strip() or get_remote_address(request)


def build_limiter(settings: Settings) -> Limiter:
    window_seconds = max(1, settings.rate_limit_window_ms // 1000)
    return Limiter(
        key_func=client_address,
        default_limits=[f"{settings.rate_limit_max}/{window_seconds} seconds"],
        storage_uri="memory://",
        strategy="moving-window",
        headers_enabled=True,
        enabled=settings.rate_limit_enabled,
    )


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    # SlowAPIMiddleware calls this synchronously, so it must not be a coroutine
    response = JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"message": RATE_LIMIT_MESSAGE},
    )
    return request.app.state.limiter._inject_headers(
        response, request.state.view_rate_limit,
    )
