import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.admin.router import router as admin_router
from app.config import Settings
from app.fast_cache import FastCache, build_fast_cache
from app.image.router import router as image_router
from app.image.service import ImageService
from app.image.transform import TransformEngine
from app.monitoring import MonitoringService, request_metrics_middleware
from app.rate_limit import build_limiter, rate_limit_exceeded_handler
from app.storage import ObjectStore, build_object_store, connect_with_retry
from shared.auth import ApiKeySettings, get_api_key_settings
from shared.database.redis_client import RedisClient
from shared.middleware import (
    error_envelope_middleware,
    register_exception_handlers,
    request_id_middleware,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s:%(name)s: %(message)s"


# ── OpenAPI metadata ──────────────────────────────────────────────────────────

_DESCRIPTION = """
## Image Resize Service

On-demand image transformation proxy in front of S3-compatible storage.

* **Resize** — `GET /images/resize/{path}` fits, crops, rotates, filters,
  watermarks and re-encodes (WebP / JPEG / PNG) an original on request.
* **Caching** — every rendition is cached under a content-addressed key in
  object storage and, when enabled, in Dragonfly (Redis protocol).
* **Upload** — `POST /images/upload` stores a base64 original, optionally
  watermarked.
* **Admin** — stats, cache listing and clearing, dependency health.

### Authentication
Upload and admin routes require `X-API-Key` when `ENABLE_API_KEY_AUTH=true`.

### Error shape
```json
{ "message": "Human-readable message", "request_id": "..." }
```
"""

_TAGS_METADATA = [
    {"name": "images", "description": "Resize, upload and image endpoint health."},
    {"name": "admin", "description": "Metrics, cache maintenance and dependency health."},
]


# ── Health schema ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    service: str


# ── App factory ───────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    connected = await connect_with_retry(app.state.object_store, settings.startup_max_retries)
    if not connected:
        logger.error("Starting without verified object storage; requests may fail")
    yield
    await app.state.fast_cache.close()


def create_app(
    settings: Settings | None = None,
    *,
    object_store: ObjectStore | None = None,
    redis_client: RedisClient | None = None,
) -> FastAPI:
    """Build the service. ``object_store`` and ``redis_client`` replace the configured backends."""
    settings = settings or Settings()
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)

    monitoring = MonitoringService()
    store = object_store or build_object_store(settings)
    if redis_client is not None:
        fast_cache = FastCache(
            redis_client,
            monitoring,
            default_ttl=settings.dragonfly_cache_ttl,
            timeout_seconds=settings.fast_cache_timeout_seconds,
        )
    else:
        fast_cache = build_fast_cache(settings, monitoring)
    engine = TransformEngine(settings.max_width, settings.max_height, settings.image_quality)

    app = FastAPI(
        title="Image Resize Service",
        version="1.0.0",
        description=_DESCRIPTION,
        openapi_tags=_TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.monitoring = monitoring
    app.state.object_store = store
    app.state.fast_cache = fast_cache
    app.state.image_service = ImageService(store, fast_cache, engine, monitoring, settings)

    api_key_settings = ApiKeySettings(
        api_keys=settings.api_keys,
        enable_api_key_auth=settings.enable_api_key_auth,
    )
    app.dependency_overrides[get_api_key_settings] = lambda: api_key_settings

    # Attach rate limiter state before middleware
    app.state.limiter = build_limiter(settings)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    register_exception_handlers(app)

    # Middleware (applied in reverse-registration order: last added = outermost)
    app.add_middleware(SlowAPIMiddleware)
    app.middleware("http")(request_metrics_middleware(monitoring))
    app.middleware("http")(request_id_middleware)
    app.middleware("http")(error_envelope_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials="*" not in settings.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    app.include_router(image_router)
    app.include_router(admin_router)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", service="resize")

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
