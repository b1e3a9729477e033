from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_files() -> list[str]:
    """Load .env from backend root (when running from services/resize) then local .env."""
    base = Path(__file__).resolve().parent.parent.parent.parent  # backend root
    return [str(base / ".env"), ".env"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=_env_files(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Server ───────────────────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    public_base_url: str = ""

    # ── Object storage (S3-compatible) ───────────────────────────────────────
    storage_backend: str = "s3"  # "s3" or "memory"
    s3_endpoint: str = "localhost"
    s3_port: int = 3900
    s3_use_ssl: bool = False
    s3_access_key: str = "GK0123456789abcdef01234567"
    s3_secret_key: str = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
    s3_region: str = "us-east-1"
    s3_bucket: str = "images"
    storage_timeout_seconds: float = 10.0
    startup_max_retries: int = 5

    # ── Image defaults ───────────────────────────────────────────────────────
    max_width: int = 1920
    max_height: int = 1080
    image_quality: int = 80

    # ── Rendition cache (object storage) ─────────────────────────────────────
    cache_enabled: bool = True
    cache_max_age: int = 86400  # 1 day, also the HTTP max-age

    # ── Fast cache (Dragonfly / Redis protocol) ──────────────────────────────
    dragonfly_enabled: bool = False
    dragonfly_host: str = "localhost"
    dragonfly_port: int = 6379
    dragonfly_cache_ttl: int = 86400
    fast_cache_timeout_seconds: float = 0.5

    # ── Security ─────────────────────────────────────────────────────────────
    api_keys: str = "dev-api-key"
    enable_api_key_auth: bool = False
    rate_limit_enabled: bool = True
    rate_limit_window_ms: int = 60000
    rate_limit_max: int = 100

    # ── CORS ─────────────────────────────────────────────────────────────────
    cors_allowed_origins: str = "*"

    @property
    def api_keys_list(self) -> list[str]:
        return [x.strip() for x in self.api_keys.split(",") if x.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        return [x.strip() for x in self.cors_allowed_origins.split(",") if x.strip()]

    @property
    def s3_endpoint_url(self) -> str:
        scheme = "https" if self.s3_use_ssl else "http"
        return f"{scheme}://{self.s3_endpoint}:{self.s3_port}"

    @property
    def dragonfly_url(self) -> str:
        return f"redis://{self.dragonfly_host}:{self.dragonfly_port}/0"
