import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from shared.auth.config import ApiKeySettings

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_api_key_settings() -> ApiKeySettings:
    """Overridden per app via ``app.dependency_overrides``."""
    return ApiKeySettings()


def _matches(candidate: str, keys: list[str]) -> bool:
    return any(hmac.compare_digest(candidate.encode(), k.encode()) for k in keys)


async def require_api_key(
    api_key: str | None = Depends(api_key_header),
    settings: ApiKeySettings = Depends(get_api_key_settings),
) -> str | None:
    if not settings.enable_api_key_auth:
        return None
    if not api_key or not _matches(api_key, settings.api_keys_list):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid API key",
        )
    return api_key
