from shared.auth.config import ApiKeySettings
from shared.auth.dependencies import get_api_key_settings, require_api_key

__all__ = ["ApiKeySettings", "get_api_key_settings", "require_api_key"]
