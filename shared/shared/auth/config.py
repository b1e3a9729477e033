from pydantic_settings import BaseSettings, SettingsConfigDict


class ApiKeySettings(BaseSettings):
    """API key guard settings. Services usually build this from their own Settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_keys: str = ""
    enable_api_key_auth: bool = False

    @property
    def api_keys_list(self) -> list[str]:
        return [x.strip() for x in self.api_keys.split(",") if x.strip()]
