from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "hookbridge"
    app_env: str = "local"
    app_version: str = "0.1.0"
    api_port: int = 8000
    database_url: str = "sqlite:///./hookbridge.db"
    jwt_secret: str = "replace-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7
    auth_cookie_name: str = "auth-token"
    bitrix_timeout_seconds: float = 30.0
    bitrix_test_webhook_url: str = "https://your-bitrix-domain.bitrix24.ru"
    crm_metadata_cache_ttl_seconds: int = 300
    metrics_enabled: bool = False
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_console_exporter: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", case_sensitive=False)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in {"prod", "production"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
