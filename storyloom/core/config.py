from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class AIDefaults:
    """Process-wide fallback provider used when a user has no credential of their own."""

    provider: str
    api_key: str
    base_url: Optional[str]
    model: str
    max_tokens: int
    connect_timeout_seconds: float


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Critical variables should be provided via environment in production.
    """

    app_name: str = "Storyloom Backend"
    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Security
    jwt_secret_key: str = "change-me-in-prod"
    jwt_refresh_secret_key: str = "change-me-too-in-prod"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expires_minutes: int = 15
    jwt_refresh_token_expires_minutes: int = 7 * 24 * 60  # 7 days

    # Database
    sqlite_path: str = "./data/storyloom.sqlite3"
    database_url: Optional[str] = None

    # Admin
    admin_secret: str = "change-admin"

    # Quota (tokens per local day)
    daily_quota_default: int = 50000
    daily_quota_premium: int = 500000

    # Default AI provider (used when the user has no active api config)
    default_ai_provider: str = "kimi"
    default_ai_api_key: Optional[str] = None
    default_ai_base_url: Optional[str] = None
    default_ai_model: str = "moonshot-v1-128k"
    default_max_tokens: int = 4096
    upstream_connect_timeout_seconds: float = 10.0

    # Crypto
    enc_master_key: str = "dev-master-key-32-bytes-please-change!!!"

    model_config = SettingsConfigDict(env_prefix="APP_", env_file=".env", extra="ignore")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def resolved_database_url(self) -> str:
        return self.database_url or f"sqlite:///{self.sqlite_path}"

    def ai_defaults(self) -> AIDefaults:
        return AIDefaults(
            provider=self.default_ai_provider,
            api_key=self.default_ai_api_key or "",
            base_url=self.default_ai_base_url or None,
            model=self.default_ai_model,
            max_tokens=self.default_max_tokens,
            connect_timeout_seconds=self.upstream_connect_timeout_seconds,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


@lru_cache(maxsize=1)
def get_ai_defaults() -> AIDefaults:
    # built once per process and handed to the generation service
    return get_settings().ai_defaults()


# 全局设置实例
settings = get_settings()
