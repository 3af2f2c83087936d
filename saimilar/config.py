"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App
    app_env: Literal["development", "production", "test"] = "development"
    app_secret_key: str

    @field_validator("app_secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """Ensure secret key is strong enough."""
        if len(v) < 32:
            raise ValueError("APP_SECRET_KEY must be at least 32 characters long")
        if v == "change-me-to-a-secure-random-string":
            raise ValueError("APP_SECRET_KEY must be changed from the default value")
        return v

    app_url: str = "http://localhost:8080"
    app_name: str = "SAImilar"

    # Database
    database_url: str = "sqlite+aiosqlite:///./saimilar.db"

    # Redis
    redis_url: RedisDsn = "redis://localhost:6379/0"  # type: ignore[assignment]

    # LLM providers (credentials stay server-side)
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    perplexity_api_key: str = ""
    perplexity_base_url: str = "https://api.perplexity.ai"

    # Model used when the session has no active model and as the fallback target
    default_model: str = "gemini"
    # Model a brand new session starts with
    session_model: str = "gpt4"

    # External APIs
    tmdb_api_key: str = ""

    # Browser origins allowed to call the API (the app URL is always allowed)
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging; unset means DEBUG outside production
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None

    # Directory of per-session settings files (provider, model, theme, language)
    settings_dir: Path = Path("saimilar_settings")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def database_url_async(self) -> str:
        """Get async database URL (postgresql+asyncpg)."""
        return self.database_url.replace("postgresql://", "postgresql+asyncpg://")

    @property
    def allowed_origins(self) -> list[str]:
        if self.is_production:
            return [self.app_url]
        return [self.app_url, *self.cors_origins]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]
