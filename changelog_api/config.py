"""Application settings using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "Changelog Service"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: Literal["development", "staging", "production", "test"] = "development"
    log_level: str = "INFO"

    # ==========================================================================
    # Database
    # ==========================================================================
    database_url: str = Field(default="sqlite+aiosqlite:///./changelog-dev.db")
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # ==========================================================================
    # GitHub
    # ==========================================================================
    github_api_url: str = "https://api.github.com"
    github_client_id: str = Field(default="")
    github_client_secret: str = Field(default="")
    github_timeout_seconds: float = 30.0
    github_per_page: int = 100
    github_max_commit_pages: int = 5
    github_user_agent: str = "changelog-service/0.1.0"

    # ==========================================================================
    # LLM (OpenAI-compatible)
    # ==========================================================================
    openai_api_key: str = Field(default="")
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4"
    openai_temperature: float = 0.7
    openai_max_tokens: int = 2000
    openai_timeout_seconds: float = 120.0

    # ==========================================================================
    # Generation pipeline
    # ==========================================================================
    generation_timeout_seconds: float = 300.0
    generation_stale_after_minutes: int = 30
    # Single process: every processing record at startup is orphaned. Set to
    # false when several workers share the database.
    generation_sweep_all_on_startup: bool = True

    # ==========================================================================
    # API
    # ==========================================================================
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:3001"]
    )

    @property
    def ai_enabled(self) -> bool:
        """Whether an LLM API key is configured."""
        return bool(self.openai_api_key)

    @property
    def github_oauth_enabled(self) -> bool:
        return bool(self.github_client_id and self.github_client_secret)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
