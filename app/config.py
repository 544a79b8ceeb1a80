"""Application configuration models."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Discover", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=8080, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    jikan_api_url: HttpUrl = Field(
        default="https://api.jikan.moe/v4", alias="JIKAN_API_URL"
    )
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_api_url: HttpUrl = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_URL",
    )
    gemini_model: str = Field(default="gemini-2.0-flash", alias="GEMINI_MODEL")

    fetch_ttl_seconds: int = Field(
        default=43_200, alias="FETCH_TTL_SECONDS", ge=1
    )
    jikan_request_delay: float = Field(
        default=0.7, alias="JIKAN_REQUEST_DELAY", ge=0, le=10
    )
    provider_timeout: float = Field(
        default=15.0, alias="PROVIDER_TIMEOUT", gt=0, le=120
    )
    recommendation_count: int = Field(
        default=8, alias="RECOMMENDATION_COUNT", ge=1, le=25
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./discover.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", "gemini_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @property
    def fetch_ttl(self) -> timedelta:
        """Return the freshness window applied to every fetch key."""

        return timedelta(seconds=self.fetch_ttl_seconds)

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
