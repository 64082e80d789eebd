"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SESSION_NAMESPACE = "filmrate_user"


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="FilmRate", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=8080, alias="PORT")

    api_base_url: HttpUrl = Field(
        default="http://localhost:3000", alias="API_BASE_URL"
    )
    request_timeout_seconds: float = Field(
        default=20.0, alias="REQUEST_TIMEOUT", gt=0
    )

    session_namespace: str = Field(
        default=DEFAULT_SESSION_NAMESPACE, alias="SESSION_NAMESPACE"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./filmrate.db", alias="DATABASE_URL"
    )

    min_release_year: int = Field(default=1888, alias="MIN_RELEASE_YEAR")
    max_release_year: int = Field(default=2030, alias="MAX_RELEASE_YEAR")

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("session_namespace", mode="before")
    @classmethod
    def _clean_namespace(cls, value: object) -> str:
        """Strip whitespace and reject blank storage namespaces."""

        if value is None:
            return DEFAULT_SESSION_NAMESPACE
        cleaned = str(value).strip()
        if not cleaned:
            raise ValueError("SESSION_NAMESPACE must not be blank")
        return cleaned

    @model_validator(mode="after")
    def _check_release_year_bounds(self) -> "Settings":
        if self.min_release_year > self.max_release_year:
            raise ValueError(
                "MIN_RELEASE_YEAR must not be greater than MAX_RELEASE_YEAR"
            )
        return self

    @property
    def api_base(self) -> str:
        """Return the remote store URL without a trailing slash."""

        return str(self.api_base_url).rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
