"""Configuration management for the church teams API."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()


class Settings(BaseModel):
    """Application configuration loaded from environment variables."""

    app_env: str = "dev"
    version: str = "0.1.0"
    log_level: str = "INFO"
    database_url: str = "sqlite:///./church_teams.db"
    cors_origins: list[str] = Field(default_factory=list)

    pco_client_id: str = ""
    pco_client_secret: str = ""
    pco_redirect_uri: str = ""
    pco_scopes: list[str] = Field(default_factory=lambda: ["people", "services"])
    pco_api_base_url: str = "https://api.planningcenteronline.com"
    pco_http_timeout: float = Field(default=15.0, gt=0)
    pco_refresh_margin_seconds: int = Field(default=300, ge=0)

    auth_jwt_secret: str = ""
    auth_jwt_audience: str = "authenticated"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            if not value:
                return []
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        if isinstance(value, list):
            return value
        return []

    @field_validator("pco_scopes", mode="before")
    @classmethod
    def assemble_pco_scopes(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            return [scope for scope in value.replace(",", " ").split() if scope]
        if isinstance(value, list):
            return value
        return []

    @field_validator("pco_api_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def pco_token_url(self) -> str:
        return f"{self.pco_api_base_url}/oauth/token"

    @property
    def pco_authorize_url(self) -> str:
        return f"{self.pco_api_base_url}/oauth/authorize"

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("sqlite+aiosqlite://"):
            return self.database_url
        if self.database_url.startswith("sqlite:///"):
            return self.database_url.replace("sqlite:///", "sqlite+aiosqlite:///")
        if self.database_url.startswith("sqlite://"):
            return self.database_url.replace("sqlite://", "sqlite+aiosqlite://")
        return self.database_url


def _build_settings() -> Settings:
    raw_values: dict[str, Any] = {
        "app_env": os.getenv("APP_ENV"),
        "version": os.getenv("APP_VERSION"),
        "log_level": os.getenv("LOG_LEVEL"),
        "database_url": os.getenv("DATABASE_URL"),
        "cors_origins": os.getenv("CORS_ORIGINS"),
        "pco_client_id": os.getenv("PLANNING_CENTER_CLIENT_ID"),
        "pco_client_secret": os.getenv("PLANNING_CENTER_CLIENT_SECRET"),
        "pco_redirect_uri": os.getenv("PLANNING_CENTER_REDIRECT_URI"),
        "pco_scopes": os.getenv("PLANNING_CENTER_SCOPES"),
        "pco_api_base_url": os.getenv("PLANNING_CENTER_API_URL"),
        "pco_http_timeout": os.getenv("PLANNING_CENTER_HTTP_TIMEOUT"),
        "pco_refresh_margin_seconds": os.getenv("PLANNING_CENTER_REFRESH_MARGIN"),
        "auth_jwt_secret": os.getenv("AUTH_JWT_SECRET"),
        "auth_jwt_audience": os.getenv("AUTH_JWT_AUDIENCE"),
    }
    filtered_values = {key: value for key, value in raw_values.items() if value is not None}
    return Settings(**filtered_values)


@lru_cache()
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return _build_settings()
