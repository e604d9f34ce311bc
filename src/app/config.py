"""Application configuration helpers."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

FIREBASE_CERTS_URL = (
    "https://www.googleapis.com/robot/v1/metadata/x509/securetoken@system.gserviceaccount.com"
)


class Settings(BaseSettings):
    """Centralized application settings sourced from environment variables."""

    app_env: str = Field(default="local", alias="APP_ENV")
    auth_provider: Literal["firebase", "mock"] = Field(default="firebase", alias="AUTH_PROVIDER")
    firebase_project_id: Optional[str] = Field(default=None, alias="FIREBASE_PROJECT_ID")
    firebase_certs_url: str = Field(default=FIREBASE_CERTS_URL, alias="FIREBASE_CERTS_URL")
    firebase_certs_ttl_seconds: int = Field(default=3600, alias="FIREBASE_CERTS_TTL_SECONDS")
    google_oauth_client_id: Optional[str] = Field(default=None, alias="GOOGLE_OAUTH_CLIENT_ID")
    google_oauth_client_secret: Optional[str] = Field(default=None, alias="GOOGLE_OAUTH_CLIENT_SECRET")
    google_oauth_token_uri: str = Field(
        default="https://oauth2.googleapis.com/token",
        alias="GOOGLE_OAUTH_TOKEN_URI",
    )
    drive_folder_id: Optional[str] = Field(default=None, alias="DRIVE_FOLDER_ID")
    database_url: str = Field(default="sqlite+aiosqlite:///./data/letters.db", alias="DATABASE_URL")
    frontend_base_url: str = Field(default="http://localhost:3000", alias="FRONTEND_BASE_URL")
    cors_origins: list[str] = Field(default_factory=list, alias="CORS_ORIGINS")
    http_timeout_seconds: float = Field(default=30.0, alias="HTTP_TIMEOUT_SECONDS")
    refresh_leeway_seconds: int = Field(default=0, alias="REFRESH_LEEWAY_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        frozen=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid repeated parsing."""
    return Settings()
