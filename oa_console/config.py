from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # LINE Messaging API - required from .env
    CHANNEL_SECRET: str
    CHANNEL_ACCESS_TOKEN: str
    LINE_API_BASE_URL: str = "https://api.line.me"
    LINE_DATA_API_BASE_URL: str = "https://api-data.line.me"
    LINE_API_TIMEOUT: float = 30.0

    # Object storage (S3 compatible, accessed through MinIO client)
    STORAGE_ENDPOINT: str = "localhost:9000"
    STORAGE_ACCESS_KEY: str = "minioadmin"
    STORAGE_SECRET_KEY: str = "minioadmin"
    STORAGE_SECURE: bool = False
    STORAGE_BUCKET: str = "chat-images"
    # Set explicitly so presigning never needs a bucket-location request
    STORAGE_REGION: str = "us-east-1"
    # Requested lifetime of read URLs. Presigned ones are clamped to the
    # 7 day SigV4 limit and re-signed whenever messages are read.
    STORAGE_URL_EXPIRES_IN: int = Field(default=31536000, ge=1)
    # When set, durable URLs point at a public bucket instead of being presigned
    STORAGE_PUBLIC_BASE_URL: Optional[str] = None

    # Pagination
    MESSAGES_PER_PAGE: int = Field(default=50, ge=1)
    MAX_PAGE_SIZE: int = Field(default=200, ge=1)


class ClientSettings(BaseSettings):
    """Settings for the operator-side conversation client."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    CONSOLE_API_URL: str = "http://localhost:8000"
    CONSOLE_API_TIMEOUT: float = 10.0
    POLLING_INTERVAL: float = Field(default=3.0, gt=0)
    RECENT_LIMIT: int = Field(default=100, ge=1)
    RECENT_CAP: int = Field(default=200, ge=1)
    MESSAGES_PER_PAGE: int = Field(default=50, ge=1)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


@lru_cache()
def get_client_settings() -> ClientSettings:
    return ClientSettings()
