"""
Configuration management for the BATCHAT messaging core.
Uses Pydantic Settings for environment variable management.
"""

from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "BATCHAT API"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Document store
    store_backend: str = "memory"
    """Which DocumentStore adapter to build: "memory" or "sql"."""
    database_url: str = "sqlite+aiosqlite:///./batchat.db"
    """Only read when store_backend is "sql"."""

    # Transient store failures
    store_retry_attempts: int = 3
    """Total attempts (first try included) before a StoreUnavailableError is surfaced."""
    store_retry_base_delay: float = 0.05
    store_retry_max_delay: float = 1.0

    # Timeline
    timeline_timezone: str = "UTC"
    """IANA zone used to decide which calendar day a message belongs to."""

    # Search
    search_fields: list[str] = ["name", "handle"]

    # Profiles
    max_bio_length: int = 70
    default_avatar_url: str = "https://i.pravatar.cc/150?u={key}"

    # Blob host
    upload_url: str = "https://api.imgbb.com/1/upload"
    upload_api_key: str = ""
    upload_timeout_seconds: float = 30.0

    # CORS
    cors_origins: list[str] = ["http://localhost:3000"]

    # Identity provider tokens
    jwt_secret_key: str = "change-me-in-production-use-secure-random-key"
    jwt_algorithm: str = "HS256"

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Validate JWT secret is not the default value in production."""
        default_secret = "change-me-in-production-use-secure-random-key"
        if self.environment == "production" and self.jwt_secret_key == default_secret:
            raise ValueError(
                "JWT_SECRET_KEY must be set to the identity provider's signing secret in production."
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
