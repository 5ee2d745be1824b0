"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from jobqueue.constants import (
    DEFAULT_MAX_SWAP_ATTEMPTS,
    DEFAULT_QUEUE_NAME,
    REDIS_KEY_PREFIX,
    QueueBackend,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Queue
    queue_backend: QueueBackend = QueueBackend.MEMORY
    queue_name: str = DEFAULT_QUEUE_NAME

    # Database
    database_url: str = "sqlite:///./jobqueue.db"
    database_echo: bool = False

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_queue_prefix: str = REDIS_KEY_PREFIX
    redis_max_swap_attempts: int = DEFAULT_MAX_SWAP_ATTEMPTS

    # Worker Configuration
    worker_poll_interval_seconds: float = 1.0

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "job-queue"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
