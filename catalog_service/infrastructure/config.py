"""Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_version: str = "0.1.0"
    debug: bool = False

    # Store
    store_backend: str = "sql"  # "sql" or "memory"
    database_url: str = "postgresql+asyncpg://catalog:catalog_dev_password@db:5432/catalog"

    # Cache
    cache_backend: str = "redis"  # "redis" or "memory"
    redis_url: str = "redis://redis:6379/0"
    redis_socket_timeout_seconds: float = 1.0
    redis_connect_timeout_seconds: float = 1.0
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 10_000
    cache_key_prefix: str = "catalog:item:"
    cache_call_timeout_seconds: float = 0.5

    # Change events
    event_backend: str = "redis"  # "redis" or "memory"
    event_stream_prefix: str = "catalog.items"
    event_stream_partitions: int = 8
    event_stream_maxlen: int = 100_000

    # Outbox relay
    outbox_poll_interval_seconds: float = 2.0
    outbox_batch_size: int = 100
    outbox_backoff_base_seconds: float = 1.0
    outbox_backoff_max_seconds: float = 300.0
    outbox_max_attempts: int = 20

    # Timeouts
    operation_timeout_seconds: float = 5.0

    # Inventory service
    inventory_service_url: str = "http://inventory-service:8081"
    inventory_timeout_seconds: float = 2.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    class Config:
        """Pydantic configuration."""

        env_prefix = "CATALOG_"
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
