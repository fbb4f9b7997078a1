"""Configuration management using pydantic-settings."""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Shared store (every process instance must point at the same Redis)
    redis_url: str = "redis://localhost:6379"
    redis_timeout: float = 3.0
    redis_pool_size: int = 20

    # Cache settings
    cache_key_prefix: str = "competition"
    cache_duration: int = 60      # Staleness window in seconds
    lock_ttl: int = 60            # Max lifetime of an abandoned refresh lock
    refresh_workers: int = 4      # Background refresh threads per process

    # Upstream competition source
    upstream_base_url: str = "https://www.sutazekarate.sk/api"
    upstream_timeout: float = 30.0
    upstream_workers: int = 8

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
