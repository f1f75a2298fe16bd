from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Resilience layer settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    These are the single source of the retry, cool-down and TTL defaults;
    ``ResilienceOptions`` reads them as its field defaults.
    """

    # Retry / backoff settings (seconds)
    resilience_max_retries: int = 3  # Total attempts before falling back
    resilience_base_delay: float = 1.0
    resilience_max_delay: float = 60.0
    resilience_jitter_ratio: float = 0.1  # Up to 10% added to each delay
    resilience_attempt_timeout: float | None = None  # Per-attempt bound
    resilience_retry_on_timeout: bool = False

    # Cool-down applied when a 429 carries no Retry-After header
    rate_limit_default_cooldown: int = 60

    # Fallback cache settings
    cache_default_ttl: int = 300  # 5 minutes
    cache_use_durable_tier: bool = True
    cache_key_prefix: str = "tripguard_cache_"
    # Durable entries outlive their TTL this long so stale fallbacks survive
    cache_durable_retention: int = 604800  # 7 days

    # Durable tier backend: none | file | redis
    durable_backend: Literal["none", "file", "redis"] = "none"
    cache_file_path: str = ".tripguard/cache.json"
    redis_url: str = "redis://localhost:6379/0"

    # Offline detection (empty URL disables active probing)
    connectivity_probe_url: str = ""
    connectivity_probe_timeout: float = 2.0

    # HTTP Client connection pool settings
    httpx_connect_timeout: float = 5.0
    httpx_read_timeout: float = 10.0
    httpx_write_timeout: float = 5.0
    httpx_pool_timeout: float = 5.0
    httpx_keepalive_expiry: float = 30.0
    httpx_max_connections: int = 100
    httpx_max_keepalive_connections: int = 20

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | json

    @field_validator("resilience_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate at least one attempt is made."""
        if v < 1:
            raise ValueError("resilience_max_retries must be at least 1")
        return v

    @field_validator(
        "resilience_base_delay",
        "resilience_max_delay",
        "connectivity_probe_timeout",
        "httpx_connect_timeout",
        "httpx_read_timeout",
    )
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        """Validate durations are positive."""
        if v <= 0:
            raise ValueError("Duration values must be positive")
        return v

    @field_validator("resilience_jitter_ratio")
    @classmethod
    def validate_jitter_ratio(cls, v: float) -> float:
        """Validate jitter ratio lies in [0, 1]."""
        if not 0 <= v <= 1:
            raise ValueError("resilience_jitter_ratio must be between 0 and 1")
        return v

    @field_validator(
        "rate_limit_default_cooldown", "cache_default_ttl", "cache_durable_retention"
    )
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate cool-down and TTL are not negative."""
        if v < 0:
            raise ValueError("cool-down and TTL values must not be negative")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
