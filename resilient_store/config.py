"""
Configuration management for the resilient data-access layer.
"""

from typing import Any, Dict

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from resilient_store.retry import RetryConfig


class ResilienceConfig(BaseSettings):
    """Settings for cache, retry and circuit breaker, read from RESILIENCE_* env vars."""

    model_config = SettingsConfigDict(
        env_prefix="RESILIENCE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    service_name: str = Field(default="resilient-store")

    # Cache
    cache_default_ttl: float = Field(default=120.0, ge=0)
    cache_prune_interval: float = Field(default=60.0, ge=0)

    # Retry
    retry_max_retries: int = Field(default=3, ge=0)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=10.0, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)

    # Circuit breaker
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_reset_timeout: float = Field(default=30.0, ge=0)
    breaker_success_threshold: int = Field(default=2, ge=1)

    # Observability
    enable_metrics: bool = Field(default=True)

    def retry_config(self) -> RetryConfig:
        """Build the retry policy described by these settings."""
        return RetryConfig(
            max_retries=self.retry_max_retries,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            backoff_multiplier=self.retry_backoff_multiplier
        )

    def breaker_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for CircuitBreaker."""
        return {
            "failure_threshold": self.breaker_failure_threshold,
            "reset_timeout": self.breaker_reset_timeout,
            "success_threshold": self.breaker_success_threshold,
        }


def get_config(**overrides: Any) -> ResilienceConfig:
    """Get configuration, with explicit overrides taking precedence over the environment."""
    return ResilienceConfig(**overrides)
