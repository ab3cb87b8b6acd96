from functools import lru_cache
from threading import Lock
from typing import Optional
import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator

# Cost Explorer rejects a dimension filter with more than 200 values.
COST_EXPLORER_FILTER_LIMIT = 200


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for leasecost.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "leasecost"
    DEBUG: bool = False
    TESTING: bool = False

    AWS_REGION: str = "us-east-1"
    AWS_READ_TIMEOUT_SECONDS: int = 30
    AWS_CONNECT_TIMEOUT_SECONDS: int = 10
    AWS_PROFILE: Optional[str] = None

    # One below the API limit to leave headroom.
    COST_EXPLORER_MAX_ACCOUNTS_IN_FILTER: int = 199
    COST_EXPLORER_MAX_DAYS_FOR_HOURLY: int = 14
    COST_EXPLORER_METRIC: str = "UnblendedCost"
    # Safety limit to prevent runaway pagination
    COST_EXPLORER_MAX_PAGES: int = 300

    DAILY_COSTS_MAX_CONCURRENCY: int = 5
    DAILY_COSTS_RATE_INTERVAL_SECONDS: float = 1.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Validates Cost Explorer limits and throttling parameters."""
        self._validate_cost_explorer_config()
        self._validate_throttling_config()
        return self

    def _validate_cost_explorer_config(self) -> None:
        if not 1 <= self.COST_EXPLORER_MAX_ACCOUNTS_IN_FILTER <= COST_EXPLORER_FILTER_LIMIT:
            raise ValueError(
                "COST_EXPLORER_MAX_ACCOUNTS_IN_FILTER must be between 1 and "
                f"{COST_EXPLORER_FILTER_LIMIT}."
            )
        if self.COST_EXPLORER_MAX_DAYS_FOR_HOURLY < 1:
            raise ValueError("COST_EXPLORER_MAX_DAYS_FOR_HOURLY must be positive.")
        if self.COST_EXPLORER_MAX_PAGES < 1:
            raise ValueError("COST_EXPLORER_MAX_PAGES must be positive.")

    def _validate_throttling_config(self) -> None:
        if self.DAILY_COSTS_MAX_CONCURRENCY < 1:
            raise ValueError("DAILY_COSTS_MAX_CONCURRENCY must be at least 1.")
        if self.DAILY_COSTS_RATE_INTERVAL_SECONDS <= 0:
            raise ValueError("DAILY_COSTS_RATE_INTERVAL_SECONDS must be positive.")
