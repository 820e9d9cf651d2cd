"""
core/config.py -- TeleGuard settings, read once from the environment.

Every TELEGUARD_* variable (and the optional .env file) lands on Settings;
no other module reads those variables itself. get_settings() caches the
instance, which is also what the API and CLI inject.

Timer and budget values are checked together after loading: a zero call
budget or a negative interval fails startup instead of producing a
scheduler that spins or a fan-out that never returns.

Layer rule: core/ is the kernel. This module may not import from api/ or cache/.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("teleguard.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    sanity rules at startup.
    """

    model_config = SettingsConfigDict(
        env_prefix="TELEGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False

    # ------------------------------------------------------------------
    # Upstream data source
    # ------------------------------------------------------------------

    source_base_url: str = "http://localhost:5000/api"
    # Empty string means "no Authorization header". Sent as a Bearer token.
    source_api_key: str = ""
    # Transport-level timeout handed to requests. The per-call budget below is
    # what bounds a refresh cycle; this one only bounds the worker thread.
    http_timeout_seconds: float = 10.0
    # Per-call budget inside one refresh cycle. A source slower than this is
    # recorded as a timeout and the cycle moves on.
    call_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Refresh cadences (seconds). 0 disables the timer for that context;
    # it can still be refreshed on demand.
    # ------------------------------------------------------------------

    overview_interval_seconds: float = 60.0
    logs_interval_seconds: float = 15.0
    analytics_interval_seconds: float = 60.0

    # ------------------------------------------------------------------
    # Query windows (seconds)
    # ------------------------------------------------------------------

    overview_window_seconds: int = 900
    logs_window_seconds: int = 3600
    analytics_window_seconds: int = 86400

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    refresh_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_timing(self) -> "Settings":
        """Reject non-positive budgets, negative intervals and empty windows.

        The call budget must be positive or every fetch would time out before
        it starts. Intervals may be 0 (on-demand only) but never negative.
        When the transport timeout is shorter than the call budget the budget
        can never trigger; that is allowed but logged.
        """
        if self.call_timeout_seconds <= 0:
            raise ValueError("call_timeout_seconds must be greater than 0.")
        if self.http_timeout_seconds <= 0:
            raise ValueError("http_timeout_seconds must be greater than 0.")
        for name in ("overview_interval_seconds", "logs_interval_seconds", "analytics_interval_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative.")
        for name in ("overview_window_seconds", "logs_window_seconds", "analytics_window_seconds"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be greater than 0.")
        if self.http_timeout_seconds < self.call_timeout_seconds:
            logger.warning(
                "http_timeout_seconds (%.1f) is below call_timeout_seconds (%.1f); "
                "transport timeouts will fire first",
                self.http_timeout_seconds,
                self.call_timeout_seconds,
            )
        return self

    def interval_for(self, context: str) -> Optional[float]:
        """Return the timer interval for a view context, or None when it is on-demand only."""
        value = getattr(self, f"{context}_interval_seconds")
        return value or None


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings. Tests call get_settings.cache_clear() after changing env vars."""
    return Settings()
