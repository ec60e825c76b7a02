"""
core/config.py
----------------

Application configuration module.

Defines strongly-typed settings loaded from the environment using
``pydantic-settings``.  These settings control the cache freshness
windows, the background refresh cadence, where the warm-start snapshot
lives and how the backing data service is reached.  Every value can be
overridden through an environment variable prefixed with
``PHARMA_CACHE_``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Every domain the cache knows about, in display order.
DEFAULT_DOMAINS: List[str] = [
    "transactions",
    "expenses",
    "dashboardSummary",
    "profitLoss",
    "expenseAnalysis",
]

# Domains whose cached data is a list of records carrying an ``id``.
RECORD_DOMAINS: List[str] = ["transactions", "expenses"]


def _default_snapshot_path() -> Path:
    return Path.home() / ".cache" / "pharma-cache" / "snapshot.json"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The settings structure is flat.  For example, to make the passive
    freshness window one minute set ``PHARMA_CACHE_VALIDITY_WINDOW_MS=60000``.

    See :class:`pydantic_settings.BaseSettings` for details on how
    environment variables are mapped onto fields.
    """

    # Freshness
    validity_window_ms: int = Field(300_000, gt=0, description="Age below which a cached entry is served as fresh.")
    stale_threshold_ms: int = Field(120_000, gt=0, description="Age above which the background scheduler refetches the active entry.")
    refresh_interval_s: float = Field(30.0, gt=0, description="Tick interval of the background refresh scheduler.")
    max_buckets_per_domain: Optional[int] = Field(
        None, ge=1, description="Optional LRU cap on cached windows per domain. Unset means unbounded."
    )

    # Persistence
    persistence_enabled: bool = Field(True, description="Write and restore the warm-start snapshot.")
    snapshot_path: Path = Field(default_factory=_default_snapshot_path, description="Location of the snapshot slot.")
    snapshot_debounce_s: float = Field(
        1.0, ge=0, description="Delay used to coalesce snapshot writes after cache changes."
    )
    persisted_domains: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DOMAINS),
        description="Domains included in the snapshot.",
    )

    # Backing data service
    backend_base_url: str = Field("http://127.0.0.1:3001/api", description="Base URL of the pharmacy REST backend.")
    http_timeout: float = Field(10.0, gt=0, description="Hard timeout for backend requests in seconds.")
    transactions_limit: int = Field(5000, ge=1, description="Maximum number of transactions requested per window.")

    log_level: str = Field("INFO", description="Root log level for the pharma_cache logger.")

    model_config = SettingsConfigDict(env_prefix="PHARMA_CACHE_", env_file=None, case_sensitive=False)


@lru_cache()
def get_settings() -> Settings:
    """Return a cached instance of the application settings.

    Using a cache prevents repeated environment parsing on every call.
    Tests that need different values construct :class:`Settings`
    directly instead of mutating this instance.
    """
    return Settings()
