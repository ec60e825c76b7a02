"""
schemas/cache.py
-----------------

Models shared by the cache store, the consumers and the persistence
adapter.  ``DateRange`` normalises its boundaries on construction so
that equality and fingerprints are computed on instants rather than on
whatever representation a caller happened to pass in.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pharma_cache.core.dates import (
    fingerprint,
    last_days_bounds,
    to_datetime,
    to_epoch_ms,
    today_bounds,
    year_bounds,
)

SNAPSHOT_VERSION = 1


class DateRange(BaseModel):
    """Closed time window ``[start, end]`` stored as aware UTC datetimes."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end", mode="before")
    @classmethod
    def normalise_boundary(cls, value: Any) -> datetime:
        try:
            instant = to_datetime(value)
        except TypeError as exc:
            raise ValueError(str(exc)) from exc
        # millisecond precision, same as the fingerprint
        return instant.replace(microsecond=instant.microsecond // 1000 * 1000)

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self

    @classmethod
    def coerce(cls, value: Any) -> "DateRange":
        """Build a range from a ``DateRange``, a mapping or a ``(start, end)`` pair."""
        if isinstance(value, DateRange):
            return value
        if isinstance(value, dict):
            return cls(start=value["start"], end=value["end"])
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(start=value[0], end=value[1])
        return cls(start=value.start, end=value.end)

    @classmethod
    def from_bounds(cls, bounds: Tuple[datetime, datetime]) -> "DateRange":
        return cls(start=bounds[0], end=bounds[1])

    @classmethod
    def today(cls, now: Optional[datetime] = None) -> "DateRange":
        return cls.from_bounds(today_bounds(now))

    @classmethod
    def this_week(cls, now: Optional[datetime] = None) -> "DateRange":
        """The last seven days, aligned to whole local days."""
        return cls.from_bounds(last_days_bounds(7, now))

    @classmethod
    def this_month(cls, now: Optional[datetime] = None) -> "DateRange":
        """The last thirty days, aligned to whole local days."""
        return cls.from_bounds(last_days_bounds(30, now))

    @classmethod
    def this_year(cls, now: Optional[datetime] = None) -> "DateRange":
        return cls.from_bounds(year_bounds(now))

    @property
    def start_ms(self) -> int:
        return to_epoch_ms(self.start)

    @property
    def end_ms(self) -> int:
        return to_epoch_ms(self.end)

    @property
    def fingerprint(self) -> str:
        return fingerprint(self)

    def contains(self, value: Any) -> bool:
        instant = to_datetime(value)
        return self.start <= instant <= self.end


class CacheEntry(BaseModel):
    """One fetched result set for one window of one domain.

    ``captured_at`` and ``last_served_at`` are epoch milliseconds taken
    from the store's clock.  ``last_served_at`` only matters when a
    per-domain bucket cap is configured.
    """

    data: Any
    captured_at: int
    range: DateRange
    fingerprint: str
    last_served_at: int = 0

    def age_ms(self, now_ms: int) -> int:
        return max(0, now_ms - self.captured_at)


class SnapshotEntry(BaseModel):
    """Persisted form of a :class:`CacheEntry`."""

    data: Any
    captured_at: int = Field(..., ge=0)
    range: DateRange
    fingerprint: str


class CacheSnapshot(BaseModel):
    """Versioned snapshot written to the durable slot."""

    version: int
    saved_at: int = Field(..., ge=0)
    active_range: DateRange
    domains: Dict[str, Dict[str, SnapshotEntry]] = Field(default_factory=dict)


class CacheStats(BaseModel):
    total_entries: int
    memory_usage: str
    domains: Dict[str, int]
