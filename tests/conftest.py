"""Shared fixtures: a manual clock, scripted fetchers and fixed windows."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pytest

from pharma_cache.core.config import Settings
from pharma_cache.schemas.cache import DateRange
from pharma_cache.utils.cache import WindowedCacheStore

# 2025-01-01T00:00:00Z
T0 = 1_735_689_600_000

TODAY = DateRange(start="2025-01-01T00:00:00Z", end="2025-01-01T23:59:59.999Z")
MONTH = DateRange(start="2025-01-01T00:00:00Z", end="2025-01-31T23:59:59.999Z")


class ManualClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeFetcher:
    """Answers from a fingerprint -> data map and records every call."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None, default: Any = None) -> None:
        self.responses = responses or {}
        self.default = [] if default is None else default
        self.error: Optional[Exception] = None
        self.calls: List[Tuple[datetime, datetime]] = []

    async def __call__(self, start: datetime, end: datetime) -> Any:
        self.calls.append((start, end))
        if self.error is not None:
            raise self.error
        key = DateRange(start=start, end=end).fingerprint
        return self.responses.get(key, self.default)


class ControlledFetcher:
    """Every call parks on a future the test resolves explicitly."""

    def __init__(self) -> None:
        self.pending: List[asyncio.Future] = []

    async def __call__(self, start: datetime, end: datetime) -> Any:
        future = asyncio.get_running_loop().create_future()
        self.pending.append(future)
        return await future

    async def wait_for_calls(self, count: int) -> None:
        for _ in range(100):
            if len(self.pending) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} fetches, saw {len(self.pending)}")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock: ManualClock) -> WindowedCacheStore:
    return WindowedCacheStore(clock=clock, active_range=TODAY)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        snapshot_path=tmp_path / "snapshot.json",
        backend_base_url="http://backend.test/api",
        refresh_interval_s=3600,
    )
