"""
services/refresh_scheduler.py
-----------------------------

Periodic staleness check for the active window of one domain.

The scheduler is an explicit handle: :meth:`RefreshScheduler.start`
spawns a single ticker task on the running event loop and
:meth:`RefreshScheduler.stop` cancels it, so attaching and detaching a
consumer repeatedly never leaks tickers.  On every tick the entry of
the store's active window is inspected; when it is older than the
staleness threshold a refresh is launched in the background.  At most
one scheduled refresh per fingerprint is in flight at a time, across
every scheduler sharing the store.
Stopping the ticker does not cancel refreshes already running: fetches
are not cancelable and their result is still written to the shared
store.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from pharma_cache.logging_config import log_event
from pharma_cache.schemas.cache import DateRange
from pharma_cache.utils.cache import WindowedCacheStore

RefreshFn = Callable[[DateRange], Awaitable[Any]]


class RefreshScheduler:
    """Background re-validation of one domain's active bucket."""

    def __init__(
        self,
        store: WindowedCacheStore,
        domain: str,
        refresh: RefreshFn,
        *,
        interval_s: float = 30.0,
        stale_threshold_ms: int = 120_000,
    ) -> None:
        self.store = store
        self.domain = domain
        self.interval_s = interval_s
        self.stale_threshold_ms = stale_threshold_ms
        self._refresh = refresh
        self._ticker: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    @property
    def in_flight(self) -> Set[str]:
        """Fingerprints of this domain with a scheduled refresh running (any scheduler)."""
        return self.store.refreshing(self.domain)

    def start(self) -> None:
        """Start ticking on the running loop.  A second call is a no-op."""
        if self.running:
            return
        self._ticker = asyncio.get_running_loop().create_task(
            self._run(), name=f"refresh-scheduler:{self.domain}"
        )
        log_event("scheduler_started", logging.DEBUG, domain=self.domain, interval_s=self.interval_s)

    async def stop(self) -> None:
        """Cancel the ticker and wait for it to finish."""
        ticker, self._ticker = self._ticker, None
        if ticker is None:
            return
        ticker.cancel()
        try:
            await ticker
        except asyncio.CancelledError:
            pass
        log_event("scheduler_stopped", logging.DEBUG, domain=self.domain)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            try:
                self.tick()
            except Exception as exc:
                log_event("scheduler_tick_error", logging.ERROR, domain=self.domain, detail=str(exc))

    def tick(self) -> Optional[asyncio.Task]:
        """Inspect the active bucket once.

        Returns the refresh task when one was launched, ``None`` when the
        bucket is absent, still young enough, or already being refreshed.
        """
        window = self.store.active_range
        entry = self.store.peek(self.domain, window)
        if entry is None:
            return None
        age = entry.age_ms(self.store.now())
        if age <= self.stale_threshold_ms:
            return None
        loop = asyncio.get_running_loop()
        key = entry.fingerprint
        if not self.store.claim_refresh(self.domain, key):
            log_event("background_refresh_skipped", logging.DEBUG, domain=self.domain, fingerprint=key)
            return None
        log_event("background_refresh", domain=self.domain, fingerprint=key, age_ms=age)
        task = loop.create_task(self._guarded_refresh(window, key))
        self._tasks.add(task)

        def done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            self.store.release_refresh(self.domain, key)

        task.add_done_callback(done)
        return task

    async def _guarded_refresh(self, window: DateRange, key: str) -> None:
        try:
            await self._refresh(window)
        except Exception as exc:
            log_event("background_refresh_error", logging.ERROR, domain=self.domain, fingerprint=key, detail=str(exc))
