"""
services/consumer_service.py
----------------------------

Consumption API used by the analytics screens.  A
:class:`WindowedDataConsumer` is bound to one domain and one shared
store.  Whenever its window changes it decides between serving the
cached result set and going to the network, exposes loading and
refreshing flags, keeps the last fetch error for display, and forwards
optimistic record writes to the mutation propagator.

A failed fetch never touches the cached entry: the screen keeps showing
the last good data next to the error message until the user retries
with :meth:`WindowedDataConsumer.refresh_data`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

from pharma_cache.core.errors import UnknownDomainError
from pharma_cache.logging_config import log_event
from pharma_cache.schemas.cache import DateRange
from pharma_cache.services.mutation_service import MutationPropagator
from pharma_cache.services.refresh_scheduler import RefreshScheduler
from pharma_cache.utils.cache import WindowedCacheStore

Fetcher = Callable[[datetime, datetime], Awaitable[Any]]


class WindowedDataConsumer:
    """One screen's view onto a domain of the shared cache.

    Parameters
    ----------
    store : WindowedCacheStore
        The process-wide store.
    domain : str
        Domain served by this consumer.
    fetcher : callable
        ``await fetcher(start, end)`` returns the authoritative result set
        for a window.  Any exception it raises is treated as a fetch
        failure.
    window : optional
        Initial window; defaults to the store's active window.
    propagator : MutationPropagator, optional
        Shared propagator; one is created over ``store`` when omitted.
    enable_background_refresh : bool
        Whether :meth:`attach` starts a :class:`RefreshScheduler`.
    fallback_factory : callable
        Produces the empty value returned on a miss (``list`` for record
        domains, ``dict`` for summaries).
    """

    def __init__(
        self,
        store: WindowedCacheStore,
        domain: str,
        fetcher: Fetcher,
        *,
        window: Any = None,
        propagator: Optional[MutationPropagator] = None,
        enable_background_refresh: bool = True,
        refresh_interval_s: float = 30.0,
        stale_threshold_ms: int = 120_000,
        fallback_factory: Callable[[], Any] = list,
    ) -> None:
        if domain not in store.domains:
            raise UnknownDomainError(domain)
        self.store = store
        self.domain = domain
        self.error: Optional[str] = None
        self._fetcher = fetcher
        self._fallback_factory = fallback_factory
        self._window = DateRange.coerce(window) if window is not None else store.active_range
        self._last_fingerprint: Optional[str] = None
        self._in_flight = 0
        self._propagator = propagator or MutationPropagator(store)
        self._scheduler: Optional[RefreshScheduler] = None
        if enable_background_refresh:
            self._scheduler = RefreshScheduler(
                store,
                domain,
                self._fetch,
                interval_s=refresh_interval_s,
                stale_threshold_ms=stale_threshold_ms,
            )

    # ── state exposed to screens ──

    @property
    def window(self) -> DateRange:
        return self._window

    @property
    def scheduler(self) -> Optional[RefreshScheduler]:
        return self._scheduler

    @property
    def data(self) -> Any:
        return self.store.get(self.domain, self._window, self._fallback_factory())

    @property
    def has_cached_data(self) -> bool:
        return bool(self.data)

    @property
    def is_loading(self) -> bool:
        """True only while a fetch runs and nothing is cached for the window yet."""
        return self.store.is_loading(self.domain) and not self.has_cached_data

    @property
    def is_refreshing(self) -> bool:
        return self._in_flight > 0

    def clear_error(self) -> None:
        self.error = None

    # ── window changes ──

    async def set_window(self, window: Any) -> bool:
        """Switch to ``window`` and make it the store's active window.

        Returns whether a network fetch was issued.
        """
        self._window = DateRange.coerce(window)
        self.store.set_active_range(self._window)
        return await self.sync()

    async def sync(self) -> bool:
        """Serve from cache or fetch when the window changed since the last call."""
        key = self._window.fingerprint
        if key == self._last_fingerprint:
            return False
        self._last_fingerprint = key
        if self.has_cached_data:
            log_event("window_changed", logging.DEBUG, domain=self.domain, fingerprint=key, source="cache")
            return False
        log_event("window_changed", logging.DEBUG, domain=self.domain, fingerprint=key, source="network")
        return await self.fetch_data()

    # ── fetching ──

    async def fetch_data(self, force_refresh: bool = False) -> bool:
        """Fetch the current window unless fresh data is already cached.

        Returns whether a network call was issued.
        """
        if not force_refresh and self.has_cached_data:
            return False
        await self._fetch(self._window)
        return True

    async def refresh_data(self) -> None:
        """Always fetch, ignoring the validity window."""
        await self._fetch(self._window)

    async def _fetch(self, window: DateRange) -> None:
        store = self.store
        store.set_loading(self.domain, True)
        self.error = None
        self._in_flight += 1
        try:
            data = await self._fetcher(window.start, window.end)
        except Exception as exc:
            self.error = str(exc) or exc.__class__.__name__
            log_event(
                "fetch_error",
                logging.ERROR,
                domain=self.domain,
                fingerprint=window.fingerprint,
                detail=self.error,
            )
        else:
            store.put(self.domain, window, data)
            log_event(
                "fetch_completed",
                domain=self.domain,
                fingerprint=window.fingerprint,
                records=len(data) if isinstance(data, list) else None,
            )
        finally:
            store.set_loading(self.domain, False)
            self._in_flight -= 1

    # ── optimistic writes ──

    def add_record(self, record: Mapping[str, Any]) -> int:
        return self._propagator.insert(self.domain, record)

    def update_record(self, record_id: Any, patch: Mapping[str, Any]) -> int:
        return self._propagator.update(self.domain, record_id, patch)

    def delete_record(self, record_id: Any) -> int:
        return self._propagator.delete(self.domain, record_id)

    # ── lifecycle ──

    def attach(self) -> None:
        """Start background refresh (needs a running event loop)."""
        if self._scheduler is not None:
            self._scheduler.start()

    async def detach(self) -> None:
        """Stop background refresh.  In-flight fetches still complete."""
        if self._scheduler is not None:
            await self._scheduler.stop()

    async def __aenter__(self) -> "WindowedDataConsumer":
        self.attach()
        await self.sync()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.detach()
