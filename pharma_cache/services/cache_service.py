"""
services/cache_service.py
-------------------------

Application-lifetime container for the cache.  One
:class:`AccountingCacheService` is created at start-up (the FastAPI
lifespan does it) and handed to whoever needs the store, so tests can
build isolated instances instead of sharing a module-level singleton.

Start-up order matters: :meth:`AccountingCacheService.warm_start`
rehydrates the store from the snapshot slot before any consumer asks
for data, then binds the persistence adapter so later changes are
written back.
"""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Callable, Dict, Optional

from pharma_cache.clients.data_service import DataService
from pharma_cache.clients.http_client import HTTPClient
from pharma_cache.core.config import RECORD_DOMAINS, Settings, get_settings
from pharma_cache.core.errors import UnknownDomainError
from pharma_cache.logging_config import log_event
from pharma_cache.schemas.cache import CacheStats, DateRange
from pharma_cache.services.consumer_service import Fetcher, WindowedDataConsumer
from pharma_cache.services.mutation_service import MutationPropagator
from pharma_cache.services.persistence_service import SnapshotPersistence
from pharma_cache.utils.cache import Clock, WindowedCacheStore


class AccountingCacheService:
    """Owns the store, the propagator, persistence and the long-lived consumers."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[WindowedCacheStore] = None,
        data_service: Optional[DataService] = None,
        persistence: Optional[SnapshotPersistence] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or WindowedCacheStore.from_settings(self.settings, clock=clock)
        self.propagator = MutationPropagator(self.store)
        self.data_service = data_service
        if persistence is None and self.settings.persistence_enabled:
            persistence = SnapshotPersistence.from_settings(self.settings, clock=clock)
        self.persistence = persistence
        self._consumers: Dict[str, WindowedDataConsumer] = {}
        self._unbind: Optional[Callable[[], None]] = None

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "AccountingCacheService":
        """Production wiring: real HTTP client and data service."""
        settings = settings or get_settings()
        data_service = DataService(HTTPClient(settings), settings)
        return cls(settings, data_service=data_service)

    def warm_start(self) -> bool:
        """Restore the snapshot (if any) and start writing changes back."""
        if self.persistence is None:
            return False
        restored = self.persistence.restore(self.store)
        if self._unbind is None:
            self._unbind = self.persistence.bind(self.store)
        return restored

    def fetcher_for(self, domain: str) -> Fetcher:
        if self.data_service is None:
            raise RuntimeError("No data service configured")
        return partial(self.data_service.list, domain)

    def consumer(
        self,
        domain: str,
        window: Any = None,
        *,
        fetcher: Optional[Fetcher] = None,
        enable_background_refresh: bool = True,
    ) -> WindowedDataConsumer:
        """Create a new consumer for ``domain`` sharing this service's store."""
        if domain not in self.store.domains:
            raise UnknownDomainError(domain)
        return WindowedDataConsumer(
            self.store,
            domain,
            fetcher or self.fetcher_for(domain),
            window=window,
            propagator=self.propagator,
            enable_background_refresh=enable_background_refresh,
            refresh_interval_s=self.settings.refresh_interval_s,
            stale_threshold_ms=self.settings.stale_threshold_ms,
            fallback_factory=list if domain in RECORD_DOMAINS else dict,
        )

    def consumer_for(self, domain: str) -> WindowedDataConsumer:
        """Long-lived consumer per domain, attached on first use."""
        consumer = self._consumers.get(domain)
        if consumer is None:
            consumer = self.consumer(domain)
            consumer.attach()
            self._consumers[domain] = consumer
        return consumer

    def set_window(self, window: Any) -> DateRange:
        return self.store.set_active_range(window)

    def clear(self, domain: Optional[str] = None) -> int:
        return self.store.clear(domain)

    def stats(self) -> CacheStats:
        return self.store.stats()

    async def refresh_all(self) -> Dict[str, Optional[str]]:
        """Force a refresh of every domain for the active window.

        Returns the error message per domain (``None`` on success).
        """
        window = self.store.active_range
        consumers = [self.consumer(d, window, enable_background_refresh=False) for d in self.store.domains]
        await asyncio.gather(*(c.refresh_data() for c in consumers))
        errors = {c.domain: c.error for c in consumers}
        log_event("refresh_all", window=window.fingerprint, failed=[d for d, e in errors.items() if e])
        return errors

    async def aclose(self) -> None:
        """Detach consumers, write a final snapshot and close the backend client."""
        for consumer in self._consumers.values():
            await consumer.detach()
        self._consumers.clear()
        if self._unbind is not None:
            self._unbind()
            self._unbind = None
        if self.persistence is not None:
            self.persistence.save(self.store)
        if self.data_service is not None:
            await self.data_service.aclose()
        log_event("cache_service_closed", logging.DEBUG)
