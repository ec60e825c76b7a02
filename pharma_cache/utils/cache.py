"""
utils/cache.py
---------------

In-process cache of fetched result sets keyed by time window.  Each
domain (transactions, expenses, dashboard summary, ...) keeps its own
``fingerprint -> CacheEntry`` map.  Reading an entry that aged past the
validity window returns the caller's fallback but never removes the
entry: staleness decides whether an entry is handed out as fresh, not
whether it exists.  Entries disappear only through :meth:`clear` or,
when a per-domain cap is configured, through least-recently-served
eviction.

The store is synchronous and single-threaded.  It is meant to be
created once per process and shared by every consumer; writes are
whole-entry, last-write-wins.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from pharma_cache.core.config import DEFAULT_DOMAINS, Settings
from pharma_cache.core.errors import UnknownDomainError
from pharma_cache.logging_config import log_event
from pharma_cache.schemas.cache import CacheEntry, CacheStats, DateRange

Clock = Callable[[], int]
Listener = Callable[[str, Optional[str]], None]


def system_clock() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class WindowedCacheStore:
    """Keyed storage of result sets per domain and time window.

    The store also owns the application-wide *active window* (the range
    the screens are currently looking at) and transient per-domain
    loading counters and background refresh claims.  Neither these nor
    the listener list are persisted.
    """

    def __init__(
        self,
        domains: Iterable[str] = DEFAULT_DOMAINS,
        *,
        validity_window_ms: int = 300_000,
        max_buckets_per_domain: Optional[int] = None,
        clock: Optional[Clock] = None,
        active_range: Optional[DateRange] = None,
    ) -> None:
        self.validity_window_ms = validity_window_ms
        self.max_buckets_per_domain = max_buckets_per_domain
        self._clock: Clock = clock or system_clock
        self._buckets: Dict[str, "OrderedDict[str, CacheEntry]"] = {d: OrderedDict() for d in domains}
        self._loading: Dict[str, int] = {}
        self._refreshing: Dict[str, Set[str]] = {}
        self._listeners: List[Listener] = []
        self._active_range = active_range or DateRange.today()

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Optional[Clock] = None) -> "WindowedCacheStore":
        return cls(
            validity_window_ms=settings.validity_window_ms,
            max_buckets_per_domain=settings.max_buckets_per_domain,
            clock=clock,
        )

    # ── clock & lookup ──

    def now(self) -> int:
        return self._clock()

    @property
    def domains(self) -> List[str]:
        return list(self._buckets)

    def _bucket(self, domain: str) -> "OrderedDict[str, CacheEntry]":
        try:
            return self._buckets[domain]
        except KeyError:
            raise UnknownDomainError(domain) from None

    # ── core ──

    def get(self, domain: str, window: Any, fallback: Any) -> Any:
        """Return cached data for ``window`` or ``fallback``.

        :param domain: registered domain name
        :param window: anything :meth:`DateRange.coerce` accepts
        :param fallback: value returned on a miss or when the entry is stale
        :return: the cached data if the entry is younger than the validity window
        """
        bucket = self._bucket(domain)
        key = DateRange.coerce(window).fingerprint
        entry = bucket.get(key)
        now = self.now()
        if entry is not None and entry.age_ms(now) < self.validity_window_ms:
            entry.last_served_at = now
            bucket.move_to_end(key)
            log_event("cache_hit", logging.DEBUG, domain=domain, fingerprint=key)
            return entry.data
        log_event("cache_miss", logging.DEBUG, domain=domain, fingerprint=key, stale=entry is not None)
        return fallback

    def put(self, domain: str, window: Any, data: Any) -> CacheEntry:
        """Insert or wholesale overwrite the entry for ``window``.

        :param domain: registered domain name
        :param window: anything :meth:`DateRange.coerce` accepts
        :param data: the authoritative result set for that window
        :return: the stored entry
        """
        bucket = self._bucket(domain)
        window = DateRange.coerce(window)
        key = window.fingerprint
        captured_at = self._stamp(bucket.get(key))
        entry = CacheEntry(
            data=data,
            captured_at=captured_at,
            range=window,
            fingerprint=key,
            last_served_at=captured_at,
        )
        bucket[key] = entry
        bucket.move_to_end(key)
        self._enforce_cap(domain, bucket)
        log_event("cache_put", logging.DEBUG, domain=domain, fingerprint=key)
        self.emit("put", domain)
        return entry

    def clear(self, domain: Optional[str] = None) -> int:
        """Drop every entry of ``domain``, or of all domains.  Returns count."""
        if domain is not None:
            bucket = self._bucket(domain)
            dropped = len(bucket)
            bucket.clear()
        else:
            dropped = sum(len(b) for b in self._buckets.values())
            for bucket in self._buckets.values():
                bucket.clear()
        log_event("cache_cleared", domain=domain, dropped=dropped)
        self.emit("clear", domain)
        return dropped

    # ── entry inspection ──

    def peek(self, domain: str, window: Any) -> Optional[CacheEntry]:
        """Entry for ``window`` regardless of its age, without marking it served."""
        return self._bucket(domain).get(DateRange.coerce(window).fingerprint)

    def age_ms(self, domain: str, window: Any) -> Optional[int]:
        entry = self.peek(domain, window)
        if entry is None:
            return None
        return entry.age_ms(self.now())

    def is_fresh(self, domain: str, window: Any) -> bool:
        age = self.age_ms(domain, window)
        return age is not None and age < self.validity_window_ms

    def entries(self, domain: str) -> Dict[str, CacheEntry]:
        """Shallow copy of the ``fingerprint -> entry`` map of ``domain``."""
        return dict(self._bucket(domain))

    def replace_entry(self, domain: str, entry: CacheEntry, *, notify: bool = True) -> CacheEntry:
        """Store a prepared entry under its own fingerprint.

        ``captured_at`` is clamped so it never moves backwards for an
        existing fingerprint.
        """
        bucket = self._bucket(domain)
        previous = bucket.get(entry.fingerprint)
        if previous is not None and previous.captured_at > entry.captured_at:
            entry = entry.model_copy(update={"captured_at": previous.captured_at})
        bucket[entry.fingerprint] = entry
        self._enforce_cap(domain, bucket)
        if notify:
            self.emit("replace", domain)
        return entry

    def _stamp(self, previous: Optional[CacheEntry]) -> int:
        now = self.now()
        if previous is not None and previous.captured_at > now:
            return previous.captured_at
        return now

    def _enforce_cap(self, domain: str, bucket: "OrderedDict[str, CacheEntry]") -> None:
        limit = self.max_buckets_per_domain
        if not limit:
            return
        while len(bucket) > limit:
            key, _ = bucket.popitem(last=False)
            log_event("cache_evicted", domain=domain, fingerprint=key)

    # ── active window ──

    @property
    def active_range(self) -> DateRange:
        return self._active_range

    @property
    def active_fingerprint(self) -> str:
        return self._active_range.fingerprint

    def set_active_range(self, window: Any) -> DateRange:
        window = DateRange.coerce(window)
        if window != self._active_range:
            self._active_range = window
            self.emit("active_range", None)
        return window

    # ── loading flags ──

    def set_loading(self, domain: str, loading: bool) -> None:
        self._bucket(domain)
        count = self._loading.get(domain, 0) + (1 if loading else -1)
        self._loading[domain] = max(0, count)

    def is_loading(self, domain: str) -> bool:
        return self._loading.get(domain, 0) > 0

    # ── background refresh claims ──

    def claim_refresh(self, domain: str, key: str) -> bool:
        """Reserve the background refresh of ``key``.

        Shared by every scheduler of the store so that at most one
        scheduled refresh per domain and fingerprint runs at a time.
        Returns ``False`` when the fingerprint is already claimed.
        """
        self._bucket(domain)
        claimed = self._refreshing.setdefault(domain, set())
        if key in claimed:
            return False
        claimed.add(key)
        return True

    def release_refresh(self, domain: str, key: str) -> None:
        self._refreshing.get(domain, set()).discard(key)

    def refreshing(self, domain: str) -> Set[str]:
        return set(self._refreshing.get(domain, ()))

    # ── listeners ──

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(event, domain)``; returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event: str, domain: Optional[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, domain)
            except Exception as exc:
                log_event(
                    "cache_listener_error",
                    logging.ERROR,
                    cache_event=event,
                    domain=domain,
                    detail=str(exc),
                )

    # ── diagnostics ──

    def stats(self) -> CacheStats:
        """Entry counts and the approximate JSON size of all cached data."""
        total_size = 0
        per_domain: Dict[str, int] = {}
        for domain, bucket in self._buckets.items():
            per_domain[domain] = len(bucket)
            for entry in bucket.values():
                if entry.data:
                    total_size += len(json.dumps(entry.data, default=str))
        return CacheStats(
            total_entries=sum(per_domain.values()),
            memory_usage=f"{total_size / 1024 / 1024:.2f} MB",
            domains=per_domain,
        )
