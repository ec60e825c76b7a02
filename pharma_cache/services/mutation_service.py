"""
services/mutation_service.py
----------------------------

Optimistic record-level writes onto the cached windows.  When a user
creates, edits or deletes a transaction or an expense, every open
screen should see the change straight away instead of waiting for the
next fetch.

A new record is placed only in the bucket of the active window: the
cache cannot tell, without asking the backend, whether it would also
satisfy the filters of the other cached windows.  Edits and deletes
touch every bucket of the domain, because a record already known may
be visible in several overlapping windows (today, this week, this
month) at once.  Each mutation stamps ``captured_at`` on every bucket
it scans, so a local write counts as a fresh fetch.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping

from pharma_cache.core.config import RECORD_DOMAINS
from pharma_cache.core.errors import UnknownDomainError
from pharma_cache.logging_config import log_call, log_event
from pharma_cache.schemas.cache import CacheEntry
from pharma_cache.utils.cache import WindowedCacheStore


def _record_id(record: Any) -> Any:
    return record.get("id") if isinstance(record, Mapping) else None


class MutationPropagator:
    """Applies local inserts, updates and deletes to a shared store."""

    def __init__(self, store: WindowedCacheStore, record_domains: Iterable[str] = RECORD_DOMAINS) -> None:
        self.store = store
        self.record_domains = set(record_domains)

    def _check(self, domain: str) -> None:
        if domain not in self.record_domains or domain not in self.store.domains:
            raise UnknownDomainError(domain)

    @log_call
    def insert(self, domain: str, record: Mapping[str, Any]) -> int:
        """Put ``record`` first in the active window's bucket.

        The bucket is created when the active window has not been
        fetched yet.  Returns the number of records inserted (always 1).
        """
        self._check(domain)
        store = self.store
        window = store.active_range
        entry = store.peek(domain, window)
        now = store.now()
        if entry is None or not isinstance(entry.data, list):
            entry = CacheEntry(
                data=[record],
                captured_at=now,
                range=window,
                fingerprint=window.fingerprint,
                last_served_at=now,
            )
        else:
            entry = entry.model_copy(update={"data": [record, *entry.data], "captured_at": now})
        store.replace_entry(domain, entry, notify=False)
        log_event("record_inserted", logging.DEBUG, domain=domain, fingerprint=entry.fingerprint, id=_record_id(record))
        store.emit("insert", domain)
        return 1

    @log_call
    def update(self, domain: str, record_id: Any, patch: Mapping[str, Any]) -> int:
        """Merge ``patch`` into every cached copy of ``record_id``.

        Returns the number of cached copies that were changed.
        """
        self._check(domain)

        def apply(records: List[Any]) -> List[Any]:
            return [
                {**rec, **patch} if _record_id(rec) == record_id else rec
                for rec in records
            ]

        touched = self._rewrite_all(domain, apply, lambda rec: _record_id(rec) == record_id)
        log_event("record_updated", logging.DEBUG, domain=domain, id=record_id, copies=touched)
        self.store.emit("update", domain)
        return touched

    @log_call
    def delete(self, domain: str, record_id: Any) -> int:
        """Remove ``record_id`` from every cached window of ``domain``.

        Returns the number of cached copies removed.
        """
        self._check(domain)

        def apply(records: List[Any]) -> List[Any]:
            return [rec for rec in records if _record_id(rec) != record_id]

        touched = self._rewrite_all(domain, apply, lambda rec: _record_id(rec) == record_id)
        log_event("record_deleted", logging.DEBUG, domain=domain, id=record_id, copies=touched)
        self.store.emit("delete", domain)
        return touched

    def _rewrite_all(self, domain: str, apply: Any, matches: Any) -> int:
        store = self.store
        now = store.now()
        touched = 0
        rewritten: Dict[str, CacheEntry] = {}
        for key, entry in store.entries(domain).items():
            if not isinstance(entry.data, list):
                continue
            touched += sum(1 for rec in entry.data if matches(rec))
            rewritten[key] = entry.model_copy(update={"data": apply(entry.data), "captured_at": now})
        for entry in rewritten.values():
            store.replace_entry(domain, entry, notify=False)
        return touched
