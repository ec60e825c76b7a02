"""
services/persistence_service.py
-------------------------------

Warm-start snapshot of the cache.  A whitelisted set of domains plus
the active window is written to a single JSON file (the *slot*) so a
relaunch can render cached numbers before any fetch resolves.

The snapshot carries a version tag and every entry goes through an
explicit per-domain :class:`EntryCodec`, so dates are rebuilt because
the schema says they are dates, not because a field name looks like
one.  A missing, truncated or foreign slot is never fatal: it is
discarded and the store starts empty on today's window.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from pharma_cache.core.config import DEFAULT_DOMAINS, Settings
from pharma_cache.core.dates import to_datetime
from pharma_cache.core.errors import SerializationError
from pharma_cache.logging_config import log_call, log_event
from pharma_cache.schemas.cache import (
    SNAPSHOT_VERSION,
    CacheEntry,
    CacheSnapshot,
    DateRange,
    SnapshotEntry,
)
from pharma_cache.utils.cache import Clock, WindowedCacheStore, system_clock


class EntryCodec:
    """Converts one domain's entries to and from their persisted form.

    ``date_fields`` names record fields that hold ``datetime`` values in
    memory.  They are written as ISO strings and parsed back on load.
    Everything else in ``data`` must already be JSON-compatible.
    """

    def __init__(self, date_fields: Sequence[str] = ()) -> None:
        self.date_fields: Tuple[str, ...] = tuple(date_fields)

    def encode(self, entry: CacheEntry) -> SnapshotEntry:
        return SnapshotEntry(
            data=self._map_records(entry.data, _iso),
            captured_at=entry.captured_at,
            range=entry.range,
            fingerprint=entry.fingerprint,
        )

    def decode(self, raw: SnapshotEntry) -> CacheEntry:
        # The key is derived from the restored range; the stored one is ignored.
        return CacheEntry(
            data=self._map_records(raw.data, to_datetime),
            captured_at=raw.captured_at,
            range=raw.range,
            fingerprint=raw.range.fingerprint,
            last_served_at=raw.captured_at,
        )

    def _map_records(self, data: Any, convert: Callable[[Any], Any]) -> Any:
        if not self.date_fields or not isinstance(data, list):
            return data
        mapped: List[Any] = []
        for record in data:
            if isinstance(record, Mapping):
                record = {
                    k: convert(v) if k in self.date_fields and v is not None else v
                    for k, v in record.items()
                }
            mapped.append(record)
        return mapped


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


class SnapshotPersistence:
    """Reads and writes the snapshot slot for a :class:`WindowedCacheStore`."""

    def __init__(
        self,
        path: Path | str,
        *,
        domains: Iterable[str] = DEFAULT_DOMAINS,
        codecs: Optional[Mapping[str, EntryCodec]] = None,
        clock: Optional[Clock] = None,
        debounce_s: float = 1.0,
    ) -> None:
        self.path = Path(path).expanduser()
        self.domains: List[str] = list(domains)
        self._codecs: Dict[str, EntryCodec] = dict(codecs or {})
        self._default_codec = EntryCodec()
        self._clock: Clock = clock or system_clock
        self.debounce_s = debounce_s
        self._dirty = False
        self._pending: Optional[asyncio.TimerHandle] = None

    @classmethod
    def from_settings(cls, settings: Settings, *, clock: Optional[Clock] = None) -> "SnapshotPersistence":
        return cls(
            settings.snapshot_path,
            domains=settings.persisted_domains,
            clock=clock,
            debounce_s=settings.snapshot_debounce_s,
        )

    def codec_for(self, domain: str) -> EntryCodec:
        return self._codecs.get(domain, self._default_codec)

    # ── writing ──

    def dump(self, store: WindowedCacheStore) -> CacheSnapshot:
        """Build the snapshot of ``store`` (loading flags are never included)."""
        domains: Dict[str, Dict[str, SnapshotEntry]] = {}
        for domain in self.domains:
            if domain not in store.domains:
                continue
            codec = self.codec_for(domain)
            domains[domain] = {key: codec.encode(entry) for key, entry in store.entries(domain).items()}
        return CacheSnapshot(
            version=SNAPSHOT_VERSION,
            saved_at=self._clock(),
            active_range=store.active_range,
            domains=domains,
        )

    def save(self, store: WindowedCacheStore) -> bool:
        """Atomically replace the slot.  Failures are logged and reported as ``False``."""
        self._dirty = False
        try:
            payload = self.dump(store).model_dump_json()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".snapshot-", dir=str(self.path.parent))
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            log_event("snapshot_write_failed", logging.ERROR, path=str(self.path), detail=str(exc))
            return False
        log_event("snapshot_written", logging.DEBUG, path=str(self.path))
        return True

    def bind(self, store: WindowedCacheStore) -> Callable[[], None]:
        """Write ``store`` back after it changes; returns the unbind callable.

        Inside a running event loop, changes are coalesced: the first one
        marks the snapshot dirty and schedules a single :meth:`flush`
        ``debounce_s`` seconds later.  Without a loop the slot is written
        immediately.  Unbinding cancels a pending flush without writing;
        callers that need the last changes on disk call :meth:`save`.
        """

        def on_change(event: str, domain: Optional[str]) -> None:
            if domain is not None and domain not in self.domains:
                return
            self._dirty = True
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self.flush(store)
                return
            if self._pending is None:
                self._pending = loop.call_later(self.debounce_s, self.flush, store)

        unsubscribe = store.subscribe(on_change)

        def unbind() -> None:
            unsubscribe()
            if self._pending is not None:
                self._pending.cancel()
                self._pending = None

        return unbind

    def flush(self, store: WindowedCacheStore) -> bool:
        """Write the slot if a change is pending.  Returns whether it was written."""
        self._pending = None
        if not self._dirty:
            return False
        return self.save(store)

    def discard(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            log_event("snapshot_discard_failed", logging.WARNING, path=str(self.path), detail=str(exc))

    # ── reading ──

    def read(self) -> CacheSnapshot:
        """Parse the slot.

        Raises
        ------
        SerializationError
            If the slot is missing, unreadable, not valid JSON, does not
            match the snapshot schema or carries another version.
        """
        try:
            raw = self.path.read_bytes()
        except OSError as exc:
            raise SerializationError(f"Snapshot slot unreadable: {exc}") from exc
        try:
            # UnicodeDecodeError is a ValueError too
            decoded = json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise SerializationError(f"Snapshot is not valid JSON: {exc}") from exc
        if not isinstance(decoded, dict):
            raise SerializationError("Snapshot root must be an object")
        version = decoded.get("version")
        if version != SNAPSHOT_VERSION:
            raise SerializationError(f"Unsupported snapshot version: {version!r}")
        try:
            return CacheSnapshot.model_validate(decoded)
        except ValidationError as exc:
            raise SerializationError(f"Snapshot has an unexpected shape: {exc.error_count()} errors") from exc

    def _decode_entries(self, snapshot: CacheSnapshot, store: WindowedCacheStore) -> List[Tuple[str, CacheEntry]]:
        decoded: List[Tuple[str, CacheEntry]] = []
        for domain, entries in snapshot.domains.items():
            if domain not in self.domains or domain not in store.domains:
                log_event("snapshot_domain_skipped", logging.DEBUG, domain=domain)
                continue
            codec = self.codec_for(domain)
            for raw in entries.values():
                try:
                    decoded.append((domain, codec.decode(raw)))
                except (TypeError, ValueError) as exc:
                    raise SerializationError(f"Cannot decode {domain} entry: {exc}") from exc
        return decoded

    @log_call
    def restore(self, store: WindowedCacheStore) -> bool:
        """Load the slot into ``store``.

        Returns ``True`` when a snapshot was applied.  On any problem the
        store is left empty on today's window and ``False`` is returned.
        """
        if not self.path.exists():
            log_event("snapshot_missing", path=str(self.path))
            store.set_active_range(DateRange.today())
            return False
        try:
            snapshot = self.read()
            entries = self._decode_entries(snapshot, store)
        except SerializationError as exc:
            log_event("snapshot_discarded", logging.WARNING, path=str(self.path), detail=str(exc))
            self.discard()
            store.set_active_range(DateRange.today())
            return False
        for domain, entry in entries:
            store.replace_entry(domain, entry, notify=False)
        store.set_active_range(snapshot.active_range)
        log_event("snapshot_restored", path=str(self.path), entries=len(entries))
        return True

    def load(self, **store_kwargs: Any) -> WindowedCacheStore:
        """Create a fresh store and restore the slot into it."""
        store = WindowedCacheStore(**store_kwargs)
        self.restore(store)
        return store
