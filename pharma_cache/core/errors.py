"""
core/errors.py
----------------

Exception taxonomy of the cache.  Fetch failures are surfaced to the
consumer that issued the call, snapshot problems are absorbed by the
persistence adapter and unknown domains are programming errors that
routes translate into 404 responses.
"""

from __future__ import annotations

from typing import Optional


class CacheError(Exception):
    """Base class for every error raised by the cache."""


class FetchError(CacheError):
    """The backing data service failed or answered with a non-success status."""

    def __init__(self, message: str, *, domain: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.domain = domain
        self.status_code = status_code


class SerializationError(CacheError):
    """A persisted snapshot is missing, truncated or has an unexpected shape."""


class UnknownDomainError(CacheError, KeyError):
    """The requested domain is not registered with the store."""

    def __init__(self, domain: str) -> None:
        super().__init__(domain)
        self.domain = domain

    def __str__(self) -> str:
        return f"Unknown cache domain: {self.domain}"
