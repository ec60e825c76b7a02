"""
schemas/window.py
------------------

Request and response bodies of the cache routes.  Window boundaries
are accepted in any representation the cache understands (ISO strings,
epoch milliseconds) and normalised by :class:`DateRange`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel

from pharma_cache.schemas.cache import DateRange


class WindowRequest(BaseModel):
    start: Union[int, float, str]
    end: Union[int, float, str]

    def to_range(self) -> DateRange:
        return DateRange(start=self.start, end=self.end)


class WindowResponse(BaseModel):
    start: str
    end: str
    fingerprint: str

    @classmethod
    def from_range(cls, window: DateRange) -> "WindowResponse":
        return cls(start=window.start.isoformat(), end=window.end.isoformat(), fingerprint=window.fingerprint)


class CacheView(BaseModel):
    domain: str
    window: WindowResponse
    data: Any
    is_loading: bool
    is_refreshing: bool
    has_cached_data: bool
    fetched: bool
    error: Optional[str] = None


class MutationResult(BaseModel):
    domain: str
    affected: int


class RefreshAllResult(BaseModel):
    window: WindowResponse
    errors: Dict[str, Optional[str]]
