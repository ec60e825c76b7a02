"""
routes/cache.py
----------------

HTTP surface of the cache for the accounting screens.  Reads go through
a long-lived consumer per domain, so they are answered from memory when
possible and fetched otherwise; record writes are optimistic and land
in the cache immediately.  A failed fetch only turns into an error
response when there is no cached data to show instead.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import ValidationError

from pharma_cache.core.errors import UnknownDomainError
from pharma_cache.logging_config import log_event
from pharma_cache.schemas.cache import CacheStats, DateRange
from pharma_cache.schemas.window import (
    CacheView,
    MutationResult,
    RefreshAllResult,
    WindowRequest,
    WindowResponse,
)
from pharma_cache.services.cache_service import AccountingCacheService
from pharma_cache.services.consumer_service import WindowedDataConsumer

router = APIRouter(prefix="/cache", tags=["cache"])


def get_cache_service(request: Request) -> AccountingCacheService:
    return request.app.state.cache_service


def _window(service: AccountingCacheService, start: Optional[str], end: Optional[str]) -> DateRange:
    if start is None and end is None:
        return service.store.active_range
    if start is None or end is None:
        raise HTTPException(status_code=422, detail="start and end must be given together")
    try:
        return DateRange(start=start, end=end)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid date range: {exc.errors()[0]['msg']}") from exc


def _consumer(service: AccountingCacheService, domain: str) -> WindowedDataConsumer:
    try:
        return service.consumer_for(domain)
    except UnknownDomainError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _view(consumer: WindowedDataConsumer, fetched: bool) -> CacheView:
    data = consumer.data
    if consumer.error and not data:
        log_event("cache_view_failed", logging.WARNING, domain=consumer.domain, detail=consumer.error)
        raise HTTPException(status_code=502, detail=consumer.error)
    return CacheView(
        domain=consumer.domain,
        window=WindowResponse.from_range(consumer.window),
        data=data,
        is_loading=consumer.is_loading,
        is_refreshing=consumer.is_refreshing,
        has_cached_data=bool(data),
        fetched=fetched,
        error=consumer.error,
    )


@router.get("/stats", response_model=CacheStats)
async def get_stats(service: AccountingCacheService = Depends(get_cache_service)) -> CacheStats:
    return service.stats()


@router.get("/window", response_model=WindowResponse)
async def get_window(service: AccountingCacheService = Depends(get_cache_service)) -> WindowResponse:
    return WindowResponse.from_range(service.store.active_range)


@router.put("/window", response_model=WindowResponse)
async def put_window(body: WindowRequest, service: AccountingCacheService = Depends(get_cache_service)) -> WindowResponse:
    try:
        window = body.to_range()
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=f"Invalid date range: {exc.errors()[0]['msg']}") from exc
    return WindowResponse.from_range(service.set_window(window))


@router.post("/refresh-all", response_model=RefreshAllResult)
async def post_refresh_all(service: AccountingCacheService = Depends(get_cache_service)) -> RefreshAllResult:
    errors = await service.refresh_all()
    return RefreshAllResult(window=WindowResponse.from_range(service.store.active_range), errors=errors)


@router.delete("")
async def delete_all(service: AccountingCacheService = Depends(get_cache_service)) -> Dict[str, Any]:
    return {"status": "ok", "dropped": service.clear()}


@router.get("/{domain}", response_model=CacheView)
async def get_domain(
    domain: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    service: AccountingCacheService = Depends(get_cache_service),
) -> CacheView:
    """Data of ``domain`` for the given window (default: the active window)."""
    consumer = _consumer(service, domain)
    fetched = await consumer.set_window(_window(service, start, end))
    if not fetched:
        # same window as the previous request, but the entry may have aged out
        fetched = await consumer.fetch_data()
    return _view(consumer, fetched)


@router.post("/{domain}/refresh", response_model=CacheView)
async def post_refresh(
    domain: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    service: AccountingCacheService = Depends(get_cache_service),
) -> CacheView:
    """Fetch ``domain`` from the backend regardless of cache freshness."""
    consumer = _consumer(service, domain)
    await consumer.set_window(_window(service, start, end))
    await consumer.refresh_data()
    return _view(consumer, True)


@router.delete("/{domain}")
async def delete_domain(domain: str, service: AccountingCacheService = Depends(get_cache_service)) -> Dict[str, Any]:
    try:
        dropped = service.clear(domain)
    except UnknownDomainError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"status": "ok", "domain": domain, "dropped": dropped}


@router.post("/{domain}/records", response_model=MutationResult, status_code=201)
async def post_record(
    domain: str,
    record: Dict[str, Any] = Body(...),
    service: AccountingCacheService = Depends(get_cache_service),
) -> MutationResult:
    if not isinstance(record.get("id"), int):
        raise HTTPException(status_code=422, detail="record must carry an integer id")
    try:
        affected = service.propagator.insert(domain, record)
    except UnknownDomainError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MutationResult(domain=domain, affected=affected)


@router.patch("/{domain}/records/{record_id}", response_model=MutationResult)
async def patch_record(
    domain: str,
    record_id: int,
    patch: Dict[str, Any] = Body(...),
    service: AccountingCacheService = Depends(get_cache_service),
) -> MutationResult:
    patch.pop("id", None)
    try:
        affected = service.propagator.update(domain, record_id, patch)
    except UnknownDomainError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MutationResult(domain=domain, affected=affected)


@router.delete("/{domain}/records/{record_id}", response_model=MutationResult)
async def delete_record(
    domain: str,
    record_id: int,
    service: AccountingCacheService = Depends(get_cache_service),
) -> MutationResult:
    try:
        affected = service.propagator.delete(domain, record_id)
    except UnknownDomainError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MutationResult(domain=domain, affected=affected)
