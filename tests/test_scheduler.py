"""Tests for the background refresh scheduler."""

import asyncio

import pytest

from pharma_cache.services.refresh_scheduler import RefreshScheduler

from tests.conftest import TODAY


class RecordingRefresh:
    def __init__(self, store, domain="transactions"):
        self.store = store
        self.domain = domain
        self.windows = []
        self.gate = asyncio.Event()
        self.gate.set()
        self.error = None

    async def __call__(self, window):
        self.windows.append(window)
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.store.put(self.domain, window, ["refreshed"])


@pytest.mark.asyncio
async def test_tick_ignores_missing_entry(store):
    refresh = RecordingRefresh(store)
    scheduler = RefreshScheduler(store, "transactions", refresh)
    assert scheduler.tick() is None
    assert refresh.windows == []


@pytest.mark.asyncio
async def test_tick_ignores_young_entry(store, clock):
    store.put("transactions", TODAY, [1])
    clock.advance(120_000)
    refresh = RecordingRefresh(store)
    scheduler = RefreshScheduler(store, "transactions", refresh)
    assert scheduler.tick() is None


@pytest.mark.asyncio
async def test_tick_refreshes_aged_entry(store, clock):
    store.put("transactions", TODAY, [1])
    clock.advance(120_001)
    refresh = RecordingRefresh(store)
    scheduler = RefreshScheduler(store, "transactions", refresh)
    task = scheduler.tick()
    assert task is not None
    await task
    assert refresh.windows == [TODAY]
    assert store.peek("transactions", TODAY).data == ["refreshed"]
    assert scheduler.in_flight == set()


@pytest.mark.asyncio
async def test_tick_refreshes_entries_past_validity(store, clock):
    store.put("transactions", TODAY, [1])
    clock.advance(store.validity_window_ms * 2)
    scheduler = RefreshScheduler(store, "transactions", RecordingRefresh(store))
    task = scheduler.tick()
    assert task is not None
    await task


@pytest.mark.asyncio
async def test_one_refresh_in_flight_per_fingerprint(store, clock):
    store.put("transactions", TODAY, [1])
    clock.advance(200_000)
    refresh = RecordingRefresh(store)
    refresh.gate.clear()
    scheduler = RefreshScheduler(store, "transactions", refresh)
    task = scheduler.tick()
    assert scheduler.tick() is None
    assert scheduler.in_flight == {TODAY.fingerprint}
    refresh.gate.set()
    await task
    assert len(refresh.windows) == 1


@pytest.mark.asyncio
async def test_refresh_error_is_contained(store, clock):
    store.put("transactions", TODAY, [1])
    clock.advance(200_000)
    refresh = RecordingRefresh(store)
    refresh.error = RuntimeError("backend down")
    scheduler = RefreshScheduler(store, "transactions", refresh)
    await scheduler.tick()
    assert scheduler.in_flight == set()
    assert store.peek("transactions", TODAY).data == [1]


@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_cancels(store):
    scheduler = RefreshScheduler(store, "transactions", RecordingRefresh(store), interval_s=60)
    scheduler.start()
    first = scheduler._ticker
    scheduler.start()
    assert scheduler._ticker is first
    assert scheduler.running
    await scheduler.stop()
    assert not scheduler.running
    assert first.cancelled()
    await scheduler.stop()


@pytest.mark.asyncio
async def test_ticker_loop_launches_refresh(store, clock):
    store.put("transactions", TODAY, [1])
    clock.advance(200_000)
    refresh = RecordingRefresh(store)
    scheduler = RefreshScheduler(store, "transactions", refresh, interval_s=0.01)
    scheduler.start()
    for _ in range(100):
        if refresh.windows:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()
    assert refresh.windows[0] == TODAY


@pytest.mark.asyncio
async def test_follows_active_window(store, clock):
    from tests.conftest import MONTH

    store.put("transactions", TODAY, [1])
    store.put("transactions", MONTH, [2])
    clock.advance(200_000)
    store.set_active_range(MONTH)
    refresh = RecordingRefresh(store)
    scheduler = RefreshScheduler(store, "transactions", refresh)
    await scheduler.tick()
    assert refresh.windows == [MONTH]


@pytest.mark.asyncio
async def test_schedulers_share_in_flight_claims(store, clock):
    store.put("transactions", TODAY, [1])
    clock.advance(200_000)
    refresh = RecordingRefresh(store)
    refresh.gate.clear()
    first = RefreshScheduler(store, "transactions", refresh)
    second = RefreshScheduler(store, "transactions", refresh)
    other_domain = RefreshScheduler(store, "expenses", RecordingRefresh(store, "expenses"))
    store.put("expenses", TODAY, [1])
    clock.advance(200_000)

    task = first.tick()
    assert second.tick() is None
    expenses_task = other_domain.tick()
    assert expenses_task is not None
    refresh.gate.set()
    await task
    await expenses_task
    assert len(refresh.windows) == 1
    assert first.in_flight == second.in_flight == set()


@pytest.mark.asyncio
async def test_cancelled_refresh_releases_its_claim(store, clock):
    store.put("transactions", TODAY, [1])
    clock.advance(200_000)
    refresh = RecordingRefresh(store)
    refresh.gate.clear()
    scheduler = RefreshScheduler(store, "transactions", refresh)
    task = scheduler.tick()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await asyncio.sleep(0)
    assert store.refreshing("transactions") == set()
