"""Tests for optimistic record writes across cached windows."""

import pytest

from pharma_cache.core.errors import UnknownDomainError
from pharma_cache.services.mutation_service import MutationPropagator

from tests.conftest import MONTH, T0, TODAY


@pytest.fixture
def propagator(store):
    return MutationPropagator(store)


@pytest.fixture
def seeded(store):
    store.put("transactions", TODAY, [{"id": 7, "total": 1000}])
    store.put("transactions", MONTH, [{"id": 6, "total": 50}, {"id": 7, "total": 1000}])
    return store


def test_update_reaches_every_window(seeded, propagator):
    assert propagator.update("transactions", 7, {"total": 1200}) == 2
    assert seeded.get("transactions", TODAY, None) == [{"id": 7, "total": 1200}]
    assert seeded.get("transactions", MONTH, None) == [
        {"id": 6, "total": 50},
        {"id": 7, "total": 1200},
    ]


def test_update_of_unknown_id_changes_nothing(seeded, propagator):
    assert propagator.update("transactions", 99, {"total": 1}) == 0
    assert seeded.get("transactions", MONTH, None)[1] == {"id": 7, "total": 1000}


def test_delete_reaches_every_window(seeded, propagator):
    assert propagator.delete("transactions", 7) == 2
    assert seeded.get("transactions", TODAY, None) == []
    assert seeded.get("transactions", MONTH, None) == [{"id": 6, "total": 50}]


def test_insert_stays_in_active_window(seeded, propagator):
    assert seeded.active_range == TODAY
    propagator.insert("transactions", {"id": 8, "total": 10})
    assert seeded.get("transactions", TODAY, None) == [
        {"id": 8, "total": 10},
        {"id": 7, "total": 1000},
    ]
    month_ids = [rec["id"] for rec in seeded.get("transactions", MONTH, None)]
    assert 8 not in month_ids


def test_insert_creates_missing_bucket(store, propagator):
    propagator.insert("expenses", {"id": 1, "amount": 30})
    entry = store.peek("expenses", TODAY)
    assert entry.data == [{"id": 1, "amount": 30}]
    assert entry.range == TODAY
    assert entry.captured_at == T0


def test_mutations_refresh_captured_at(seeded, propagator, clock):
    clock.advance(seeded.validity_window_ms + 1)
    assert seeded.get("transactions", MONTH, None) is None
    propagator.update("transactions", 6, {"total": 60})
    for window in (TODAY, MONTH):
        assert seeded.peek("transactions", window).captured_at == clock.now
        assert seeded.is_fresh("transactions", window)


def test_insert_refreshes_active_bucket(seeded, propagator, clock):
    clock.advance(90_000)
    propagator.insert("transactions", {"id": 9})
    assert seeded.peek("transactions", TODAY).captured_at == T0 + 90_000
    assert seeded.peek("transactions", MONTH).captured_at == T0


def test_previously_served_lists_are_not_mutated(seeded, propagator):
    served = seeded.get("transactions", TODAY, None)
    propagator.update("transactions", 7, {"total": 1})
    propagator.insert("transactions", {"id": 8})
    assert served == [{"id": 7, "total": 1000}]


def test_summary_domains_reject_record_writes(propagator):
    with pytest.raises(UnknownDomainError):
        propagator.insert("dashboardSummary", {"id": 1})
    with pytest.raises(UnknownDomainError):
        propagator.update("profitLoss", 1, {})


def test_mutations_emit_events(store, propagator):
    events = []
    store.subscribe(lambda event, domain: events.append((event, domain)))
    propagator.insert("transactions", {"id": 1})
    propagator.update("transactions", 1, {"total": 2})
    propagator.delete("transactions", 1)
    assert events == [
        ("insert", "transactions"),
        ("update", "transactions"),
        ("delete", "transactions"),
    ]
