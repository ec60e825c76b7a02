"""End-to-end tests of the cache routes against a mocked backend."""

import httpx
import pytest
from fastapi.testclient import TestClient

from pharma_cache.clients.data_service import DataService
from pharma_cache.clients.http_client import HTTPClient
from pharma_cache.main import create_app
from pharma_cache.services.cache_service import AccountingCacheService

from tests.conftest import TODAY

WINDOW = {"start": "2025-01-01T00:00:00Z", "end": "2025-01-01T23:59:59.999Z"}


class Backend:
    def __init__(self):
        self.calls = []

    def __call__(self, request):
        self.calls.append(request.url.path)
        if request.url.path.endswith("/transactions"):
            return httpx.Response(200, json={"transactions": [{"id": 1, "total": 100}]})
        if request.url.path.endswith("/dashboard/summary"):
            return httpx.Response(200, json={"success": True, "data": {"revenue": 100}})
        return httpx.Response(500)


@pytest.fixture
def backend():
    return Backend()


@pytest.fixture
def client(settings, backend):
    def factory():
        http_client = HTTPClient(settings, transport=httpx.MockTransport(backend))
        return AccountingCacheService(settings, data_service=DataService(http_client, settings))

    with TestClient(create_app(factory)) as test_client:
        yield test_client


def test_read_fetches_once_then_serves_cache(client, backend):
    first = client.get("/cache/transactions", params=WINDOW)
    assert first.status_code == 200
    body = first.json()
    assert body["fetched"] is True
    assert body["data"] == [{"id": 1, "total": 100}]
    assert body["window"]["fingerprint"] == TODAY.fingerprint
    assert body["is_loading"] is False

    second = client.get("/cache/transactions", params=WINDOW)
    assert second.json()["fetched"] is False
    assert backend.calls == ["/api/transactions"]


def test_summary_domain(client):
    response = client.get("/cache/dashboardSummary", params=WINDOW)
    assert response.status_code == 200
    assert response.json()["data"] == {"revenue": 100}


def test_read_sets_active_window(client):
    client.get("/cache/transactions", params=WINDOW)
    assert client.get("/cache/window").json()["fingerprint"] == TODAY.fingerprint


def test_failed_fetch_without_cache_is_502(client):
    response = client.get("/cache/expenses", params=WINDOW)
    assert response.status_code == 502
    assert response.json()["detail"] == "HTTP error! status: 500"


def test_unknown_domain_is_404(client):
    assert client.get("/cache/payroll", params=WINDOW).status_code == 404
    assert client.delete("/cache/payroll").status_code == 404


def test_invalid_windows_are_422(client):
    assert client.get("/cache/transactions", params={"start": WINDOW["start"]}).status_code == 422
    bad = {"start": "2025-02-01T00:00:00Z", "end": "2025-01-01T00:00:00Z"}
    assert client.get("/cache/transactions", params=bad).status_code == 422
    assert client.put("/cache/window", json={"start": "soon", "end": "later"}).status_code == 422


def test_out_of_range_epoch_is_422(client, backend):
    huge = {"start": "99999999999999999999", "end": WINDOW["end"]}
    assert client.get("/cache/transactions", params=huge).status_code == 422
    assert client.put("/cache/window", json={"start": 1e20, "end": TODAY.end_ms}).status_code == 422
    assert backend.calls == []


def test_put_window(client):
    response = client.put("/cache/window", json={"start": TODAY.start_ms, "end": TODAY.end_ms})
    assert response.status_code == 200
    assert response.json()["fingerprint"] == TODAY.fingerprint
    assert client.get("/cache/window").json()["fingerprint"] == TODAY.fingerprint


def test_forced_refresh(client, backend):
    client.get("/cache/transactions", params=WINDOW)
    response = client.post("/cache/transactions/refresh", params=WINDOW)
    assert response.status_code == 200
    assert response.json()["fetched"] is True
    assert backend.calls == ["/api/transactions", "/api/transactions"]


def test_record_writes(client, backend):
    client.get("/cache/transactions", params=WINDOW)

    created = client.post("/cache/transactions/records", json={"id": 2, "total": 40})
    assert created.status_code == 201
    assert created.json() == {"domain": "transactions", "affected": 1}
    ids = [rec["id"] for rec in client.get("/cache/transactions", params=WINDOW).json()["data"]]
    assert ids == [2, 1]

    patched = client.patch("/cache/transactions/records/1", json={"id": 99, "total": 150})
    assert patched.json()["affected"] == 1
    data = client.get("/cache/transactions", params=WINDOW).json()["data"]
    assert data[1] == {"id": 1, "total": 150}

    deleted = client.delete("/cache/transactions/records/2")
    assert deleted.json()["affected"] == 1
    data = client.get("/cache/transactions", params=WINDOW).json()["data"]
    assert [rec["id"] for rec in data] == [1]
    assert backend.calls == ["/api/transactions"]


def test_record_write_validation(client):
    assert client.post("/cache/transactions/records", json={"total": 1}).status_code == 422
    assert client.post("/cache/dashboardSummary/records", json={"id": 1}).status_code == 404


def test_stats_and_clear(client, backend):
    client.get("/cache/transactions", params=WINDOW)
    client.get("/cache/dashboardSummary", params=WINDOW)
    stats = client.get("/cache/stats").json()
    assert stats["total_entries"] == 2
    assert stats["domains"]["transactions"] == 1

    assert client.delete("/cache/transactions").json()["dropped"] == 1
    assert client.delete("/cache").json()["dropped"] == 1
    assert client.get("/cache/stats").json()["total_entries"] == 0

    client.get("/cache/transactions", params=WINDOW)
    assert backend.calls.count("/api/transactions") == 2


def test_refresh_all_reports_per_domain_errors(client):
    client.put("/cache/window", json=WINDOW)
    body = client.post("/cache/refresh-all").json()
    assert body["window"]["fingerprint"] == TODAY.fingerprint
    assert body["errors"]["transactions"] is None
    assert body["errors"]["expenses"] == "HTTP error! status: 500"


def test_snapshot_written_and_restored(settings, backend):
    def factory():
        http_client = HTTPClient(settings, transport=httpx.MockTransport(backend))
        return AccountingCacheService(settings, data_service=DataService(http_client, settings))

    with TestClient(create_app(factory)) as first:
        first.get("/cache/transactions", params=WINDOW)
    assert settings.snapshot_path.exists()

    with TestClient(create_app(factory)) as second:
        assert second.get("/cache/window").json()["fingerprint"] == TODAY.fingerprint
        assert second.get("/cache/stats").json()["domains"]["transactions"] == 1
