"""
clients/data_service.py
-----------------------

Per-domain ``list(start, end)`` calls against the pharmacy REST
backend.  Each domain maps to one endpoint, the names of its date query
parameters and the key under which the backend nests the payload.  A
successful answer is the complete, authoritative result set for the
window; the cache replaces its entry with it rather than merging.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, NamedTuple, Optional

from pharma_cache.clients.http_client import HTTPClient
from pharma_cache.core.config import Settings, get_settings
from pharma_cache.core.dates import to_query_dates
from pharma_cache.core.errors import FetchError, UnknownDomainError
from pharma_cache.logging_config import log_call
from pharma_cache.schemas.cache import DateRange


class Endpoint(NamedTuple):
    path: str
    start_param: str
    end_param: str
    payload_key: Optional[str]
    is_list: bool


ENDPOINTS: Dict[str, Endpoint] = {
    "transactions": Endpoint("transactions", "start_date", "end_date", "transactions", True),
    "expenses": Endpoint("accounts/expenses", "startDate", "endDate", "data", True),
    "dashboardSummary": Endpoint("accounts/dashboard/summary", "startDate", "endDate", "data", False),
    "profitLoss": Endpoint("accounts/reports/profit-loss", "startDate", "endDate", "data", False),
    "expenseAnalysis": Endpoint("accounts/expenses/analysis", "startDate", "endDate", "data", False),
}


class DataService:
    """Backing data service seen by the cache."""

    def __init__(self, http_client: HTTPClient, settings: Optional[Settings] = None) -> None:
        self.http_client = http_client
        self.settings = settings or get_settings()

    async def aclose(self) -> None:
        await self.http_client.aclose()

    @log_call
    async def list(self, domain: str, start: datetime, end: datetime) -> Any:
        """Fetch the result set of ``domain`` for ``[start, end]``.

        Raises
        ------
        UnknownDomainError
            If no endpoint is registered for ``domain``.
        FetchError
            If the backend call fails or the body has an unexpected shape.
        """
        endpoint = ENDPOINTS.get(domain)
        if endpoint is None:
            raise UnknownDomainError(domain)
        start_date, end_date = to_query_dates(DateRange(start=start, end=end))
        params: Dict[str, Any] = {endpoint.start_param: start_date, endpoint.end_param: end_date}
        if domain == "transactions":
            params["limit"] = self.settings.transactions_limit
        body = await self.http_client.get_json(endpoint.path, params=params, domain=domain)
        return self._unwrap(domain, endpoint, body)

    @staticmethod
    def _unwrap(domain: str, endpoint: Endpoint, body: Any) -> Any:
        if isinstance(body, dict) and body.get("success") is False:
            raise FetchError(body.get("message") or f"Failed to load {domain}", domain=domain)
        payload = body
        if isinstance(body, dict) and endpoint.payload_key in body:
            payload = body[endpoint.payload_key]
        if endpoint.is_list:
            if payload is None:
                return []
            if not isinstance(payload, list):
                raise FetchError(f"Unexpected {domain} payload", domain=domain)
            return payload
        if not isinstance(payload, dict):
            raise FetchError(f"Unexpected {domain} payload", domain=domain)
        return payload
