"""
clients/http_client.py
----------------------

Asynchronous HTTP client wrapper with connection pooling and timeouts
for the pharmacy backend.  This client should only be instantiated once
per process and shared across services via dependency injection or the
FastAPI lifespan event.  It uses ``httpx`` under the hood and honours
the global settings defined in :mod:`pharma_cache.core.config`.

Requests are sent exactly once.  A transport error, a non-success
status or a body that is not JSON is reported as
:class:`~pharma_cache.core.errors.FetchError`; the cache decides what
to do with it, and the user decides when to retry.
"""

from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx

from pharma_cache.core.config import Settings, get_settings
from pharma_cache.core.errors import FetchError
from pharma_cache.logging_config import log_http_request

DEFAULT_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


class HTTPClient:
    """Shared async HTTP client for the backing data service.

    Parameters
    ----------
    settings : Settings, optional
        Defaults to :func:`get_settings`.
    transport : httpx.AsyncBaseTransport, optional
        Injected transport, used by tests (``httpx.MockTransport``).
    """

    def __init__(self, settings: Optional[Settings] = None, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        settings = settings or get_settings()
        self.timeout = settings.http_timeout
        self.base_url = settings.backend_base_url.rstrip("/")
        # httpx.AsyncClient pools connections across requests
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers=DEFAULT_HEADERS,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTPX client and release resources."""
        await self._client.aclose()

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get_json(self, path: str, *, params: Optional[Dict[str, Any]] = None, domain: Optional[str] = None) -> Any:
        """GET ``path`` relative to the backend base URL and decode the JSON body.

        Raises
        ------
        FetchError
            On transport errors, non-2xx responses or undecodable bodies.
        """
        url = self.url(path)
        start_time = time.monotonic()
        log_http_request("GET", url, params=params)
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            log_http_request("GET", url, params=params, duration_ms=(time.monotonic() - start_time) * 1000)
            raise FetchError(f"Request to {url} failed: {exc}", domain=domain) from exc
        log_http_request(
            "GET",
            url,
            params=params,
            status=response.status_code,
            duration_ms=(time.monotonic() - start_time) * 1000,
        )
        if response.is_error:
            raise FetchError(
                f"HTTP error! status: {response.status_code}",
                domain=domain,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f"Invalid JSON from {url}", domain=domain, status_code=response.status_code) from exc
