# main.py
from __future__ import annotations

import json
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse

# Import logging utilities early so that the logger configuration is
# applied before any other modules emit log messages.
from pharma_cache.logging_config import logger

from pharma_cache.routes.cache import router as cache_router
from pharma_cache.services.cache_service import AccountingCacheService

ServiceFactory = Callable[[], AccountingCacheService]


def create_app(service_factory: Optional[ServiceFactory] = None) -> FastAPI:
    factory = service_factory or AccountingCacheService.create

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # one store per process, rehydrated before the first request
        service = factory()
        service.warm_start()
        app.state.cache_service = service
        try:
            yield
        finally:
            await service.aclose()

    app = FastAPI(default_response_class=ORJSONResponse, lifespan=lifespan)
    app.include_router(cache_router)

    # -----------------------------------------------------------------
    # Request logging middleware
    # -----------------------------------------------------------------
    # Records path, method, status and processing time of every request
    # as a JSON log line.
    @app.middleware("http")  # type: ignore[misc]
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(json.dumps({
            "event": "http_request",
            "path": request.url.path,
            "method": request.method,
            "status": response.status_code,
            "duration_ms": round(duration_ms, 2),
        }))
        return response

    return app


app = create_app()
