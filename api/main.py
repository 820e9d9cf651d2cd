"""
api/main.py -- FastAPI application entry point for TeleGuard.

Exposes the telemetry aggregation engine over HTTP so a dashboard front end
can read published snapshots and derived views without talking to the
upstream data source itself.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (client, snapshot store, scheduler timers) and
shutdown (cancel timers, let in-flight cycles drain) symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.contexts import router as contexts_router
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.logs import router as logs_router
from cache.store import SnapshotStore
from core.config import get_settings
from core.fetcher import SourceClient
from core.scheduler import build_scheduler

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("teleguard.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- validation errors abort startup before any timer runs.
      2. Store second -- contexts publish into it from their first cycle.
      3. Scheduler last -- start() fires each context's first cycle immediately.
    """
    settings = get_settings()
    if settings.debug:
        logging.getLogger("teleguard").setLevel(logging.DEBUG)
    logger.info("TeleGuard API starting up (source=%s)", settings.source_base_url)

    client = SourceClient(
        settings.source_base_url,
        api_key=settings.source_api_key,
        timeout=settings.http_timeout_seconds,
    )
    app.state.store = SnapshotStore()
    app.state.scheduler = build_scheduler(settings, client, app.state.store)
    app.state.scheduler.start()
    logger.info("Scheduler started (contexts=%s)", ", ".join(app.state.scheduler.names()))

    yield

    # Shutdown
    app.state.scheduler.stop()
    for context in app.state.scheduler:
        await context.wait_idle()
    app.state.scheduler.close()
    logger.info("TeleGuard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="TeleGuard API",
    description="Near-real-time security telemetry: metrics, network, alerts and logs from upstream sources.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPIMiddleware finds the limiter on app.state.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(dashboard_router, prefix="/api/v1", tags=["Dashboard"])
app.include_router(logs_router, prefix="/api/v1", tags=["Logs"])
app.include_router(contexts_router, prefix="/api/v1", tags=["Contexts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves as {"error": {code, message, detail}} whatever raised it,
# so a dashboard only has one error shape to render.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 for on-demand refreshes past the configured limit."""
    response = _error(429, "rate_limited", "Too many refresh requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 for unknown enum values (severity, sort, range) and out-of-bounds query params."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Pass structured ErrorDetail dicts through; wrap plain-string details."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # The exception text goes to the log only.
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Not rate limited. Context states come straight from the scheduler, so a
# stopped or stuck context shows up here before its data goes stale.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and the state of each view context."""
    components = {"app": "ok"}
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is not None:
        for context in scheduler:
            components[context.name] = context.state.value
    return HealthResponse(version=VERSION, components=components)
