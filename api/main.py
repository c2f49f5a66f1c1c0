"""
api/main.py -- FastAPI application entry point for tokenguard.

Exposes the token handler to HTTP consumers and owns process wiring: the
TokenStore and TokenHandler are constructed exactly once in lifespan from
Settings and published on app.state. Nothing in the auth package holds a
module-level handler.

Run with:  uvicorn asgi:app --reload

Lifespan handles startup (settings, store, handler, cleanup task) and
shutdown (cancel cleanup task, dispose the engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.sessions import router as sessions_router
from auth.blacklist import InvalidBlacklistReason
from auth.handler import TokenHandler, build_token_handler
from auth.store import TokenStorageError, TokenStore
from core.config import get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("tokenguard.api")

# ---------------------------------------------------------------------------
# Background cleanup task
# ---------------------------------------------------------------------------


async def _cleanup_loop(handler: TokenHandler, interval_seconds: int) -> None:
    """Remove expired blacklist entries and revocations every interval_seconds.

    The store is synchronous, so each run goes to a worker thread and never
    blocks request handling. A failed run is logged and retried on the next
    tick; CancelledError from shutdown unwinds the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            removed = await asyncio.to_thread(handler.cleanup_expired_entries)
            logger.info("Scheduled cleanup removed %d record(s)", removed)
        except TokenStorageError as e:
            logger.warning("Scheduled cleanup failed: %s", e)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the store and handler, start cleanup, and tear down on exit.

    Startup order matters: the store must exist before the handler, and the
    handler before the cleanup task that calls it.
    """
    settings = get_settings()
    logger.info("tokenguard API starting up")
    app.state.token_store = TokenStore(settings.blacklist_db_url, settings.blacklist_table)
    app.state.token_handler = build_token_handler(settings, app.state.token_store)
    app.state.cleanup_task = asyncio.create_task(
        _cleanup_loop(app.state.token_handler, settings.cleanup_interval_seconds)
    )

    yield

    app.state.cleanup_task.cancel()
    app.state.token_store.close()
    logger.info("tokenguard API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="tokenguard API",
    description="Bearer token verification, blacklisting and global revocation.",
    version=API_VERSION,
    lifespan=lifespan,
)


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


app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly.
# ---------------------------------------------------------------------------


@app.exception_handler(InvalidBlacklistReason)
async def invalid_reason_handler(request: Request, exc: InvalidBlacklistReason) -> JSONResponse:
    """422 for a reason outside the configured vocabulary. Nothing was written."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(code="invalid_reason", message="Blacklist reason is not allowed.", detail=str(exc))
        ).model_dump(),
    )


@app.exception_handler(TokenStorageError)
async def storage_error_handler(request: Request, exc: TokenStorageError) -> JSONResponse:
    """503 when a revocation write could not be persisted. The client should retry."""
    logger.warning("Token storage unavailable on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(code="storage_unavailable", message="Revocation storage is unavailable.")
        ).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured error for HTTPException; dict details are used as the error field directly."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected errors. The exception is logged, never returned."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness plus token storage reachability."""
    store: TokenStore = request.app.state.token_store
    database = "ok" if store.health_check() else "error"
    return HealthResponse(version=API_VERSION, components={"app": "ok", "database": database})
