"""
api/main.py -- FastAPI application entry point for the storage server.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost; the last one added wraps the rest):
  1. log_requests      -- one line per request when VERBOSE_LOGS is on
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter
  3. CORSMiddleware    -- adds CORS headers for allowed browser origins

Routers are registered from the explicit _ROUTERS table below; order in the
table is registration order.

Lifespan builds the user store, AuthService and StorageService from settings
on startup and closes the store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.auth import public_router as auth_public_router
from api.routes.auth import router as auth_router
from api.routes.storage import router as storage_router
from auth.dependencies import authenticate
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings
from core.errors import ServerError
from storage.service import StorageService

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pss.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build shared services before the first request and release them on shutdown."""
    logger.info("Storage server starting up")
    app.state.settings = _settings
    app.state.user_store = UserStore(_settings.database_url)
    app.state.auth_service = AuthService(
        app.state.user_store,
        access_code_expiration_ms=_settings.access_code_expiration_ms,
        token_expire_seconds=_settings.token_expire_seconds,
    )
    app.state.storage = StorageService(_settings.storage_root, _settings.upload_limit_bytes)
    if not app.state.user_store.has_users():
        logger.warning("No users exist yet. Create one with: python main.py add-admin <username>:<password>")

    yield

    app.state.user_store.close()
    logger.info("Storage server shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Personal Storage Server",
    description="Authenticated personal file storage with quota checks.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Content-Length", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    if not request.app.state.settings.verbose_logs:
        return await call_next(request)
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

_ROUTERS: tuple[tuple[APIRouter, str], ...] = (
    (auth_public_router, "Auth"),
    (auth_router, "Auth"),
    (storage_router, "Storage"),
)

for _router, _tag in _ROUTERS:
    app.include_router(_router, tags=[_tag])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler returns the same {error, code, message} envelope so clients
# can parse failures without inspecting the status code first.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(code=code, message=message).model_dump(),
    )


@app.exception_handler(ServerError)
async def server_error_handler(request: Request, exc: ServerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming the first offending field, e.g. "Invalid property 'body.username'"."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"Invalid property '{location}': {first.get('msg', 'invalid value')}"
    else:
        message = "Invalid request!"
    return _error(400, "VALIDATION_FAILED", message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = _error(429, "RATE_LIMITED", "Too many requests.")
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Shape framework-raised HTTP errors, unknown routes included.

    Unknown routes: unless PREDICTIVE_404 is on, the session gate runs first,
    so an unauthenticated probe learns nothing about which routes exist.
    """
    if exc.status_code == 404:
        if not request.app.state.settings.predictive_404:
            try:
                await run_in_threadpool(authenticate, request)
            except ServerError as err:
                return _error(err.status_code, err.code, err.message)
        return _error(404, "ROUTE_NOT_FOUND", f"Route {request.url.path} not found!")
    return _error(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected failures. The traceback goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "INTERNAL_ERROR", "An internal error has occurred!")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined here rather than in a router so it stays reachable without a
# session and is never rate limited.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse()
