"""
api/main.py -- FastAPI application entry point for the identity service.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- one access-log line per request
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  3. CORSMiddleware        -- adds CORS headers for allowed browser origins
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan handles startup (stores, verification cache, identity service, purge
task) and shutdown (cancel purge task, close DB connections) symmetrically.

Status mapping for core errors (see core/errors.py):
  InvalidTokenError / BadCredentialsError -> 401
  UnauthorizedError                       -> Settings.unauthorized_status (403 or 401)
  ObjectNotFoundError                     -> 404
  ConflictError                           -> 409
  PersistenceError                        -> 503
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.sessions import router as sessions_router
from api.routes.v1.users import router as users_router
from auth.service import IdentityService
from auth.store import SessionStore, UserStore, make_engine
from cache.store import SessionCache
from core.config import get_settings
from core.errors import IdentityError, PersistenceError, UnauthorizedError

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("identity.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Trim expired cache entries and expired sessions every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly. Store failures are logged
    and retried on the next tick rather than killing the loop.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.cache.purge_expired()
        if removed:
            logger.debug("Purged %d expired cache entries", removed)
        try:
            await asyncio.to_thread(app.state.identity.purge_expired_sessions)
        except PersistenceError:
            logger.exception("Expired session purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine and stores first -- everything else reads from them.
      2. Cache second -- the identity service and purge task reference it.
      3. Identity service wires stores + cache together.
      4. Purge task last -- references both app.state.cache and app.state.identity.
    """
    settings = get_settings()
    logger.info("Identity API starting up")
    engine = make_engine(settings.database_url)
    app.state.user_store = UserStore(engine=engine)
    app.state.session_store = SessionStore(engine=engine)
    app.state.cache = SessionCache(ttl=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries)
    app.state.identity = IdentityService.from_settings(
        settings, app.state.user_store, app.state.session_store, app.state.cache
    )
    logger.info("Identity service initialized (has_users=%s)", app.state.user_store.has_users())
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.cache_purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    app.state.cache.close()
    engine.dispose()
    logger.info("Identity API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Identity API",
    description="Session token issuance, verification, revocation and authorization.",
    version=_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each new middleware around the previous ones, so the last
# one added sees the request first: log_requests -> SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=get_settings().allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One access-log line per request. Tokens travel in headers or query strings and are never logged."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    client = request.client.host if request.client else "-"
    logger.info(
        "%s %s -> %d (%.1f ms) from %s", request.method, request.url.path, response.status_code, elapsed_ms, client
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(sessions_router, prefix="/api/v1", tags=["Sessions"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves the API in the ErrorResponse envelope, so a client reads
# error.code instead of switching schema on the status code.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Render core errors with their own status and stable error code.

    PersistenceError detail (driver messages) is logged, never returned.
    """
    status_code = exc.status_code
    if isinstance(exc, UnauthorizedError):
        status_code = get_settings().unauthorized_status
    detail = exc.detail
    if isinstance(exc, PersistenceError):
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc.detail)
        detail = None
    response = _error_response(status_code, exc.error_code, exc.message, detail)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After when the login limit is hit."""
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 on unknown routes, 405, ...) in the envelope."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort. The exception goes to the log, the client gets a generic 500."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered on the app itself so it stays up even if a router fails to load.
# Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Liveness probe. No token required."""
    return HealthResponse(version=_VERSION)
