"""
api/main.py -- FastAPI application entry point for credgate.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost; Starlette wraps in reverse
registration order, so CORS is added last):
  1. CORSMiddleware     -- credentialed CORS for CLIENT_ORIGINS; answers
                           preflights and decorates 429s too
  2. log_requests       -- one access-log line per request
  3. SlowAPIMiddleware  -- DEFAULT_RATE_LIMIT everywhere, LOGIN_RATE_LIMIT on
                           login and resend-otp (api.limiter)

Lifespan wires the credential components into app.state and owns the two
background tasks:
  - the ConnectionSupervisor loop (connect with exponential backoff, then
    periodic health pings)
  - the OTP sweep loop (evicts expired passcodes every OTP_SWEEP_INTERVAL)
Both are cancelled and awaited on shutdown, before the store is closed.

Importing this module reads Settings; a missing SECRET_KEY fails here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.service import CredentialService
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from cache.otp import OTPCache
from core.config import Settings, get_settings
from core.errors import CredentialError, ValidationFailed
from core.supervisor import ConnectionSupervisor
from notify.mailer import Notifier, build_notifier

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("credgate.api")

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: float) -> None:
    """Evict expired OTP entries every `interval` seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval)
        removed = app.state.otp_cache.sweep()
        if removed:
            logger.info("Swept %d expired OTP entries", removed)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def wire_components(app: FastAPI, settings: Settings, notifier: Notifier | None = None) -> None:
    """Build the credential components from settings and attach them to app.state.

    The OTP cache is owned here and injected into the service -- there is no
    module-level cache. Tests call this with their own notifier.
    """
    store = AccountStore(db_url=settings.database_url)
    supervisor = ConnectionSupervisor(
        store.connect,
        connect_timeout=settings.db_connect_timeout,
        base_delay=settings.db_retry_base_delay,
        max_delay=settings.db_retry_max_delay,
        health_interval=settings.db_health_interval,
    )
    otp_cache = OTPCache(length=settings.otp_length, expire_seconds=settings.otp_expire_seconds)
    tokens = TokenIssuer(settings.secret_key, expire_seconds=settings.token_expire_seconds)
    app.state.store = store
    app.state.supervisor = supervisor
    app.state.otp_cache = otp_cache
    app.state.service = CredentialService(
        store,
        otp_cache,
        tokens,
        notifier or build_notifier(settings),
        supervisor=supervisor,
        bcrypt_rounds=settings.bcrypt_rounds,
        store_timeout=settings.store_timeout,
        notify_timeout=settings.notify_timeout,
    )


async def shutdown_components(app: FastAPI) -> None:
    """Stop background work, flush pending emails, and release the store."""
    app.state.sweep_task.cancel()
    try:
        await app.state.sweep_task
    except asyncio.CancelledError:
        pass
    await app.state.supervisor.stop()
    await app.state.service.drain()
    app.state.store.close()


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup never blocks on the database: the supervisor connects in the
    background, and requests that arrive first get a fast 503.
    """
    settings = get_settings()
    logger.info("credgate API starting up")
    wire_components(app, settings)
    app.state.supervisor.start()
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.otp_sweep_interval))
    logger.info("Credential service initialized (store=%s)", app.state.store.engine.url.render_as_string())

    yield

    await shutdown_components(app)
    logger.info("credgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="credgate API",
    description="Email/password registration gated by one-time passcodes, with signed session tokens.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
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


# Registered last so it is the outermost layer.
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().client_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(CredentialError)
async def credential_error_handler(request: Request, exc: CredentialError) -> JSONResponse:
    """Render a classified credential failure with its own status and kind."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.kind, message=exc.message)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests, please try again later.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when the request body fails validation."""
    failure = ValidationFailed()
    return JSONResponse(
        status_code=failure.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=failure.kind,
                message=failure.message,
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
@limiter.exempt
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and credential store connectivity."""
    connected = request.app.state.supervisor.connected
    return HealthResponse(
        status="healthy" if connected else "degraded",
        version=__version__,
        components={"app": "ok", "database": "ok" if connected else "unavailable"},
    )
