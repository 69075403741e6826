"""
api/main.py -- FastAPI application entry point for AuthKit.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins,
                              including on gate rejections
  3. log_requests          -- method, path, status, latency, client
  4. request_gate          -- bearer token -> Principal, then the route policy
  5. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Every error leaves the app in one envelope:
  {timestamp, status, error, message, path, [fieldErrors], [details]}

Lifespan handles startup (store, mail sender, dispatcher, session manager,
purge task) and shutdown (cancel purge task, drain dispatcher, close DB)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, FieldError, HealthResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.user import router as user_router
from auth.dependencies import AUTHENTICATION_REQUIRED_MESSAGE, policy_for
from auth.gate import authenticate_bearer
from auth.sessions import SessionManager
from auth.store import AccountStore
from core.config import get_settings
from core.errors import AppError, InsufficientPermissionsError
from notify.dispatcher import NotificationDispatcher
from notify.email import build_sender

API_VERSION = "1.0.0"
PURGE_INTERVAL_SECONDS = 6 * 60 * 60

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authkit.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_expired_tokens(app: FastAPI) -> None:
    """Run one purge. A failure is logged and the next run tries again."""
    try:
        removed = await run_in_threadpool(app.state.account_store.purge_expired_refresh_tokens)
    except Exception:
        logger.exception("Refresh token purge failed")
        return
    logger.info("Purged %d expired refresh token(s)", removed)


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh tokens every 6 hours.

    Runs as a background asyncio task started in lifespan startup. The purge
    itself is a blocking DB call, so it goes through the threadpool.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        await _purge_expired_tokens(app)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the long-lived collaborators onto app.state.

    Startup order matters:
      1. Store first -- everything else reads or writes accounts.
      2. Sender and dispatcher -- SessionManager hands reset emails to it.
      3. SessionManager -- wires store + dispatcher + settings.
      4. Purge task last -- references app.state.account_store.
    """
    logger.info("AuthKit API starting up")
    app.state.account_store = AccountStore(settings.database_url)
    app.state.dispatcher = NotificationDispatcher(
        build_sender(settings),
        workers=settings.notification_workers,
        max_attempts=settings.notification_max_attempts,
        retry_delay=settings.notification_retry_delay_seconds,
    )
    app.state.sessions = SessionManager(app.state.account_store, app.state.dispatcher, settings)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))
    logger.info("AuthKit API ready")

    yield

    # Shutdown
    app.state.purge_task.cancel()
    app.state.dispatcher.shutdown(wait=True)
    app.state.account_store.close()
    logger.info("AuthKit API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthKit API",
    description="JWT authentication, refresh token rotation, password reset and role hierarchy.",
    version=API_VERSION,
    lifespan=lifespan,
)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    *,
    field_errors: list[FieldError] | None = None,
    details: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        timestamp=datetime.now(timezone.utc).isoformat(),
        status=status_code,
        error=HTTPStatus(status_code).phrase,
        message=message,
        path=request.url.path,
        field_errors=field_errors,
        details=details,
    ).model_dump(by_alias=True)
    # Optional members are omitted rather than sent as null.
    for key in ("fieldErrors", "details"):
        if body[key] is None:
            del body[key]
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware("http") both insert at the front of the
# stack, so the LAST registration is the OUTERMOST layer. Registration below
# is therefore innermost first: SlowAPI, gate, logging, CORS, TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def request_gate(request: Request, call_next):
    """Authenticate the bearer token, then apply the path policy.

    Runs for every path, public ones included: a presented token that is
    invalid is rejected even where no token is required. Errors raised here
    would bypass the exception handlers, so rejections are rendered directly.
    """
    result = await run_in_threadpool(
        authenticate_bearer,
        request.headers.get("Authorization"),
        request.app.state.account_store,
    )
    if result.rejected:
        return _error_response(request, result.status_code, result.message)

    denied = policy_for(request.url.path).allows(result.principal)
    if denied == 401:
        logger.warning("Anonymous request to protected path %s", request.url.path)
        return _error_response(request, 401, AUTHENTICATION_REQUIRED_MESSAGE)
    if denied == 403:
        logger.warning(
            "Account %d (%s) denied %s",
            result.principal.account_id,
            result.principal.role.value,
            request.url.path,
        )
        return _error_response(request, 403, InsufficientPermissionsError.default_message)

    request.state.principal = result.principal
    return await call_next(request)


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


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_host_list)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(user_router, tags=["User"])
app.include_router(admin_router, tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_INVALID_BODY_MESSAGE = "Invalid request body format or missing required request body"
_SENSITIVE_FIELD_MARKERS = ("password", "token")


def _field_errors(errors: list[dict]) -> list[FieldError]:
    """Map pydantic error dicts to FieldError, never echoing secrets.

    "missing" errors carry the whole parent object as input, so they never
    echo a rejected value either.
    """
    result: list[FieldError] = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        rejected = err.get("input")
        if err.get("type") == "missing" or any(m in field.lower() for m in _SENSITIVE_FIELD_MARKERS):
            rejected = None
        result.append(FieldError(field=field, rejected_value=jsonable_encoder(rejected), message=err.get("msg", "")))
    return result


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code in (401, 403):
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    else:
        logger.debug("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return _error_response(request, exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field errors when the body or params fail validation."""
    errors = exc.errors()
    logger.debug("Validation failed on %s: %d error(s)", request.url.path, len(errors))
    unreadable = any(e.get("type") == "json_invalid" for e in errors) or any(
        e.get("type") == "missing" and tuple(e.get("loc", ())) == ("body",) for e in errors
    )
    if unreadable:
        return _error_response(request, 400, _INVALID_BODY_MESSAGE)
    return _error_response(
        request,
        400,
        "Validation failed for one or more fields",
        field_errors=_field_errors(errors),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (404, 405) and any HTTPException raised by a dependency."""
    if exc.status_code == 404:
        message = "The endpoint you're trying to access does not exist"
    else:
        message = str(exc.detail)
    return _error_response(request, exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit exceeded on %s: %s", request.url.path, exc.detail)
    return _error_response(
        request,
        429,
        "Too many requests. Please try again later.",
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. The exception text reaches the client
    only when DEBUG is on.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    details = f"{type(exc).__name__}: {exc}" if settings.debug else None
    return _error_response(request, 500, "An unexpected error occurred.", details=details)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return API liveness and current version."""
    healthy = request.app.state.account_store.ping()
    return HealthResponse(status="ok" if healthy else "degraded", version=API_VERSION)
