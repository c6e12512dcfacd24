"""
api/main.py -- HTTP front door of the member portal.

Routes stay thin. Identity, tenancy and state transitions are decided in
auth/ and membership/; this module only wires those services to FastAPI and
turns PortalError into the JSON error envelope.

Serve with:    uvicorn asgi:app --reload

Request path through the middleware (first to last):
  TrustedHostMiddleware  Host header must match ALLOWED_HOSTS
  CORSMiddleware         browser origins from CORS_ORIGINS
  SlowAPIMiddleware      per-route limits declared with api.limiter
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.associations import router as associations_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.members import router as members_router
from core.config import get_settings
from core.errors import AuthFailure, AuthorizationDenied, PortalError, ResourceExhausted, Unexpected
from membership.associations import AssociationService
from membership.gateway import DataGateway
from membership.lifecycle import AccountLifecycle
from membership.notifier import NotificationDispatcher, build_notifier
from membership.store import MembershipStore

API_VERSION = "1.0.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("memberportal.api")

_settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the portal services on startup and release them on shutdown.

    The gateway owns the pool and the store creates its tables through it,
    so both come before anything that touches the database. The dispatcher's
    worker threads are started before the first request can register a
    member. Teardown drains pending notifications, then disposes the pool.
    """
    logger.info("Member portal API starting up")
    gateway = DataGateway(
        _settings.database_url,
        pool_size=_settings.db_pool_size,
        pool_timeout=_settings.db_pool_timeout,
    )
    store = MembershipStore(gateway)
    logger.info("Database ready (%s)", gateway.engine.dialect.name)
    dispatcher = NotificationDispatcher.threaded(
        build_notifier(_settings.resend_api_key, _settings.from_email),
        workers=_settings.notify_workers,
    )

    app.state.gateway = gateway
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.lifecycle = AccountLifecycle(store, dispatcher, _settings)
    app.state.associations = AssociationService(store)

    yield

    dispatcher.close()
    store.close()
    logger.info("Member portal API stopped")


app = FastAPI(
    title="Member Portal API",
    description="Multi-tenant membership management: registration, approval, and member administration.",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# --- middleware (added in the order requests meet them) ---------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)
app.add_middleware(SlowAPIMiddleware)
app.state.limiter = limiter  # slowapi reads it from here


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else "unknown",
    )
    return response


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(members_router, prefix="/api/v1", tags=["Members"])
app.include_router(associations_router, prefix="/api/v1", tags=["Associations"])


# --- error envelope ----------------------------------------------------------
# Every failure leaves as {"error": {"code", "message", "detail"}}.


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    envelope = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    """Render a PortalError with the status its class declares.

    Unexpected keeps its cause out of the body. Auth failures and denials
    were logged with their specifics at the raise site.
    """
    if isinstance(exc, Unexpected):
        logger.error("Unexpected error on %s %s: %s", request.method, request.url.path, exc)
        return _error_response(exc.status_code, Unexpected.code, Unexpected.message)
    if isinstance(exc, ResourceExhausted):
        logger.warning("Resource exhausted on %s %s", request.method, request.url.path)
    elif not isinstance(exc, (AuthFailure, AuthorizationDenied)):
        logger.info("%s %s -> %s", request.method, request.url.path, exc.code)
    response = _error_response(exc.status_code, exc.code, exc.message, exc.detail)
    if isinstance(exc, AuthFailure):
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "unknown")
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema failures (missing fields, wrong types) are 422; business-rule failures are 400."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # Starlette raises these for 404 on unknown paths and 405 on wrong methods.
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback, answer with the opaque 'unexpected' error."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, Unexpected.code, Unexpected.message)


# --- health ------------------------------------------------------------------
# Not rate limited and not behind auth; load balancers poll it.


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> JSONResponse:
    """Report liveness, API version, and whether the database answers."""
    db_ok = request.app.state.gateway.ping()
    body = HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
    return JSONResponse(status_code=200 if db_ok else 503, content=body.model_dump())
