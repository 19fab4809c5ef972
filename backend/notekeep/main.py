"""
NoteKeep Backend: FastAPI Application Factory
==============================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       the module-level `app` is what uvicorn serves
       (uvicorn notekeep.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                       FastAPI App                        │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌────────────┐ ┌──────────┐ ┌─────────┐ ┌───────────┐   │
    │  │ Rate Limit │→│ Req ID   │→│ Logging │→│ GZip/CORS │   │
    │  └────────────┘ └──────────┘ └─────────┘ └───────────┘   │
    │                                                          │
    │  Routes:                                                 │
    │  ┌──────────────┐ ┌────────────────────┐ ┌───────────┐   │
    │  │ /api/auth/*  │ │ /api/notes (gated) │ │ /health   │   │
    │  └──────────────┘ └────────────────────┘ └───────────┘   │
    │                                                          │
    │  Exception Handlers:                                     │
    │  ┌────────────────────────────────────────────────────┐  │
    │  │ Auth→4xx │ Validation→400 │ Delivery→503 │ DB→500  │  │
    │  └────────────────────────────────────────────────────┘  │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, validate configuration, log readiness
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from notekeep import __version__
from notekeep.config import settings
from notekeep.database import dispose_engine
from notekeep.exceptions import (
    AuthError,
    CircuitBreakerOpenError,
    DeliveryError,
    NoteKeepError,
    NotFoundError,
    RateLimitExceededError,
    StoreError,
    ValidationError,
)
from notekeep.middleware.logging import RequestLoggingMiddleware
from notekeep.middleware.rate_limit import RateLimitMiddleware
from notekeep.middleware.request_id import RequestIDMiddleware, request_id_var
from notekeep.routes import auth, health, notes

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once for the whole application.

    Format: 2024-01-15T12:00:00 [INFO] notekeep.services.otp_service: message

    Third-party loggers that log every statement or connection are capped at
    WARNING. One-time codes and tokens are never passed to a logger; emails
    are masked (notekeep.utils.mask_email).
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        1. Configure logging
        2. Validate the JWT secret and SMTP credentials (logged, not fatal,
           so /health still answers and shows what is wrong)
    Shutdown:
        1. Dispose the database engine (close pooled connections)
    """
    setup_logging()
    logger.info("=" * 60)
    logger.info("NoteKeep Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    logger.info(
        "Codes expire after %ds, tokens after %ds, %d attempts per code",
        settings.otp_ttl_seconds,
        settings.token_ttl_seconds,
        settings.otp_max_attempts,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("API docs: http://%s:%d/docs", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("NoteKeep Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_body(exc: NoteKeepError, rid: str, details=None, message=None) -> dict:
    body = {
        "error": exc.error_code,
        "message": message or exc.message,
        "request_id": rid,
    }
    if details:
        body["details"] = details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the NoteKeepError hierarchy to JSON error responses.

    Handler hierarchy:
        AuthError               → its own status (400/401/403/404/409)
        ValidationError         → 400
        RequestValidationError  → 422, field errors in "details"
        NotFoundError           → 404
        RateLimitExceededError  → 429 + Retry-After
        CircuitBreakerOpenError → 503 + Retry-After
        DeliveryError           → 503 (+ Retry-After when known)
        StoreError              → 500, generic message
        NoteKeepError (base)    → its own status
        Exception (fallback)    → 500, generic message

    Context dicts are logged, never returned, except for the retry hints
    copied into "details".
    """

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError):
        rid = request_id_var.get("")
        logger.warning("[%s] Auth rejected (%s): %s", rid, exc.error_code, exc.context)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc, rid),
            headers=headers,
        )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        rid = request_id_var.get("")
        logger.warning("[%s] Validation error: %s", rid, exc.message)
        return JSONResponse(
            status_code=400,
            content=_error_body(exc, rid, details=exc.context),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        rid = request_id_var.get("")
        errors = jsonable_encoder(exc.errors())
        logger.warning("[%s] Request body rejected: %d error(s)", rid, len(errors))
        return JSONResponse(
            status_code=422,
            content={
                "error": "request_validation_error",
                "message": "Request validation failed",
                "details": {"errors": errors},
                "request_id": rid,
            },
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        rid = request_id_var.get("")
        return JSONResponse(status_code=404, content=_error_body(exc, rid))

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        rid = request_id_var.get("")
        return JSONResponse(
            status_code=429,
            content=_error_body(exc, rid, details={"retry_after": exc.retry_after}),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        rid = request_id_var.get("")
        logger.warning("[%s] Mail circuit open: %s", rid, exc.message)
        return JSONResponse(
            status_code=503,
            content=_error_body(exc, rid, details={"recovery_time": exc.recovery_time}),
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(DeliveryError)
    async def handle_delivery_error(request: Request, exc: DeliveryError):
        rid = request_id_var.get("")
        logger.error("[%s] Code delivery failed: %s", rid, exc.context)
        headers = {}
        details = None
        if exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
            details = {"retry_after": exc.retry_after}
        return JSONResponse(
            status_code=503,
            content=_error_body(exc, rid, details=details),
            headers=headers,
        )

    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError):
        rid = request_id_var.get("")
        logger.error("[%s] Store error: %s | Context: %s", rid, exc.message, exc.context)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                exc, rid, message="An internal error occurred. Please try again later."
            ),
        )

    @app.exception_handler(NoteKeepError)
    async def handle_notekeep_error(request: Request, exc: NoteKeepError):
        rid = request_id_var.get("")
        logger.error("[%s] %s: %s | Context: %s", rid, type(exc).__name__, exc.message, exc.context)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc, rid))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all: stack trace to the log, generic message to the client."""
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred. Please try again or contact support.",
                "request_id": rid,
            },
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests call this for a fresh app (and fresh rate-limit state) per test
    module or per test.
    """
    app = FastAPI(
        title="NoteKeep API",
        description=(
            "Personal notes with passwordless sign-in: sign up or sign in with a "
            "one-time code sent to your email, then use the returned bearer token."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware executes in reverse order of addition:
    # RateLimit → RequestID → Logging → GZip → CORS → route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Total-Count",
            "Retry-After",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(notes.router)
    app.include_router(health.router)

    return app


app = create_app()
