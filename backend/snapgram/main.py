"""
Snapgram Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers; the
       lifespan configures logging, validates settings and the
       invalidation table, and creates the collection tables.
Who:   uvicorn (`uvicorn snapgram.main:app`) and the test suite.

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │  Middleware:  RateLimit → RequestID → Logging → GZip     │
    │  Routes:      auth │ posts │ feed │ users │ files │ health│
    │  Handlers:    SnapgramError family → JSON error envelope │
    └──────────────────────────────────────────────────────────┘
                               │
                    SnapgramQueries (cache)
                               │
        Account / Post / Social services, FeedResolver
                               │
                 BackendGateway → document + file store

Error envelope (every failure):
    {"error": "<code>", "message": "<shown to user>", "details": {...}, "request_id": "..."}
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from snapgram import __version__
from snapgram.config import settings
from snapgram.database import dispose_engine, init_models
from snapgram.exceptions import (
    AuthenticationError,
    CircuitBreakerOpenError,
    NotFoundError,
    PartialWriteError,
    PermissionDeniedError,
    RateLimitExceededError,
    SnapgramError,
    TransportError,
    ValidationError,
)
from snapgram.middleware.logging import RequestLoggingMiddleware
from snapgram.middleware.rate_limit import RateLimitMiddleware
from snapgram.middleware.request_id import RequestIDMiddleware, request_id_var
from snapgram.query.keys import validate_invalidation_table
from snapgram.routes import auth, feed, files, health, posts, users

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """Configure the root logger once, before anything else logs."""
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
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        1. Logging
        2. Settings check (logged, not fatal)
        3. Invalidation table check (fatal: a gap means silently stale data)
        4. Create missing collection tables
    Shutdown:
        Dispose the engine's connections.
    """
    setup_logging()
    logger.info("=" * 60)
    logger.info("Snapgram Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    validate_invalidation_table()
    logger.info("Invalidation table validated")

    await init_models()
    logger.info("Document store ready")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Snapgram Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details,
            "request_id": request_id_var.get("") or None,
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the exception hierarchy onto status codes and error envelopes.

        ValidationError / RequestValidationError → 400
        AuthenticationError                      → 401
        PermissionDeniedError                    → 403
        NotFoundError                            → 404
        RateLimitExceededError                   → 429
        PartialWriteError                        → 500
        CircuitBreakerOpenError                  → 503 + Retry-After
        TransportError (and FileStorageError)    → 503
        SnapgramError / Exception                → 500

    Context dicts are only returned where they help the caller fix the
    request; everything else stays in the server log.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        message = errors[0]["message"] if errors else "Invalid request"
        return _error_response(400, "validation_error", message, {"errors": errors})

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return _error_response(
            401, "authentication_error", exc.message, headers={"WWW-Authenticate": "Bearer"}
        )

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        return _error_response(403, "permission_denied", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(
            404, "not_found", exc.message, {"resource": exc.resource, "resource_id": exc.resource_id}
        )

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            {"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(PartialWriteError)
    async def handle_partial_write(request: Request, exc: PartialWriteError):
        logger.error(
            "[%s] Partial write: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        return _error_response(500, "partial_write", exc.message, {"cleaned_up": exc.cleaned_up})

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503,
            "service_unavailable",
            exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(TransportError)
    async def handle_transport_error(request: Request, exc: TransportError):
        logger.error(
            "[%s] Transport error: %s | Context: %s", request_id_var.get(""), exc.message, exc.context
        )
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _error_response(503, "service_unavailable", exc.message, headers=headers)

    @app.exception_handler(SnapgramError)
    async def handle_snapgram_error(request: Request, exc: SnapgramError):
        logger.error("[%s] Unhandled application error: %s", request_id_var.get(""), exc.message)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error("[%s] Unexpected error: %s", request_id_var.get(""), str(exc), exc_info=True)
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app() -> FastAPI:
    app = FastAPI(
        title="Snapgram API",
        description=(
            "Social feed backend: accounts, posts with images, likes, saves, "
            "follows and a distance-filtered discovery feed."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware runs in reverse order of addition: RateLimit runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(auth.router)
    app.include_router(posts.router)
    app.include_router(feed.router)
    app.include_router(users.router)
    app.include_router(files.router)
    app.include_router(health.router)

    return app


app = create_app()
