"""OrbitKeys - FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.auth import to_http_exception
from .api.ratelimit import RateLimitConfig, RateLimiter, RateLimitMiddleware
from .api.routes import AUTH_RATE_LIMITER, router
from .api.schemas import HealthResponse
from .audit.logger import AuditEventType, AuditLogConfig, AuditLogger
from .auth.errors import OrbitKeysError
from .auth.gate import AuthenticationGate
from .auth.service import CredentialService
from .auth.store import SQLiteCredentialStore
from .auth.throttle import FailedAttemptTracker
from .config.settings import Settings, ensure_root_api_key, get_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("orbitkeys")

# Stricter limit for the root-key lookup/validate endpoints
AUTH_RATE_LIMIT = RateLimitConfig(max_requests=30, window_seconds=300.0, exempt_paths=[])


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the OrbitKeys application and its components.

    Args:
        settings: Settings to use (defaults to get_settings()).

    Returns:
        The configured FastAPI app. Components are on ``app.state``.
    """
    settings = settings or get_settings()

    store = SQLiteCredentialStore(settings.db_path)
    audit_logger = AuditLogger(
        AuditLogConfig(enabled=settings.audit_log_enabled, log_path=settings.audit_log_path)
    )
    tracker = FailedAttemptTracker(
        max_failures=settings.max_failed_attempts,
        window_seconds=settings.failed_attempt_window,
    )
    gate = AuthenticationGate(
        store,
        timeout=settings.auth_timeout,
        tracker=tracker,
        audit_logger=audit_logger,
    )
    service = CredentialService(store, audit_logger)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info(f"Starting OrbitKeys v{__version__}")

        store.initialize()
        service.ensure_default_admin_role()
        if not settings.root_api_key:
            logger.warning("No root API key configured; lookup and validate endpoints will reject all requests")

        audit_logger.log_system_event(AuditEventType.SYSTEM_START, version=__version__)

        yield

        logger.info("Shutting down OrbitKeys")
        await gate.drain()
        audit_logger.log_system_event(AuditEventType.SYSTEM_SHUTDOWN)
        audit_logger.close()
        store.close()

    app = FastAPI(
        title="OrbitKeys",
        description="API key authentication and role-based authorization service",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.service = service
    app.state.gate = gate
    app.state.tracker = tracker
    app.state.audit_logger = audit_logger
    setattr(app.state, AUTH_RATE_LIMITER, RateLimiter(AUTH_RATE_LIMIT))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        rate_limiter=RateLimiter(RateLimitConfig(max_requests=settings.rate_limit_rpm, window_seconds=60.0)),
    )

    @app.exception_handler(OrbitKeysError)
    async def orbitkeys_error_handler(_request: Request, exc: OrbitKeysError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.code}: {exc.message}")
        http_exc = to_http_exception(exc)
        return JSONResponse(
            status_code=http_exc.status_code,
            content={"detail": http_exc.detail},
            headers=http_exc.headers,
        )

    app.include_router(router, prefix=settings.base_url)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Simple health check endpoint."""
        return HealthResponse(status="ok", version=__version__)

    return app


def run():
    """Run the application (entry point for CLI)."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    ensure_root_api_key(settings)

    logger.info(f"Starting server on {settings.api_host}:{settings.api_port}")

    uvicorn.run(
        "orbitkeys.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
