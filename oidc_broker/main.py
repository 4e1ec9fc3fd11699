"""
FastAPI Application Factory
===========================

Entry point of the OIDC broker service.

Routers:
    - /api/login-options, /api/oidc/* : poll-based OIDC login
    - /health                         : health check

Environment Variables (see config.py):
    - OAUTH2_CONFIG_FILE: provider configuration file (default: oauth2.toml)
    - PUBLIC_BASE_URL: external base URL for the OAuth callback
    - OIDC_SESSION_TTL_SECONDS / OIDC_REAPER_INTERVAL_SECONDS
    - OIDC_EXCHANGE_TIMEOUT_SECONDS
    - ADMIN_USERS, ALLOWED_ORIGINS, LOG_LEVEL

Running the Service:
    Development:
        uvicorn oidc_broker.main:app --reload --port 21114

    Production:
        uvicorn oidc_broker.main:app --host 0.0.0.0 --port 21114
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth.broker import AuthBroker
from .auth.routes import auth_router
from .auth.session_store import SessionStore
from .auth.users import UserDirectory
from .config import Settings, get_settings
from .models import ErrorResponse, HealthResponse
from .oauth2.registry import ProviderRegistry

logger = logging.getLogger("oidc_broker.main")


SERVICE_NAME = "oidc-broker"
SERVICE_VERSION = "1.0.0"


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def build_broker(settings: Settings) -> AuthBroker:
    """Load the provider configuration once and wire the broker."""
    registry = ProviderRegistry.from_file(settings.OAUTH2_CONFIG_FILE)
    return AuthBroker(
        registry=registry,
        store=SessionStore(ttl_seconds=settings.OIDC_SESSION_TTL_SECONDS),
        users=UserDirectory(settings.admin_users_list),
        exchange_timeout=settings.OIDC_EXCHANGE_TIMEOUT_SECONDS,
    )


async def reap_sessions_periodically(store: SessionStore, interval: float) -> None:
    """Background task removing expired OIDC sessions."""
    while True:
        await asyncio.sleep(interval)
        try:
            await store.reap_expired()
        except Exception as e:
            logger.error(f"Session reaper failed: {e}", exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Configure logging
        - Build the broker unless one was injected
        - Start the session reaper

    Shutdown:
        - Cancel the session reaper
    """
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    if getattr(app.state, "broker", None) is None:
        app.state.broker = build_broker(settings)
    broker: AuthBroker = app.state.broker

    reaper = asyncio.create_task(
        reap_sessions_periodically(broker.store, settings.OIDC_REAPER_INTERVAL_SECONDS)
    )
    logger.info(
        "OIDC broker started",
        extra={
            "providers": len(broker.registry),
            "session_ttl": broker.store.ttl_seconds,
            "version": SERVICE_VERSION,
        },
    )

    yield

    reaper.cancel()
    with suppress(asyncio.CancelledError):
        await reaper
    logger.info("OIDC broker shutdown complete")


def create_application(broker: Optional[AuthBroker] = None) -> FastAPI:
    """
    Application factory function.

    Args:
        broker: Pre-built broker (tests); built from settings at startup otherwise

    Returns:
        FastAPI: Configured application instance
    """
    settings = get_settings()

    app = FastAPI(
        title="OIDC Broker",
        description="Poll-based OAuth2 / OpenID Connect login for desktop clients",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.broker = broker

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        current: Optional[AuthBroker] = request.app.state.broker
        if current is None:
            return HealthResponse(status="starting", service=SERVICE_NAME, providers=0)
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            providers=len(current.registry),
            sessions=current.store.stats(),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Log unhandled errors and return a standardized error body."""
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )
        body = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            detail=str(exc) if settings.LOG_LEVEL == "DEBUG" else None,
        )
        return JSONResponse(status_code=500, content=body.model_dump())

    return app


app = create_application()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "oidc_broker.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
