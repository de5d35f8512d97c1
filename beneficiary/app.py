"""FastAPI service for the beneficiary screens.

Run with:
    uvicorn beneficiary.app:create_app --factory --reload --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from . import __version__
from .config import AppConfig, load_config
from .errors import (
    AuthenticationError,
    ClientError,
    ConfigurationError,
    ConflictError,
    FeatureDisabledError,
    HTTPStatusError,
    VerificationError,
    error_response,
)
from .routes import (
    Services,
    auth_router,
    claims_router,
    consents_router,
    home_router,
    kyc_router,
    limiter,
    policies_router,
    profile_router,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Upstream statuses passed through as-is; anything else becomes 502
PASSTHROUGH_STATUSES = {400, 401, 403, 404, 409, 422}

CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8081",
]

__all__ = ["Services", "configure_logging", "create_app", "status_for"]


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def status_for(error: ClientError) -> int:
    """HTTP status used when rendering a client error."""
    if isinstance(error, AuthenticationError):
        return 401
    if isinstance(error, VerificationError):
        return 422
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, FeatureDisabledError):
        return 403
    if isinstance(error, ConfigurationError):
        return 500
    if isinstance(error, HTTPStatusError) and error.status_code in PASSTHROUGH_STATUSES:
        return error.status_code
    return 502


def create_app(config: AppConfig | None = None, services: Services | None = None) -> FastAPI:
    """Build the application.

    Args:
        config: Configuration; loaded from the environment when omitted
        services: Prebuilt services (tests inject fakes or mock transports)
    """
    if services is not None:
        config = services.config
    config = config or load_config()

    if config.app.enable_logging:
        configure_logging(config.app.log_level)
        logger.info("\n" + config.describe())

    services = services or Services.build(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.auth.restore():
            logger.info("Restored persisted session")
        yield
        services.close()

    app = FastAPI(
        title="Beneficiary Services",
        description="Identity verification, policies, claims and consent for beneficiaries",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.exception_handler(ClientError)
    async def client_error_handler(request: Request, exc: ClientError) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.warning(f"{request.method} {request.url.path} -> {status}: {exc.code}")
        return JSONResponse(status_code=status, content=error_response(exc))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(kyc_router)
    app.include_router(home_router)
    app.include_router(policies_router)
    app.include_router(claims_router)
    app.include_router(consents_router)
    app.include_router(profile_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": config.app.environment,
            "authenticated": services.bsp.is_authenticated(),
            "kyc_flows": len(services.flows),
        }

    return app
