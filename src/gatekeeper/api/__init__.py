"""
REST API front-end.

FastAPI application exposing the policy engine operations to dashboards
and remote tooling.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gatekeeper import __version__
from gatekeeper.api.auth import init_auth, require_api_key
from gatekeeper.api.routes import deps, router
from gatekeeper.errors import (
    AggregateError,
    DeviceControlError,
    EnumerationError,
    GatekeeperError,
    NotFoundError,
    PolicyViolation,
    StorageError,
)
from gatekeeper.policy.engine import PolicyEngine

logger = logging.getLogger(__name__)

# Checked in order; first isinstance match wins
ERROR_STATUS: list[tuple[type[GatekeeperError], int]] = [
    (PolicyViolation, 409),
    (NotFoundError, 404),
    (DeviceControlError, 502),
    (EnumerationError, 503),
    (AggregateError, 502),
    (StorageError, 500),
]


def error_status(exc: GatekeeperError) -> int:
    """HTTP status for an engine error."""
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return 500


def create_app(
    title: str = "USB Gatekeeper API",
    debug: bool = False,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        title: API title
        debug: Enable debug mode

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=title,
        description="REST API for the USB Gatekeeper device admission policy",
        version=__version__,
        debug=debug,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    app.include_router(router)

    @app.exception_handler(GatekeeperError)
    async def gatekeeper_error_handler(request: Request, exc: GatekeeperError):
        """Translate engine errors to HTTP responses."""
        code = error_status(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app


def configure_services(
    engine: PolicyEngine | None,
    auth_mode: str = "api_key",
    api_key: str | None = None,
) -> None:
    """
    Configure application services.

    Args:
        engine: Policy engine instance
        auth_mode: "api_key" or "none"
        api_key: Expected X-API-Key value
    """
    deps.engine = engine
    init_auth(auth_mode, api_key)
    logger.info("API services configured")


__all__ = [
    "create_app",
    "configure_services",
    "deps",
    "error_status",
    "require_api_key",
    "router",
]
