"""FastAPI application with lifespan, router mounting and error mapping."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from sentinel.api.routes import escalations, health, inbox, items
from sentinel.core.config import AppSettings
from sentinel.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    SentinelError,
    StoreError,
    ValidationError,
)
from sentinel.core.logging_config import configure_logging
from sentinel.services import Services, build_services

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[SentinelError], int] = {
    ValidationError: 422,
    ForbiddenError: 403,
    InvalidTransitionError: 409,
    NotFoundError: 404,
    StoreError: 503,
}


async def _sentinel_error(request: Request, exc: SentinelError) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)),
        500,
    )
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def create_app(settings: AppSettings | None = None, services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``services`` lets tests hand in engines wired to in-memory stores.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app_settings = settings or (services.settings if services else AppSettings())
        configure_logging(app_settings.log_level, json_format=app_settings.environment != "dev")
        app.state.settings = app_settings
        app.state.services = services or build_services(app_settings)
        yield

    app = FastAPI(
        title="Sentinel Escalation & Workflow Engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(SentinelError, _sentinel_error)
    app.include_router(health.router)
    app.include_router(escalations.router, prefix="/escalations")
    app.include_router(items.router, prefix="/items")
    app.include_router(inbox.router, prefix="/inbox")
    return app
