from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from secgate import __version__
from secgate.api.deps import get_engine, shutdown_engine
from secgate.api.routes import gates, health, policies
from secgate.config import get_settings
from secgate.core.errors import (
    CollaboratorError,
    ConfigurationError,
    InvalidStateError,
    NotFoundError,
    SecGateError,
    ValidationError,
)
from secgate.db.session import dispose_engine, init_engine
from secgate.logging import configure_logging

logger = structlog.get_logger()

ERROR_STATUS_CODES: tuple[tuple[type[SecGateError], int], ...] = (
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ValidationError, 422),
    (CollaboratorError, 503),
    (ConfigurationError, 500),
)


def status_code_for(error: SecGateError) -> int:
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def secgate_error_handler(request: Request, exc: SecGateError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(
        status_code=code,
        content={"detail": exc.message, "details": exc.details},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    if settings.policy_store == "sql":
        init_engine(settings)
        if settings.seed_default_policies:
            await get_engine(settings).registry.seed_defaults()
    yield
    await shutdown_engine()
    await dispose_engine()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="SecGate API",
        version=__version__,
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin) for origin in settings.cors_origins],
            allow_methods=["*"],
            allow_headers=["*"],
            allow_credentials=True,
        )

    app.add_exception_handler(SecGateError, secgate_error_handler)
    app.include_router(policies.router, prefix=settings.api_prefix, tags=["policies"])
    app.include_router(gates.router, prefix=settings.api_prefix, tags=["gates"])
    app.include_router(health.router, tags=["health"])
    return app


app = create_app()
