"""FastAPI application for ledgerpipe.

Start-up order matters: tables are created and orphaned work from a previous
process is failed before the app accepts any request.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.middleware.base import BaseHTTPMiddleware

from ledgerpipe import __version__
from ledgerpipe.config import get_config
from ledgerpipe.context import build_context
from ledgerpipe.core.logging import configure_logging
from ledgerpipe.db.connection import close_db, init_db
from ledgerpipe.errors import (
    CollaboratorUnavailable,
    ConflictError,
    LedgerPipeError,
    NotFoundError,
    PayloadError,
    ValidationError,
)
from ledgerpipe.pipeline.service import ServicesFactory
from ledgerpipe.recovery import run_recovery_sweep
from ledgerpipe.web.routes import health, imports, reprocess

logger = structlog.get_logger()

_STATUS_BY_ERROR: list[tuple[type[LedgerPipeError], int]] = [
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 400),
    (PayloadError, 400),
    (CollaboratorUnavailable, 503),
]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()

        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("request_failed", error=str(exc))
            raise

        logger.info("request_completed", status_code=response.status_code)
        response.headers["X-Request-ID"] = request_id
        return response


async def ledgerpipe_error_handler(request: Request, exc: LedgerPipeError) -> JSONResponse:
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    content: dict = {"detail": str(exc)}
    if isinstance(exc, ValidationError) and exc.row is not None:
        content["row"] = exc.row
    if status_code >= 500:
        logger.error("request_error", error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=status_code, content=content)


def create_app(services_factory: ServicesFactory | None = None) -> FastAPI:
    """Build the app; ``services_factory`` swaps the enrichment collaborators."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = get_config()
        configure_logging(config)
        await init_db()
        report = await run_recovery_sweep()
        logger.info(
            "startup_complete",
            sessions_recovered=report.sessions_recovered,
            runs_recovered=report.runs_recovered,
        )
        app.state.pipeline = build_context(config, services_factory)
        try:
            yield
        finally:
            await app.state.pipeline.tasks.shutdown()
            await close_db()

    app = FastAPI(
        title="ledgerpipe",
        description="Statement import and enrichment pipeline",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    Instrumentator().instrument(app).expose(app)
    app.add_exception_handler(LedgerPipeError, ledgerpipe_error_handler)

    app.include_router(health.router)
    app.include_router(imports.router)
    app.include_router(reprocess.router)
    return app


app = create_app()
