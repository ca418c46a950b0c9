"""Fixtures for route tests: routers mounted on a bare app with a mocked context."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from ledgerpipe.errors import LedgerPipeError
from ledgerpipe.web.app import ledgerpipe_error_handler
from ledgerpipe.web.dependencies import get_pipeline
from ledgerpipe.web.routes import health, imports, reprocess


@pytest.fixture
def pipeline():
    """Mock PipelineContext; async methods are AsyncMocks."""
    ctx = MagicMock()
    ctx.imports.import_statement = AsyncMock()
    ctx.tracker.get = AsyncMock()
    ctx.tracker.list_sessions = AsyncMock(return_value=([], 0))
    ctx.tracker.skipped = AsyncMock(return_value=[])
    ctx.tracker.request_cancel = AsyncMock()
    ctx.reprocess.start_reprocess = AsyncMock()
    ctx.reprocess.list_runs = AsyncMock(return_value=[])
    ctx.reprocess.comparison_for_session = AsyncMock()
    ctx.reprocess.compare_runs = AsyncMock()
    ctx.reprocess.compare_to_initial = AsyncMock()
    ctx.tasks.active_sessions = []
    return ctx


@pytest.fixture
def app(pipeline):
    test_app = FastAPI()
    test_app.include_router(health.router)
    test_app.include_router(imports.router)
    test_app.include_router(reprocess.router)
    test_app.add_exception_handler(LedgerPipeError, ledgerpipe_error_handler)
    test_app.dependency_overrides[get_pipeline] = lambda: pipeline
    return test_app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def session_row():
    """Attribute bag shaped like an ImportSessionModel row."""

    def _row(session_id: int = 1, status: str = "processing", **fields):
        values = dict(
            id=session_id,
            account_ref="acct-1",
            status=status,
            phase="tagging",
            phase_current=3,
            phase_total=8,
            imported_count=8,
            skipped_count=2,
        )
        values.update(fields)
        return SimpleNamespace(**values)

    return _row
