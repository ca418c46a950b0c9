"""Pytest configuration and fixtures for ledgerpipe tests.

Every test gets its own SQLite file and a fresh config/engine; the ``db``
fixture creates the tables. Stub collaborators let orchestrator tests force
cancellations, per-item failures and unavailable backends.
"""

from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from ledgerpipe.config import get_config, reset_config
from ledgerpipe.db import connection
from ledgerpipe.enrichment.base import Classifier, Normalizer
from ledgerpipe.enrichment.services import EnrichmentServices, build_services
from ledgerpipe.errors import CollaboratorUnavailable
from ledgerpipe.models import StatementRecord
from ledgerpipe.pipeline.types import LedgerRecord, TaggingBreakdown

STATEMENT_CSV = """Date,Description,Amount,Reference
2024-01-03,NETFLIX.COM,-15.49,
2024-01-05,WHOLE FOODS MARKET #10234,-84.12,
2024-01-03,NETFLIX.COM,-15.49,
2024-01-08,TRANSFER TO SAVINGS,-500.00,
2024-01-09,SQ *BLUE BOTTLE COFFEE,-6.50,
2024-01-09,TRANSFER FROM CHECKING,500.00,
2024-01-09,SQ *BLUE BOTTLE COFFEE,-6.50,
2024-01-15,PAYROLL ACME CORP,2500.00,
2024-01-20,ATM CASH WITHDRAWAL 0042,-60.00,
2024-01-22,CORNER BOOKSHOP,-23.75,
"""


@pytest.fixture(autouse=True)
def test_env(tmp_path, monkeypatch):
    """Isolated database and configuration for each test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'ledgerpipe.db'}")
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    monkeypatch.delenv("TAG_RULES_PATH", raising=False)
    reset_config()
    connection._engine = None
    connection._session_factory = None
    yield
    reset_config()
    connection._engine = None
    connection._session_factory = None


@pytest_asyncio.fixture()
async def db():
    """Create tables; dispose of the engine afterwards."""
    await connection.init_db()
    yield
    await connection.close_db()


@pytest.fixture
def statement_csv() -> str:
    """Ten rows; rows 3 and 7 repeat rows 1 and 5."""
    return STATEMENT_CSV


@pytest.fixture
def make_record():
    """Factory for detached LedgerRecords."""
    counter = iter(range(1, 10_000))

    def _make(description: str, amount: str, day: date, **kwargs) -> LedgerRecord:
        return LedgerRecord(
            id=kwargs.pop("id", next(counter)),
            account_ref=kwargs.pop("account_ref", "acct-1"),
            date=day,
            description=description,
            amount=Decimal(amount),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_statement_record():
    def _make(description: str, amount: str, day: date = date(2024, 1, 1), **kwargs) -> StatementRecord:
        return StatementRecord(date=day, description=description, amount=Decimal(amount), **kwargs)

    return _make


@pytest.fixture
def services() -> EnrichmentServices:
    """Default (rules + heuristics) collaborators."""
    return build_services(get_config())


# ============================================================================
# Stub collaborators
# ============================================================================


class FixedTagClassifier(Classifier):
    """Tags everything with one tag; can block until released."""

    def __init__(self, tag: str = "Misc", gate: asyncio.Event | None = None):
        self.tag = tag
        self.gate = gate
        self.entered = asyncio.Event()

    async def assign(self, records, progress):
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        breakdown = TaggingBreakdown()
        for idx, record in enumerate(records):
            record.tags = [self.tag]
            record.tag_source = "rule"
            breakdown.rule += 1
            progress(idx + 1, len(records))
        return breakdown


class FlakyNormalizer(Normalizer):
    """Raises for descriptions listed in ``failing``; counts calls."""

    def __init__(self, failing: set[str] | None = None, unavailable: bool = False):
        self.failing = failing or set()
        self.unavailable = unavailable
        self.calls: list[str] = []

    async def normalize(self, description, context_hint=None):
        self.calls.append(description)
        if self.unavailable:
            raise CollaboratorUnavailable("normalizer", "connection refused")
        if description in self.failing:
            raise ValueError(f"cannot normalize {description}")
        return description.title()


@pytest.fixture
def fixed_tag_classifier():
    return FixedTagClassifier


@pytest.fixture
def flaky_normalizer():
    return FlakyNormalizer
