"""Integration tests for content-hash deduplication against the database."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from ledgerpipe.context import build_context
from ledgerpipe.db.connection import get_session
from ledgerpipe.db.models import RecordModel, SkippedRecordModel
from ledgerpipe.enrichment.services import EnrichmentServices
from ledgerpipe.ingestion.dedupe import ingest
from ledgerpipe.ingestion.statements import parse_csv
from ledgerpipe.models import ImportStatus
from ledgerpipe.pipeline.service import ImportRequest
from ledgerpipe.pipeline.tracker import SessionInit, SessionTracker


async def _ingest(records, account_ref: str = "acct-1"):
    tracker = SessionTracker()
    async with get_session() as session:
        session_id = await tracker.create(SessionInit(account_ref=account_ref), session)
        result = await ingest(session, records, session_id, account_ref)
    return session_id, result


@pytest.mark.asyncio
async def test_duplicates_within_one_batch(db, statement_csv):
    parsed = parse_csv(statement_csv)

    session_id, result = await _ingest(parsed.records)

    assert (result.imported, result.skipped) == (8, 2)
    # Rows 3 and 7 repeat rows 1 and 5 (inserted[0] and inserted[3])
    assert [existing for _, existing in result.duplicates] == [result.inserted[0], result.inserted[3]]

    skipped = await SessionTracker().skipped(session_id)
    assert [s.existing_record_id for s in skipped] == [result.inserted[0], result.inserted[3]]
    assert skipped[0].description == "NETFLIX.COM"


@pytest.mark.asyncio
async def test_reimport_skips_everything(db, statement_csv):
    parsed = parse_csv(statement_csv)
    _, first = await _ingest(parsed.records)

    second_id, second = await _ingest(parsed.records)

    assert (second.imported, second.skipped) == (0, 10)
    async with get_session() as session:
        stored = await session.scalar(select(func.count(RecordModel.id)))
        distinct_hashes = await session.scalar(
            select(func.count(func.distinct(RecordModel.content_hash)))
        )
        skipped_rows = await session.scalar(
            select(func.count(SkippedRecordModel.id)).where(
                SkippedRecordModel.import_session_id == second_id
            )
        )
    assert stored == distinct_hashes == 8
    assert skipped_rows == 10
    assert set(existing for _, existing in second.duplicates) == set(first.inserted)


@pytest.mark.asyncio
async def test_cosmetic_variants_are_duplicates(db, make_statement_record):
    _, result = await _ingest(
        [
            make_statement_record("Blue  Bottle Coffee", "-6.5"),
            make_statement_record("BLUE BOTTLE COFFEE", "-6.50"),
        ]
    )

    assert (result.imported, result.skipped) == (1, 1)


@pytest.mark.asyncio
async def test_failed_batch_leaves_nothing_behind(db, make_statement_record):
    tracker = SessionTracker()

    with pytest.raises(RuntimeError):
        async with get_session() as session:
            session_id = await tracker.create(SessionInit(account_ref="acct-1"), session)
            await ingest(session, [make_statement_record("Coffee", "-3.00")], session_id, "acct-1")
            raise RuntimeError("crash before commit")

    async with get_session() as session:
        assert await session.scalar(select(func.count(RecordModel.id))) == 0


@pytest.mark.asyncio
async def test_oversized_amount_rejects_only_that_row(db):
    ctx = build_context(services_factory=lambda variant: EnrichmentServices())
    payload = (
        "Date,Description,Amount\n"
        "2024-01-01,Coffee,-3.00\n"
        "2024-01-02,Wire,100000000000000000000000000000\n"
    )

    outcome = await ctx.imports.import_statement(ImportRequest(account_ref="acct-1", csv_data=payload))
    await ctx.tasks.wait(outcome.session_id, timeout=30)

    assert (outcome.imported, outcome.skipped) == (1, 0)
    assert [e.row for e in outcome.errors] == [2]
    assert (await ctx.tracker.get(outcome.session_id)).status == ImportStatus.COMPLETED.value
