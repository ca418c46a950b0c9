"""Record queries used by the pipeline and the reprocess manager."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerpipe.db.connection import session_scope
from ledgerpipe.db.filters import RecordFilter
from ledgerpipe.db.models import RecordModel
from ledgerpipe.pipeline.types import LedgerRecord


def to_ledger_record(row: RecordModel) -> LedgerRecord:
    return LedgerRecord(
        id=row.id,
        account_ref=row.account_ref,
        date=row.date,
        description=row.description,
        amount=row.amount,
        reference=row.reference,
        bank_category=row.bank_category,
        tags=list(row.tags or []),
        tag_source=row.tag_source,
        normalized_name=row.normalized_name,
    )


async def load_session_records(
    import_session_id: int, session: AsyncSession | None = None
) -> list[LedgerRecord]:
    """Detached copies of every record ingested by one session, oldest first."""
    async with session_scope(session) as db:
        result = await db.execute(
            select(RecordModel)
            .where(RecordModel.import_session_id == import_session_id)
            .order_by(RecordModel.date.asc(), RecordModel.id.asc())
        )
        return [to_ledger_record(row) for row in result.scalars()]


async def save_tags(records: list[LedgerRecord], session: AsyncSession | None = None) -> int:
    """Overwrite stored tags with the collaborator's output."""
    rows = [
        {"id": r.id, "tags": list(r.tags) or None, "tag_source": r.tag_source}
        for r in records
    ]
    if not rows:
        return 0
    async with session_scope(session) as db:
        await db.execute(update(RecordModel), rows)
    return len(rows)


async def save_names(records: list[LedgerRecord], session: AsyncSession | None = None) -> int:
    """Overwrite stored normalized names with the collaborator's output."""
    rows = [{"id": r.id, "normalized_name": r.normalized_name} for r in records]
    if not rows:
        return 0
    async with session_scope(session) as db:
        await db.execute(update(RecordModel), rows)
    return len(rows)


async def clear_derived(session: AsyncSession, import_session_id: int) -> int:
    """Reset pipeline-owned fields on a session's records."""
    result = await session.execute(
        update(RecordModel)
        .where(RecordModel.import_session_id == import_session_id)
        .values(tags=None, tag_source=None, normalized_name=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def sample_records(
    session: AsyncSession, import_session_id: int, limit: int
) -> list[dict]:
    """Most recent enriched records, in a stable order for snapshot diffs."""
    result = await session.execute(
        select(
            RecordModel.id,
            RecordModel.description,
            RecordModel.normalized_name,
            RecordModel.tags,
        )
        .where(RecordModel.import_session_id == import_session_id)
        .order_by(RecordModel.date.desc(), RecordModel.id.desc())
        .limit(limit)
    )
    return [
        {
            "id": row.id,
            "description": row.description,
            "normalized_name": row.normalized_name,
            "tags": sorted(row.tags or []),
        }
        for row in result
    ]


async def list_records(
    record_filter: RecordFilter, session: AsyncSession | None = None
) -> tuple[list[RecordModel], int]:
    async with session_scope(session) as db:
        total = await db.scalar(record_filter.count())
        result = await db.execute(record_filter.compile())
        return list(result.scalars()), total or 0
