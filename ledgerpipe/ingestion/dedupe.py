"""Content-addressed deduplication of incoming statement records.

A record's identity is the SHA-256 of its natural key: ISO date, normalized
description, amount in cents and, when the bank supplies one, its reference
id. The ``records.content_hash`` unique constraint guarantees at most one
stored record per hash; a collision is recorded as a ``SkippedRecord``
pointing at the row that already holds the hash.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerpipe.db.models import RecordModel, SkippedRecordModel
from ledgerpipe.models import StatementRecord

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class IngestResult:
    """Outcome of ingesting one batch."""

    inserted: list[int] = field(default_factory=list)
    duplicates: list[tuple[StatementRecord, int]] = field(default_factory=list)

    @property
    def imported(self) -> int:
        return len(self.inserted)

    @property
    def skipped(self) -> int:
        return len(self.duplicates)


def normalize_description(description: str) -> str:
    """Collapse whitespace and upper-case, so cosmetic export noise is ignored."""
    return " ".join(description.split()).upper()


def content_hash(record: StatementRecord) -> str:
    """Deterministic digest of a record's natural key fields."""
    amount = record.amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    parts = [
        record.date.isoformat(),
        normalize_description(record.description),
        format(amount, "f"),
    ]
    if record.reference:
        parts.append(record.reference.strip())
    return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()


async def _existing_id(session: AsyncSession, digest: str) -> int | None:
    return await session.scalar(select(RecordModel.id).where(RecordModel.content_hash == digest))


async def ingest(
    session: AsyncSession,
    records: list[StatementRecord],
    import_session_id: int,
    account_ref: str,
) -> IngestResult:
    """Insert new records and log duplicates as skipped.

    Runs inside the caller's transaction. Records already inserted earlier in
    the same batch count as pre-existing.

    Args:
        session: Open transaction (the import session row must already be flushed)
        records: Validated statement records in payload order
        import_session_id: Owning import session
        account_ref: Account the statement belongs to

    Returns:
        IngestResult with inserted ids and (record, existing_id) duplicates
    """
    result = IngestResult()

    for record in records:
        digest = content_hash(record)
        existing_id = await _existing_id(session, digest)

        if existing_id is None:
            row = RecordModel(
                account_ref=account_ref,
                import_session_id=import_session_id,
                date=record.date,
                description=record.description,
                amount=record.amount.quantize(CENTS, rounding=ROUND_HALF_UP),
                reference=record.reference,
                bank_category=record.bank_category,
                content_hash=digest,
            )
            try:
                async with session.begin_nested():
                    session.add(row)
            except IntegrityError:
                # Lost a race with a concurrent import of the same record
                existing_id = await _existing_id(session, digest)
                if existing_id is None:
                    raise
                logger.info(f"Concurrent insert of record {digest[:12]}; treating as duplicate")
            else:
                result.inserted.append(row.id)
                continue

        session.add(
            SkippedRecordModel(
                import_session_id=import_session_id,
                date=record.date,
                description=record.description,
                amount=record.amount,
                reference=record.reference,
                content_hash=digest,
                existing_record_id=existing_id,
            )
        )
        result.duplicates.append((record, existing_id))

    await session.flush()
    return result
