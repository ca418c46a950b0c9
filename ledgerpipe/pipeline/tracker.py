"""Import session state machine.

Every write is a single conditional UPDATE guarded on the current status, so
the database row is the only source of truth and a write against a session
in the wrong state changes nothing:

    pending    -> processing                 start()
    processing -> completed                  finish()
    processing -> failed                     fail()
    processing -> cancelled                  cancel()
    pending    -> failed                     fail() (recovery sweep)

Completed, failed and cancelled are terminal. The reprocess manager's
``claim_for_reprocess`` is the one operation that reopens a finished session,
and it does so through the same compare-and-swap.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerpipe.db.connection import session_scope
from ledgerpipe.db.filters import SessionFilter
from ledgerpipe.db.models import ImportSessionModel, SkippedRecordModel
from ledgerpipe.errors import ConflictError, NotFoundError
from ledgerpipe.models import ImportStatus
from ledgerpipe.pipeline.types import (
    CLEARING_PHASE,
    COUNTER_COLUMNS,
    DURATION_COLUMNS,
    FINISHING_PHASE,
    Phase,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionInit:
    """Identity fields for a new import session."""

    account_ref: str
    filename: str | None = None
    payload_bytes: int | None = None
    initiated_by: str | None = None
    model_variant: str | None = None


class SessionTracker:
    """Owns ImportSession and SkippedRecord rows."""

    # ------------------------------------------------------------------ helpers

    async def _guarded_update(
        self,
        session_id: int,
        allowed: tuple[ImportStatus, ...],
        values: dict[str, Any],
        action: str,
        session: AsyncSession | None = None,
    ) -> None:
        async with session_scope(session) as db:
            result = await db.execute(
                update(ImportSessionModel)
                .where(
                    ImportSessionModel.id == session_id,
                    ImportSessionModel.status.in_([s.value for s in allowed]),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self._raise_for_state(db, session_id, action)

    async def _raise_for_state(self, db: AsyncSession, session_id: int, action: str) -> None:
        status = await db.scalar(
            select(ImportSessionModel.status).where(ImportSessionModel.id == session_id)
        )
        if status is None:
            raise NotFoundError(f"Import session {session_id} not found")
        raise ConflictError(f"Cannot {action} import session {session_id}: status is {status}")

    # --------------------------------------------------------------- lifecycle

    async def create(self, init: SessionInit, session: AsyncSession | None = None) -> int:
        """Insert a pending session and return its id."""
        async with session_scope(session) as db:
            row = ImportSessionModel(
                account_ref=init.account_ref,
                filename=init.filename,
                payload_bytes=init.payload_bytes,
                initiated_by=init.initiated_by,
                model_variant=init.model_variant,
                status=ImportStatus.PENDING.value,
            )
            db.add(row)
            await db.flush()
            logger.info(f"Created import session {row.id} for account {init.account_ref}")
            return row.id

    async def start(self, session_id: int, session: AsyncSession | None = None) -> None:
        await self._guarded_update(
            session_id,
            (ImportStatus.PENDING,),
            {"status": ImportStatus.PROCESSING.value, "phase": None, "phase_current": 0, "phase_total": 0},
            "start",
            session,
        )

    async def finish(
        self,
        session_id: int,
        counters: dict[str, int] | None = None,
        total_ms: int | None = None,
    ) -> None:
        """Mark the session completed, optionally storing final counters."""
        values: dict[str, Any] = dict(counters or {})
        values.update(
            status=ImportStatus.COMPLETED.value,
            phase=None,
            phase_current=0,
            phase_total=0,
            total_duration_ms=total_ms,
            completed_at=_utcnow(),
        )
        await self._guarded_update(session_id, (ImportStatus.PROCESSING,), values, "finish")
        logger.info(f"Import session {session_id} completed in {total_ms}ms")

    async def fail(self, session_id: int, reason: str, session: AsyncSession | None = None) -> None:
        await self._guarded_update(
            session_id,
            (ImportStatus.PENDING, ImportStatus.PROCESSING),
            {"status": ImportStatus.FAILED.value, "error": reason, "completed_at": _utcnow()},
            "fail",
            session,
        )
        logger.warning(f"Import session {session_id} failed: {reason}")

    async def cancel(self, session_id: int) -> None:
        """Apply an observed cancellation request."""
        await self._guarded_update(
            session_id,
            (ImportStatus.PROCESSING,),
            {"status": ImportStatus.CANCELLED.value, "completed_at": _utcnow()},
            "cancel",
        )
        logger.info(f"Import session {session_id} cancelled")

    async def request_cancel(self, session_id: int) -> bool:
        """Set the cancellation flag.

        Returns False when the session is not processing, or has already
        passed its last phase boundary.
        """
        async with session_scope() as db:
            result = await db.execute(
                update(ImportSessionModel)
                .where(
                    ImportSessionModel.id == session_id,
                    ImportSessionModel.status == ImportStatus.PROCESSING.value,
                    or_(
                        ImportSessionModel.phase.is_(None),
                        ImportSessionModel.phase != FINISHING_PHASE,
                    ),
                )
                .values(cancel_requested=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                logger.info(f"Cancellation requested for import session {session_id}")
                return True
            exists = await db.scalar(
                select(ImportSessionModel.id).where(ImportSessionModel.id == session_id)
            )
            if exists is None:
                raise NotFoundError(f"Import session {session_id} not found")
            return False

    async def begin_finishing(self, session_id: int) -> bool:
        """Close a processing session to cancellation ahead of ``finish``.

        Returns False when a cancellation request got in first; the caller
        should cancel instead of finishing.

        Raises:
            ConflictError: If the session is not processing
        """
        async with session_scope() as db:
            result = await db.execute(
                update(ImportSessionModel)
                .where(
                    ImportSessionModel.id == session_id,
                    ImportSessionModel.status == ImportStatus.PROCESSING.value,
                    ImportSessionModel.cancel_requested.is_(False),
                )
                .values(phase=FINISHING_PHASE, phase_current=0, phase_total=0)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                return True
            status = await db.scalar(
                select(ImportSessionModel.status).where(ImportSessionModel.id == session_id)
            )
            if status == ImportStatus.PROCESSING.value:
                return False
            await self._raise_for_state(db, session_id, "finish")

    async def cancel_requested(self, session_id: int) -> bool:
        async with session_scope() as db:
            flag = await db.scalar(
                select(ImportSessionModel.cancel_requested).where(
                    ImportSessionModel.id == session_id
                )
            )
        return bool(flag)

    # ---------------------------------------------------------------- progress

    async def update_progress(self, session_id: int, phase: Phase | str, current: int, total: int) -> bool:
        """Move the progress counters forward.

        Within a phase ``phase_current`` never decreases and never exceeds
        ``phase_total``; a different phase name resets both. Stale (lower)
        values are ignored and return False.
        """
        phase_name = phase.value if isinstance(phase, Phase) else phase
        total = max(int(total), 0)
        current = min(max(int(current), 0), total)

        async with session_scope() as db:
            result = await db.execute(
                update(ImportSessionModel)
                .where(
                    ImportSessionModel.id == session_id,
                    ImportSessionModel.status == ImportStatus.PROCESSING.value,
                    (ImportSessionModel.phase.is_(None))
                    | (ImportSessionModel.phase != phase_name)
                    | (ImportSessionModel.phase_current <= current),
                )
                .values(phase=phase_name, phase_current=current, phase_total=total)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                return True
            row = (
                await db.execute(
                    select(ImportSessionModel.status).where(ImportSessionModel.id == session_id)
                )
            ).first()
            if row is None:
                raise NotFoundError(f"Import session {session_id} not found")
            if row.status != ImportStatus.PROCESSING.value:
                raise ConflictError(
                    f"Cannot update progress of import session {session_id}: status is {row.status}"
                )
            return False

    async def record_phase_duration(self, session_id: int, phase: Phase, ms: int) -> None:
        await self._guarded_update(
            session_id,
            (ImportStatus.PROCESSING,),
            {DURATION_COLUMNS[phase]: int(ms)},
            "record duration for",
        )

    async def record_outcomes(self, session_id: int, counters: dict[str, int]) -> None:
        unknown = set(counters) - set(COUNTER_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown counter columns: {sorted(unknown)}")
        await self._guarded_update(
            session_id, (ImportStatus.PROCESSING,), dict(counters), "record outcomes for"
        )

    async def record_ingest(
        self, session_id: int, imported: int, skipped: int, session: AsyncSession | None = None
    ) -> None:
        await self._guarded_update(
            session_id,
            (ImportStatus.PENDING,),
            {"imported_count": imported, "skipped_count": skipped},
            "record ingest counts for",
            session,
        )

    # ---------------------------------------------------------------- reprocess

    async def claim_for_reprocess(self, session: AsyncSession, session_id: int) -> None:
        """Atomically move a non-processing session back to processing.

        Must be the first statement of the reprocess transaction so concurrent
        claims serialize on the row; exactly one of them wins.
        """
        await self._guarded_update(
            session_id,
            (
                ImportStatus.PENDING,
                ImportStatus.COMPLETED,
                ImportStatus.FAILED,
                ImportStatus.CANCELLED,
            ),
            {"status": ImportStatus.PROCESSING.value},
            "reprocess",
            session,
        )

    async def reset_for_run(
        self, session: AsyncSession, session_id: int, model_variant: str | None
    ) -> None:
        """Zero enrichment counters, durations and flags ahead of a new run."""
        values: dict[str, Any] = {
            col: 0 for col in COUNTER_COLUMNS if col not in ("imported_count", "skipped_count")
        }
        values.update({col: None for col in DURATION_COLUMNS.values()})
        values.update(
            total_duration_ms=None,
            error=None,
            cancel_requested=False,
            completed_at=None,
            phase=CLEARING_PHASE,
            phase_current=0,
            phase_total=0,
            model_variant=model_variant,
        )
        await self._guarded_update(
            session_id, (ImportStatus.PROCESSING,), values, "reset", session
        )

    # ------------------------------------------------------------------ queries

    async def get(self, session_id: int, session: AsyncSession | None = None) -> ImportSessionModel:
        async with session_scope(session) as db:
            row = await db.get(ImportSessionModel, session_id, populate_existing=True)
            if row is None:
                raise NotFoundError(f"Import session {session_id} not found")
            return row

    async def list_sessions(self, session_filter: SessionFilter) -> tuple[list[ImportSessionModel], int]:
        async with session_scope() as db:
            total = await db.scalar(session_filter.count())
            result = await db.execute(session_filter.compile())
            return list(result.scalars()), total or 0

    async def skipped(self, session_id: int) -> list[SkippedRecordModel]:
        async with session_scope() as db:
            await self.get(session_id, db)
            result = await db.execute(
                select(SkippedRecordModel)
                .where(SkippedRecordModel.import_session_id == session_id)
                .order_by(SkippedRecordModel.id)
            )
            return list(result.scalars())
