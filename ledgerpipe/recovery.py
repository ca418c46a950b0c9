"""Startup recovery sweep.

No in-memory pipeline state survives a restart, so nothing is resumed: every
session still ``pending``/``processing`` and every run still ``running`` was
orphaned by the previous process and is moved to ``failed``. Each row is
handled in its own transaction; a row that cannot be recovered is logged and
the sweep carries on.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update

from ledgerpipe.db.connection import get_session
from ledgerpipe.db.models import ImportSessionModel, ReprocessRunModel
from ledgerpipe.models import ImportStatus, RunStatus

logger = logging.getLogger(__name__)

RESTART_REASON = (
    "Interrupted by restart before processing finished. "
    "Re-run the import or reprocess it."
)

_ORPHAN_STATUSES = [ImportStatus.PENDING.value, ImportStatus.PROCESSING.value]


@dataclass
class RecoveryReport:
    sessions_recovered: int = 0
    runs_recovered: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return self.sessions_recovered + self.runs_recovered


async def _fail_session(session_id: int, now: datetime) -> bool:
    async with get_session() as db:
        result = await db.execute(
            update(ImportSessionModel)
            .where(
                ImportSessionModel.id == session_id,
                ImportSessionModel.status.in_(_ORPHAN_STATUSES),
            )
            .values(status=ImportStatus.FAILED.value, error=RESTART_REASON, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


async def _fail_run(run_id: int, now: datetime) -> bool:
    async with get_session() as db:
        result = await db.execute(
            update(ReprocessRunModel)
            .where(
                ReprocessRunModel.id == run_id,
                ReprocessRunModel.status == RunStatus.RUNNING.value,
            )
            .values(status=RunStatus.FAILED.value, error=RESTART_REASON, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


async def run_recovery_sweep() -> RecoveryReport:
    """Fail every orphaned session and run; never raises.

    Must run before the process accepts new work, otherwise a live pipeline
    could be mistaken for an orphan.
    """
    report = RecoveryReport()
    now = datetime.now(timezone.utc)

    try:
        async with get_session() as db:
            session_ids = list(
                (
                    await db.execute(
                        select(ImportSessionModel.id).where(
                            ImportSessionModel.status.in_(_ORPHAN_STATUSES)
                        )
                    )
                ).scalars()
            )
            runs = list(
                (
                    await db.execute(
                        select(ReprocessRunModel.id, ReprocessRunModel.import_session_id).where(
                            ReprocessRunModel.status == RunStatus.RUNNING.value
                        )
                    )
                ).all()
            )
    except Exception:
        logger.error("Recovery sweep could not query orphaned work", exc_info=True)
        report.errors += 1
        return report

    handled: set[int] = set()
    for session_id in session_ids:
        try:
            if await _fail_session(session_id, now):
                report.sessions_recovered += 1
            handled.add(session_id)
        except Exception:
            report.errors += 1
            logger.error(f"Failed to recover import session {session_id}", exc_info=True)

    for run_id, parent_id in runs:
        try:
            if await _fail_run(run_id, now):
                report.runs_recovered += 1
            if parent_id not in handled:
                if await _fail_session(parent_id, now):
                    report.sessions_recovered += 1
                handled.add(parent_id)
        except Exception:
            report.errors += 1
            logger.error(f"Failed to recover reprocess run {run_id}", exc_info=True)

    if report.total:
        logger.warning(
            f"Recovery sweep failed {report.sessions_recovered} orphaned session(s) "
            f"and {report.runs_recovered} reprocess run(s)"
        )
    else:
        logger.info("Recovery sweep found no orphaned work")
    return report
