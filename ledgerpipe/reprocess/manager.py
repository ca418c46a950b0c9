"""Reprocess manager - versioned re-runs of the enrichment pipeline.

A reprocess run re-executes every phase against records that were already
ingested, bracketed by a ``before`` and an ``after`` snapshot so the effect
of a new classifier variant (or rules change) can be compared.

Setup happens in one transaction, in this order:
0. claim the session (compare-and-swap to processing; concurrent claims
   serialize on the row and all but one get ConflictError)
1. allocate ``run_number = max + 1`` for the session
2. create the run in ``running``
3. capture the ``before`` snapshot
4. clear derived fields on the session's records
5. reset session counters and progress
Then the orchestrator is spawned. On success the ``after`` snapshot is
captured and the run completed before the session is marked completed; on
failure or cancellation the run is marked failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerpipe.config import AppConfig, get_config
from ledgerpipe.db.connection import get_session, session_scope
from ledgerpipe.db.models import ImportSessionModel, ReprocessRunModel, SnapshotModel
from ledgerpipe.db.records import clear_derived
from ledgerpipe.errors import NotFoundError, ValidationError
from ledgerpipe.models import (
    ReprocessComparison,
    RunStatus,
    RunSummary,
    RunView,
    SnapshotType,
)
from ledgerpipe.pipeline.service import ImportService
from ledgerpipe.pipeline.types import OutcomeCounters, PipelineResult
from ledgerpipe.reprocess.snapshots import capture_snapshot, diff_snapshots, load_snapshot

logger = logging.getLogger(__name__)


@dataclass
class ReprocessOptions:
    model: str | None = None
    reason: str | None = None
    initiated_by: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReprocessTicket:
    session_id: int
    run_id: int
    run_number: int


class ReprocessManager:
    """Owns ReprocessRun and Snapshot rows."""

    def __init__(self, imports: ImportService, config: AppConfig | None = None):
        self.imports = imports
        self.tracker = imports.tracker
        self.config = config or get_config()

    @property
    def sample_size(self) -> int:
        return self.config.pipeline.snapshot_sample_size

    async def start_reprocess(
        self, session_id: int, options: ReprocessOptions | None = None
    ) -> ReprocessTicket:
        """Create run ``n+1`` and spawn the pipeline.

        Raises:
            NotFoundError: Unknown session
            ConflictError: Session is already processing
        """
        options = options or ReprocessOptions()
        services = self.imports.services_factory(options.model)

        async with get_session() as db:
            await self.tracker.claim_for_reprocess(db, session_id)

            last = await db.scalar(
                select(func.max(ReprocessRunModel.run_number)).where(
                    ReprocessRunModel.import_session_id == session_id
                )
            )
            run = ReprocessRunModel(
                import_session_id=session_id,
                run_number=(last or 0) + 1,
                status=RunStatus.RUNNING.value,
                initiated_by=options.initiated_by,
                reason=options.reason,
                model_variant=services.variant,
                parameters=dict(options.parameters) or None,
            )
            db.add(run)
            await db.flush()

            await capture_snapshot(db, session_id, SnapshotType.BEFORE, run.id, self.sample_size)
            cleared = await clear_derived(db, session_id)
            await self.tracker.reset_for_run(db, session_id, services.variant)

        ticket = ReprocessTicket(session_id=session_id, run_id=run.id, run_number=run.run_number)
        logger.info(
            f"Reprocess run #{ticket.run_number} (id {ticket.run_id}) started for session "
            f"{session_id}; cleared {cleared} records"
        )

        async def complete_run(counters: OutcomeCounters) -> None:
            async with get_session() as db:
                await capture_snapshot(db, session_id, SnapshotType.AFTER, ticket.run_id, self.sample_size)
                await self._finish_run(db, ticket.run_id, RunStatus.COMPLETED)

        async def fail_run(result: PipelineResult) -> None:
            if result.success:
                return
            error = result.error or f"Pipeline {result.status.value}"
            async with get_session() as db:
                await self._finish_run(db, ticket.run_id, RunStatus.FAILED, error)

        self.imports.spawn(session_id, services, before_finish=complete_run, after=fail_run)
        return ticket

    async def _finish_run(
        self, db: AsyncSession, run_id: int, status: RunStatus, error: str | None = None
    ) -> bool:
        result = await db.execute(
            update(ReprocessRunModel)
            .where(
                ReprocessRunModel.id == run_id,
                ReprocessRunModel.status == RunStatus.RUNNING.value,
            )
            .values(status=status.value, error=error, completed_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(f"Reprocess run {run_id} was no longer running; left as is")
            return False
        log = logger.info if status is RunStatus.COMPLETED else logger.warning
        log(f"Reprocess run {run_id} {status.value}" + (f": {error}" if error else ""))
        return True

    # ================================================================ queries

    async def get_run(self, run_id: int, session: AsyncSession | None = None) -> ReprocessRunModel:
        async with session_scope(session) as db:
            run = await db.get(ReprocessRunModel, run_id, populate_existing=True)
            if run is None:
                raise NotFoundError(f"Reprocess run {run_id} not found")
            return run

    async def list_runs(self, session_id: int) -> list[RunSummary]:
        """Runs for a session, newest first, with change counts."""
        async with get_session() as db:
            if await db.get(ImportSessionModel, session_id) is None:
                raise NotFoundError(f"Import session {session_id} not found")
            runs = (
                await db.execute(
                    select(ReprocessRunModel)
                    .where(ReprocessRunModel.import_session_id == session_id)
                    .order_by(ReprocessRunModel.run_number.desc())
                )
            ).scalars().all()
            snapshots = (
                await db.execute(
                    select(SnapshotModel).where(SnapshotModel.import_session_id == session_id)
                )
            ).scalars().all()

        by_run: dict[tuple[int | None, str], SnapshotModel] = {
            (s.reprocess_run_id, s.snapshot_type): s for s in snapshots
        }
        summaries = []
        for run in runs:
            summary = RunSummary.model_validate(run)
            before = by_run.get((run.id, SnapshotType.BEFORE.value))
            after = by_run.get((run.id, SnapshotType.AFTER.value))
            if before is not None and after is not None:
                comparison = diff_snapshots(before, after)
                summary.counters_changed = len(comparison.changed_counters)
                summary.tag_changes = len(comparison.tag_changes)
                summary.name_changes = len(comparison.name_changes)
            summaries.append(summary)
        return summaries

    async def compare(self, run_id: int) -> ReprocessComparison:
        """Before/after comparison of one run, from its stored snapshots."""
        async with get_session() as db:
            run = await self.get_run(run_id, db)
            before = await load_snapshot(db, run_id, SnapshotType.BEFORE)
            after = await load_snapshot(db, run_id, SnapshotType.AFTER)
        if before is None or after is None:
            raise NotFoundError(f"Reprocess run {run_id} has no completed before/after snapshots")
        return ReprocessComparison(
            session_id=run.import_session_id,
            run=RunView.model_validate(run),
            comparison=diff_snapshots(before, after),
        )

    async def comparison_for_session(
        self, session_id: int, run_id: int | None = None
    ) -> ReprocessComparison:
        """Comparison for ``run_id``, or for the latest run that has one."""
        if run_id is not None:
            comparison = await self.compare(run_id)
            if comparison.session_id != session_id:
                raise NotFoundError(f"Reprocess run {run_id} does not belong to session {session_id}")
            return comparison

        async with get_session() as db:
            latest = await db.scalar(
                select(ReprocessRunModel.id)
                .join(SnapshotModel, SnapshotModel.reprocess_run_id == ReprocessRunModel.id)
                .where(
                    ReprocessRunModel.import_session_id == session_id,
                    SnapshotModel.snapshot_type == SnapshotType.AFTER.value,
                )
                .order_by(ReprocessRunModel.run_number.desc())
                .limit(1)
            )
        if latest is None:
            raise NotFoundError(f"No completed reprocess runs for session {session_id}")
        return await self.compare(latest)

    async def compare_runs(self, run_a: int, run_b: int) -> ReprocessComparison:
        """Run ``a``'s after snapshot as baseline against run ``b``'s."""
        async with get_session() as db:
            first = await self.get_run(run_a, db)
            second = await self.get_run(run_b, db)
            if first.import_session_id != second.import_session_id:
                raise ValidationError("Runs belong to different import sessions")
            baseline = await load_snapshot(db, run_a, SnapshotType.AFTER)
            latest = await load_snapshot(db, run_b, SnapshotType.AFTER)
        if baseline is None or latest is None:
            raise NotFoundError("Both runs must have completed to be compared")
        return ReprocessComparison(
            session_id=second.import_session_id,
            run=RunView.model_validate(second),
            baseline_run=RunView.model_validate(first),
            comparison=diff_snapshots(baseline, latest),
        )

    async def compare_to_initial(self, session_id: int, run_id: int) -> ReprocessComparison:
        """State before the first reprocess run against ``run_id``'s result."""
        async with get_session() as db:
            run = await self.get_run(run_id, db)
            if run.import_session_id != session_id:
                raise NotFoundError(f"Reprocess run {run_id} does not belong to session {session_id}")
            first = await db.scalar(
                select(ReprocessRunModel).where(
                    ReprocessRunModel.import_session_id == session_id,
                    ReprocessRunModel.run_number == 1,
                )
            )
            initial = await load_snapshot(db, first.id, SnapshotType.BEFORE) if first else None
            latest = await load_snapshot(db, run_id, SnapshotType.AFTER)
        if initial is None or latest is None:
            raise NotFoundError(f"No initial/after snapshot pair for run {run_id}")
        return ReprocessComparison(
            session_id=session_id,
            run=RunView.model_validate(run),
            baseline_run=RunView.model_validate(first),
            comparison=diff_snapshots(initial, latest),
        )
