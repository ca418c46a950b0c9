"""Snapshot capture and diff.

A snapshot stores a session's outcome counters and a sample of enriched
records at one point in time. Comparisons are computed only from two stored
snapshots, so a historical comparison stays valid after records change again.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerpipe.db.models import ImportSessionModel, SnapshotModel
from ledgerpipe.db.records import sample_records
from ledgerpipe.errors import NotFoundError
from ledgerpipe.models import RecordChange, SnapshotComparison, SnapshotType, SnapshotView
from ledgerpipe.pipeline.types import COUNTER_COLUMNS

logger = logging.getLogger(__name__)


async def capture_snapshot(
    session: AsyncSession,
    import_session_id: int,
    snapshot_type: SnapshotType,
    run_id: int | None,
    sample_size: int = 100,
) -> SnapshotModel:
    """Store the session's current derived state; write-once."""
    row = await session.get(ImportSessionModel, import_session_id, populate_existing=True)
    if row is None:
        raise NotFoundError(f"Import session {import_session_id} not found")

    snapshot = SnapshotModel(
        import_session_id=import_session_id,
        reprocess_run_id=run_id,
        snapshot_type=SnapshotType(snapshot_type).value,
        counters={col: int(getattr(row, col) or 0) for col in COUNTER_COLUMNS},
        sample=await sample_records(session, import_session_id, sample_size),
    )
    session.add(snapshot)
    await session.flush()
    logger.debug(
        f"Captured {snapshot.snapshot_type} snapshot {snapshot.id} for session "
        f"{import_session_id} (run {run_id}, {len(snapshot.sample)} sampled)"
    )
    return snapshot


async def load_snapshot(
    session: AsyncSession, run_id: int, snapshot_type: SnapshotType
) -> SnapshotModel | None:
    return await session.scalar(
        select(SnapshotModel).where(
            SnapshotModel.reprocess_run_id == run_id,
            SnapshotModel.snapshot_type == SnapshotType(snapshot_type).value,
        )
    )


def diff_snapshots(before: SnapshotModel | SnapshotView, after: SnapshotModel | SnapshotView) -> SnapshotComparison:
    """Per-counter deltas (after - before) plus sampled tag/name changes."""
    before_view = SnapshotView.model_validate(before)
    after_view = SnapshotView.model_validate(after)

    names = sorted(set(before_view.counters) | set(after_view.counters))
    deltas = {
        name: after_view.counters.get(name, 0) - before_view.counters.get(name, 0)
        for name in names
    }

    earlier = {r.id: r for r in before_view.sample}
    tag_changes: list[RecordChange] = []
    name_changes: list[RecordChange] = []
    for record in after_view.sample:
        prior = earlier.get(record.id)
        if prior is None:
            continue
        if sorted(prior.tags) != sorted(record.tags):
            tag_changes.append(
                RecordChange(
                    id=record.id,
                    description=record.description,
                    before=sorted(prior.tags),
                    after=sorted(record.tags),
                )
            )
        if prior.normalized_name != record.normalized_name:
            name_changes.append(
                RecordChange(
                    id=record.id,
                    description=record.description,
                    before=prior.normalized_name,
                    after=record.normalized_name,
                )
            )

    return SnapshotComparison(
        before=before_view,
        after=after_view,
        deltas=deltas,
        tag_changes=tag_changes,
        name_changes=name_changes,
    )
