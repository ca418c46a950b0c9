"""Unit tests for snapshot diffing."""

from __future__ import annotations

from ledgerpipe.models import SnapshotType, SnapshotView
from ledgerpipe.reprocess.snapshots import diff_snapshots


def _snapshot(snapshot_id: int, snapshot_type: SnapshotType, counters: dict, sample: list) -> SnapshotView:
    return SnapshotView(
        id=snapshot_id,
        import_session_id=1,
        reprocess_run_id=1,
        snapshot_type=snapshot_type,
        counters=counters,
        sample=sample,
    )


def test_deltas_cover_every_counter():
    before = _snapshot(1, SnapshotType.BEFORE, {"tagged_by_rule": 5, "tagged_fallback": 3}, [])
    after = _snapshot(
        2, SnapshotType.AFTER, {"tagged_by_rule": 7, "tagged_fallback": 1, "tagged_by_model": 2}, []
    )

    comparison = diff_snapshots(before, after)

    assert comparison.deltas == {"tagged_by_model": 2, "tagged_by_rule": 2, "tagged_fallback": -2}
    assert comparison.changed_counters == comparison.deltas


def test_unchanged_counters_have_zero_delta():
    counters = {"imported_count": 8, "skipped_count": 2}
    comparison = diff_snapshots(
        _snapshot(1, SnapshotType.BEFORE, counters, []),
        _snapshot(2, SnapshotType.AFTER, dict(counters), []),
    )

    assert comparison.deltas == {"imported_count": 0, "skipped_count": 0}
    assert comparison.changed_counters == {}


def test_sampled_tag_and_name_changes():
    before = _snapshot(
        1,
        SnapshotType.BEFORE,
        {},
        [
            {"id": 1, "description": "NETFLIX.COM", "normalized_name": "Netflix", "tags": ["Subscriptions"]},
            {"id": 2, "description": "SQ *CAFE", "normalized_name": None, "tags": ["Other"]},
            {"id": 3, "description": "GONE", "normalized_name": "Gone", "tags": []},
        ],
    )
    after = _snapshot(
        2,
        SnapshotType.AFTER,
        {},
        [
            {"id": 1, "description": "NETFLIX.COM", "normalized_name": "Netflix", "tags": ["Subscriptions"]},
            {"id": 2, "description": "SQ *CAFE", "normalized_name": "Cafe", "tags": ["Dining"]},
            {"id": 4, "description": "NEW", "normalized_name": "New", "tags": ["Other"]},
        ],
    )

    comparison = diff_snapshots(before, after)

    assert [(c.id, c.before, c.after) for c in comparison.tag_changes] == [(2, ["Other"], ["Dining"])]
    assert [(c.id, c.before, c.after) for c in comparison.name_changes] == [(2, None, "Cafe")]
