"""Recurring-charge detection using RapidFuzz merchant grouping.

Debits are grouped by merchant similarity (token_sort_ratio on the display
name), then each group is inspected for:
- subscriptions: at least ``min_occurrences`` charges on a weekly, monthly
  or yearly cadence
- zombies: subscriptions charged ``zombie_min_charges`` times or more at an
  unchanged amount (likely forgotten)
- price increases: subscriptions whose latest charge is larger than the one
  before it
- duplicates: two charges of the same amount to the same merchant within
  ``duplicate_window_days``
"""

from __future__ import annotations

from datetime import timedelta
from statistics import median

from rapidfuzz import fuzz

from ledgerpipe.enrichment.base import Detector
from ledgerpipe.pipeline.progress import ProgressCallback
from ledgerpipe.pipeline.types import DetectionCounters, LedgerRecord

# Accepted median gaps between charges, in days
CADENCES = {
    "weekly": (6, 8),
    "monthly": (26, 35),
    "yearly": (355, 375),
}


class RecurringChargeDetector(Detector):
    """Heuristic subscription / anomaly detector."""

    def __init__(
        self,
        similarity: int = 85,
        min_occurrences: int = 3,
        zombie_min_charges: int = 6,
        duplicate_window_days: int = 2,
    ):
        self.similarity = similarity
        self.min_occurrences = min_occurrences
        self.zombie_min_charges = zombie_min_charges
        self.duplicate_window = timedelta(days=duplicate_window_days)

    def group(self, records: list[LedgerRecord], progress: ProgressCallback | None = None) -> list[list[LedgerRecord]]:
        """Group debits by fuzzy merchant name."""
        groups: list[tuple[str, list[LedgerRecord]]] = []
        total = len(records)
        for idx, record in enumerate(records):
            if record.amount < 0:
                name = record.display_name.upper()
                for key, members in groups:
                    if fuzz.token_sort_ratio(name, key) >= self.similarity:
                        members.append(record)
                        break
                else:
                    groups.append((name, [record]))
            if progress is not None:
                progress(idx + 1, total)
        return [sorted(members, key=lambda r: (r.date, r.id)) for _, members in groups]

    def cadence(self, charges: list[LedgerRecord]) -> str | None:
        if len(charges) < self.min_occurrences:
            return None
        gaps = [(b.date - a.date).days for a, b in zip(charges, charges[1:])]
        typical = median(gaps)
        for name, (low, high) in CADENCES.items():
            if low <= typical <= high:
                return name
        return None

    async def detect_all(
        self, records: list[LedgerRecord], progress: ProgressCallback
    ) -> DetectionCounters:
        counters = DetectionCounters()

        for charges in self.group(records, progress):
            for a, b in zip(charges, charges[1:]):
                if a.amount == b.amount and (b.date - a.date) <= self.duplicate_window:
                    counters.duplicates_detected += 1

            if self.cadence(charges) is None:
                continue
            counters.subscriptions_found += 1

            amounts = [abs(c.amount) for c in charges]
            if amounts[-1] > amounts[-2]:
                counters.price_increases_detected += 1
            if len(charges) >= self.zombie_min_charges and len(set(amounts)) == 1:
                counters.zombies_detected += 1

        return counters
