"""Transfer matcher: pairs offsetting records within an import."""

from __future__ import annotations

from datetime import timedelta

from ledgerpipe.enrichment.base import Matcher
from ledgerpipe.pipeline.progress import ProgressCallback
from ledgerpipe.pipeline.types import LedgerRecord


class TransferMatcher(Matcher):
    """Matches a debit with a credit of the same absolute amount.

    Two records match when their amounts cancel out exactly and their dates
    are at most ``window_days`` apart. Each record joins at most one pair;
    the closest date wins, ties broken by record id.
    """

    def __init__(self, window_days: int = 3):
        self.window = timedelta(days=window_days)

    async def auto_match(
        self, session_id: int, records: list[LedgerRecord], progress: ProgressCallback
    ) -> tuple[int, int]:
        credits: dict = {}
        for record in records:
            if record.amount > 0:
                credits.setdefault(record.amount, []).append(record)

        paired: set[int] = set()
        total = len(records)
        for idx, record in enumerate(records):
            if record.amount < 0 and record.id not in paired:
                candidates = [
                    c
                    for c in credits.get(-record.amount, [])
                    if c.id not in paired and abs(c.date - record.date) <= self.window
                ]
                if candidates:
                    best = min(candidates, key=lambda c: (abs(c.date - record.date), c.id))
                    paired.update((record.id, best.id))
            progress(idx + 1, total)

        return len(paired), total
