"""Unit tests for the transfer matcher."""

from __future__ import annotations

from datetime import date

import pytest

from ledgerpipe.enrichment.matcher import TransferMatcher


@pytest.mark.asyncio
async def test_pairs_offsetting_amounts_within_window(make_record):
    records = [
        make_record("TRANSFER TO SAVINGS", "-500.00", date(2024, 1, 8)),
        make_record("TRANSFER FROM CHECKING", "500.00", date(2024, 1, 9)),
        make_record("ATM", "-60.00", date(2024, 1, 9)),
        make_record("PAYROLL", "2500.00", date(2024, 1, 15)),
        make_record("TRANSFER TO SAVINGS", "-500.00", date(2024, 1, 20)),
        make_record("LATE REFUND", "100.00", date(2024, 1, 30)),
        make_record("PURCHASE", "-100.00", date(2024, 1, 20)),
    ]
    progress: list[tuple[int, int]] = []

    matched, checked = await TransferMatcher(window_days=3).auto_match(
        1, records, lambda d, t: progress.append((d, t))
    )

    assert (matched, checked) == (2, 7)
    assert progress[-1] == (7, 7)


@pytest.mark.asyncio
async def test_closest_credit_wins(make_record):
    debit = make_record("MOVE", "-50.00", date(2024, 1, 10))
    far = make_record("IN", "50.00", date(2024, 1, 8))
    near = make_record("IN", "50.00", date(2024, 1, 11))
    other_debit = make_record("MOVE", "-50.00", date(2024, 1, 7))

    matched, _ = await TransferMatcher().auto_match(1, [other_debit, debit, far, near], lambda d, t: None)

    # other_debit takes the Jan 8 credit, debit the Jan 11 one
    assert matched == 4


@pytest.mark.asyncio
async def test_no_records():
    assert await TransferMatcher().auto_match(1, [], lambda d, t: None) == (0, 0)
