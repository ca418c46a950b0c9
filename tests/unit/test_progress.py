"""Unit tests for the progress event channel."""

from __future__ import annotations

import asyncio

import pytest

from ledgerpipe.pipeline.progress import ProgressChannel
from ledgerpipe.pipeline.types import Phase, ProgressEvent


@pytest.mark.asyncio
async def test_events_applied_in_posting_order():
    seen: list[ProgressEvent] = []

    async def sink(event):
        await asyncio.sleep(0)
        seen.append(event)

    async with ProgressChannel(sink) as channel:
        tag = channel.reporter(Phase.TAG)
        match = channel.reporter(Phase.MATCH)
        for i in range(1, 4):
            tag(i, 3)
        match(1, 1)
        await channel.drain()
        assert [(e.phase, e.current) for e in seen] == [
            (Phase.TAG, 1),
            (Phase.TAG, 2),
            (Phase.TAG, 3),
            (Phase.MATCH, 1),
        ]

    assert channel.applied == 4


@pytest.mark.asyncio
async def test_drain_waits_for_slow_sink():
    release = asyncio.Event()
    applied: list[int] = []

    async def sink(event):
        await release.wait()
        applied.append(event.current)

    async with ProgressChannel(sink) as channel:
        channel.reporter(Phase.NORMALIZE)(1, 2)
        drain = asyncio.create_task(channel.drain())
        await asyncio.sleep(0.01)
        assert not drain.done()

        release.set()
        await drain
        assert applied == [1]


@pytest.mark.asyncio
async def test_sink_errors_are_dropped_not_raised():
    async def sink(event):
        if event.current == 2:
            raise RuntimeError("database is locked")

    async with ProgressChannel(sink) as channel:
        report = channel.reporter(Phase.DETECT)
        for i in range(1, 4):
            report(i, 3)
        await channel.drain()

    assert channel.applied == 2
    assert channel.dropped == 1


@pytest.mark.asyncio
async def test_close_without_start_is_noop():
    channel = ProgressChannel(lambda event: asyncio.sleep(0))

    await channel.close()
