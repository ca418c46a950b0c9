"""Progress event channel between collaborators and the session tracker.

Collaborators get a plain ``(done, total)`` callable that only enqueues a
``ProgressEvent``; a single consumer task applies events to the tracker in
the order they were posted. The orchestrator drains the channel at every
phase boundary so a phase's last progress write lands before its duration.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ledgerpipe.pipeline.types import Phase, ProgressEvent

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], Awaitable[object]]
ProgressCallback = Callable[[int, int], None]


class ProgressChannel:
    """Ordered, single-consumer queue of progress events."""

    def __init__(self, sink: ProgressSink):
        self._sink = sink
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        self._consumer: asyncio.Task | None = None
        self.applied = 0
        self.dropped = 0

    async def __aenter__(self) -> ProgressChannel:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self._consume(), name="progress-consumer")

    def reporter(self, phase: Phase) -> ProgressCallback:
        """Callback handed to a collaborator for one phase."""

        def report(done: int, total: int) -> None:
            self._queue.put_nowait(ProgressEvent(phase=phase, current=done, total=total))

        return report

    async def drain(self) -> None:
        """Wait until every event posted so far has been applied."""
        await self._queue.join()

    async def close(self) -> None:
        if self._consumer is None:
            return
        self._queue.put_nowait(None)
        await self._consumer
        self._consumer = None

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if event is None:
                    return
                await self._sink(event)
                self.applied += 1
            except Exception as e:
                # A lost progress write never fails the pipeline
                self.dropped += 1
                logger.warning(f"Dropped progress event {event}: {e}")
            finally:
                self._queue.task_done()
