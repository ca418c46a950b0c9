"""Registry for detached pipeline tasks.

The request handler returns as soon as a pipeline is spawned; the registry
holds the only strong reference to the running task (asyncio keeps weak
references) and lets tests, the CLI and shutdown wait for it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """One background task per import session, keyed by session id."""

    def __init__(self):
        self._active: dict[int, asyncio.Task] = {}
        self._all: set[asyncio.Task] = set()

    def spawn(self, session_id: int, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Start ``coro`` detached from the caller.

        A previous task for the same session may still be winding down after
        its session reached a terminal state; the new task replaces it here.
        """
        task = asyncio.create_task(
            self._guard(session_id, coro), name=f"pipeline-session-{session_id}"
        )
        self._active[session_id] = task
        self._all.add(task)
        task.add_done_callback(self._all.discard)
        return task

    async def _guard(self, session_id: int, coro: Coroutine[Any, Any, Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            logger.warning(f"Pipeline task for session {session_id} was cancelled")
            raise
        except Exception:
            # The orchestrator records failures itself; anything reaching here is a bug
            logger.error(
                f"Unhandled error in pipeline task for session {session_id}",
                exc_info=True,
            )
            return None
        finally:
            if self._active.get(session_id) is asyncio.current_task():
                self._active.pop(session_id, None)

    def is_active(self, session_id: int) -> bool:
        task = self._active.get(session_id)
        return task is not None and not task.done()

    @property
    def active_sessions(self) -> list[int]:
        return [sid for sid, task in self._active.items() if not task.done()]

    async def wait(self, session_id: int | None = None, timeout: float | None = None) -> None:
        """Wait for one session's task, or for every active task."""
        if session_id is not None:
            tasks = [self._active[session_id]] if session_id in self._active else []
        else:
            tasks = list(self._all)
        if not tasks:
            return
        await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout)

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Give running pipelines a grace period, then cancel the stragglers.

        Cancelled sessions stay in ``processing`` and are failed by the
        recovery sweep on the next start.
        """
        tasks = list(self._all)
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(f"Cancelled {len(pending)} pipeline task(s) on shutdown")
            await asyncio.gather(*pending, return_exceptions=True)
