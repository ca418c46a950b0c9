"""Unit tests for the background task registry."""

from __future__ import annotations

import asyncio

import pytest

from ledgerpipe.core.tasks import BackgroundTasks


@pytest.mark.asyncio
async def test_spawn_and_wait():
    tasks = BackgroundTasks()
    release = asyncio.Event()

    async def job():
        await release.wait()
        return "done"

    task = tasks.spawn(7, job())
    await asyncio.sleep(0)
    assert tasks.is_active(7)
    assert tasks.active_sessions == [7]
    assert task.get_name() == "pipeline-session-7"

    release.set()
    await tasks.wait(7)

    assert task.result() == "done"
    assert not tasks.is_active(7)
    assert tasks.active_sessions == []


@pytest.mark.asyncio
async def test_unhandled_error_is_contained(caplog):
    tasks = BackgroundTasks()

    async def boom():
        raise RuntimeError("bug")

    task = tasks.spawn(1, boom())
    await tasks.wait()

    assert task.result() is None
    assert "Unhandled error in pipeline task for session 1" in caplog.text


@pytest.mark.asyncio
async def test_respawn_replaces_finishing_task():
    tasks = BackgroundTasks()
    first_release = asyncio.Event()
    second_release = asyncio.Event()

    async def job(event):
        await event.wait()

    first = tasks.spawn(3, job(first_release))
    second = tasks.spawn(3, job(second_release))

    first_release.set()
    await first
    # The finished first task must not unregister its replacement
    assert tasks.is_active(3)

    second_release.set()
    await tasks.wait()
    assert second.done()
    assert not tasks.is_active(3)


@pytest.mark.asyncio
async def test_shutdown_cancels_stragglers():
    tasks = BackgroundTasks()

    async def forever():
        await asyncio.Event().wait()

    task = tasks.spawn(9, forever())
    await asyncio.sleep(0)

    await tasks.shutdown(timeout=0.05)

    assert task.cancelled()


@pytest.mark.asyncio
async def test_wait_for_unknown_session_returns():
    await BackgroundTasks().wait(42)
