from __future__ import annotations

import asyncio
import logging

from voter_portal.services.background import TaskSupervisor


async def test_spawn_runs_without_being_awaited():
    supervisor = TaskSupervisor()
    done = asyncio.Event()

    async def work():
        done.set()

    supervisor.spawn(work(), name="work")
    await asyncio.wait_for(done.wait(), timeout=1)
    assert await supervisor.drain(1) == 0
    assert supervisor.pending == 0


async def test_failing_task_is_logged_not_raised(caplog):
    supervisor = TaskSupervisor()

    async def boom():
        raise RuntimeError("kaput")

    with caplog.at_level(logging.ERROR):
        supervisor.spawn(boom(), name="boom")
        assert await supervisor.drain(1) == 0

    assert "Background task boom failed" in caplog.text


async def test_concurrency_is_bounded():
    supervisor = TaskSupervisor(max_concurrency=2)
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for i in range(6):
        supervisor.spawn(work(), name=f"w{i}")
    await supervisor.drain(2)

    assert peak == 2


async def test_drain_cancels_stragglers():
    supervisor = TaskSupervisor()

    async def forever():
        await asyncio.sleep(60)

    supervisor.spawn(forever(), name="forever")
    assert await supervisor.drain(0.05) == 1
    assert supervisor.pending == 0
