"""Unit tests: PeriodicTask and TaskGroup."""
import asyncio

import pytest

from dock_core.scheduler import PeriodicTask, TaskGroup

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_periodic_task_runs_until_cancelled():
    calls = []

    async def tick():
        calls.append(1)

    task = PeriodicTask("tick", 0.01, tick).start()
    await asyncio.sleep(0.08)
    assert task.running
    task.cancel()
    await task.wait()
    count = len(calls)
    assert count >= 2
    await asyncio.sleep(0.03)
    assert len(calls) == count
    assert task.running is False


@pytest.mark.asyncio
async def test_periodic_task_waits_before_first_tick():
    calls = []

    async def tick():
        calls.append(1)

    task = PeriodicTask("slow", 10.0, tick).start()
    await asyncio.sleep(0.02)
    task.cancel()
    await task.wait()
    assert calls == []


@pytest.mark.asyncio
async def test_failing_tick_is_logged_and_loop_survives(caplog):
    calls = []

    async def tick():
        calls.append(1)
        raise RuntimeError("boom")

    task = PeriodicTask("flaky", 0.01, tick).start()
    await asyncio.sleep(0.06)
    task.cancel()
    await task.wait()
    assert len(calls) >= 2
    assert "Periodic task flaky failed" in caplog.text


@pytest.mark.asyncio
async def test_task_can_cancel_itself_from_its_callback():
    """A tick that cancels its own task finishes normally and is not rerun."""
    calls = []
    holder = {}

    async def tick():
        calls.append(1)
        holder["task"].cancel()

    holder["task"] = PeriodicTask("once", 0.01, tick).start()
    await holder["task"].wait()
    assert calls == [1]


@pytest.mark.asyncio
async def test_task_group_replaces_and_cancels_by_name():
    group = TaskGroup()

    async def noop():
        pass

    first = group.start("ping", 10.0, noop)
    second = group.start("ping", 10.0, noop)
    await first.wait()
    assert first.running is False
    assert second.running
    assert group.names() == ["ping"]

    third = group.start("heartbeat", 10.0, noop)
    group.cancel("ping", "missing")
    await second.wait()
    assert group.names() == ["heartbeat"]

    group.cancel_all()
    await third.wait()
    assert group.names() == []
    assert third.running is False


@pytest.mark.asyncio
async def test_stop_all_joins_every_task_including_a_tick_in_progress():
    group = TaskGroup()
    entered = asyncio.Event()
    interrupted = []

    async def slow_tick():
        entered.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            interrupted.append(True)
            raise

    async def noop():
        pass

    busy = group.start("power", 0.01, slow_tick)
    idle = group.start("heartbeat", 10.0, noop)
    await asyncio.wait_for(entered.wait(), timeout=1)

    await group.stop_all()

    assert group.names() == []
    assert busy.running is False
    assert idle.running is False
    assert interrupted == [True]
    await group.stop_all()
