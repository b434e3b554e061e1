"""Timer and background task tests."""
from __future__ import annotations

import asyncio

import pytest

from shared.utils.timers import BackgroundTasks, CancellableTimer


@pytest.mark.asyncio
async def test_one_shot_fires_once() -> None:
    fired: list[int] = []
    timer = CancellableTimer(0.01, lambda: fired.append(1), name="once").start()
    assert timer.active

    await asyncio.sleep(0.05)
    assert fired == [1]
    assert not timer.active


@pytest.mark.asyncio
async def test_cancelled_timer_never_fires() -> None:
    fired: list[int] = []
    timer = CancellableTimer(0.01, lambda: fired.append(1)).start()
    timer.cancel()
    await asyncio.sleep(0.03)
    assert fired == []
    with pytest.raises(RuntimeError):
        timer.start()


@pytest.mark.asyncio
async def test_repeating_timer_stops_when_callback_cancels_it() -> None:
    timer: CancellableTimer

    def tick() -> None:
        if timer.fire_count == 3:
            timer.cancel()

    timer = CancellableTimer(0.005, tick, repeat=True).start()
    await asyncio.sleep(0.08)
    assert timer.fire_count == 3
    assert not timer.active


@pytest.mark.asyncio
async def test_failing_callback_does_not_stop_repeat() -> None:
    def boom() -> None:
        raise ValueError("boom")

    timer = CancellableTimer(0.005, boom, repeat=True).start()
    await asyncio.sleep(0.04)
    timer.cancel()
    assert timer.fire_count >= 2


def test_negative_delay_is_clamped() -> None:
    assert CancellableTimer(-3, lambda: None).delay_s == 0.0


@pytest.mark.asyncio
async def test_drain_waits_for_tasks_spawned_while_draining() -> None:
    tasks = BackgroundTasks()
    done: list[str] = []

    async def child() -> None:
        await asyncio.sleep(0.01)
        done.append("child")

    async def parent() -> None:
        tasks.spawn(child(), name="child")
        done.append("parent")

    tasks.spawn(parent(), name="parent")
    await tasks.drain()
    assert done == ["parent", "child"]
    assert len(tasks) == 0


@pytest.mark.asyncio
async def test_failed_task_is_dropped() -> None:
    tasks = BackgroundTasks()

    async def fail() -> None:
        raise RuntimeError("nope")

    tasks.spawn(fail())
    await tasks.drain()
    assert len(tasks) == 0


@pytest.mark.asyncio
async def test_cancel_all() -> None:
    tasks = BackgroundTasks()
    task = tasks.spawn(asyncio.sleep(10))
    await tasks.cancel_all()
    assert task.cancelled()
