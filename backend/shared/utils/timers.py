"""
Cancellable one-shot and repeating timers on the running asyncio loop.

Every timer a ticker arms (pre-game countdown, recap interval, delayed
cleanup) is one of these, stored on the ticker state that owns it so the
registry can cancel it on any status change.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Coroutine, Optional

from shared.utils.logging import get_logger

logger = get_logger(__name__)


class CancellableTimer:
    """
    Wraps ``loop.call_later``. The callback runs on the loop thread and must be
    synchronous; callers that need async work spawn a task from it.

    A repeating timer re-arms itself before invoking the callback, so a
    callback that cancels its own timer stops further firing.
    """

    def __init__(
        self,
        delay_s: float,
        callback: Callable[[], None],
        *,
        repeat: bool = False,
        name: str = "timer",
    ) -> None:
        self.delay_s = max(0.0, delay_s)
        self.name = name
        self._callback = callback
        self._repeat = repeat
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        self.fire_count = 0

    def start(self) -> "CancellableTimer":
        if self._handle is not None or self._cancelled:
            raise RuntimeError(f"Timer {self.name!r} already started or cancelled")
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_s, self._fire)
        return self

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def active(self) -> bool:
        return self._handle is not None and not self._cancelled

    @property
    def repeat(self) -> bool:
        return self._repeat

    def _fire(self) -> None:
        if self._cancelled:
            return
        if self._repeat:
            loop = asyncio.get_running_loop()
            self._handle = loop.call_later(self.delay_s, self._fire)
        else:
            self._handle = None
        self.fire_count += 1
        try:
            self._callback()
        except Exception as exc:
            logger.error("timer_callback_failed", timer=self.name, error=str(exc), exc_info=True)


class BackgroundTasks:
    """
    Holds references to fire-and-forget tasks (workers, recap flushes,
    end-of-match messages) so they are not garbage collected mid-flight, and
    logs any exception they end with.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str = "") -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def drain(self) -> None:
        """Wait until every task, including ones spawned while waiting, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )
