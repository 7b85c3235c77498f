"""Cancellable periodic asyncio tasks used for ticks, pings and heartbeats."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

LOG = logging.getLogger(__name__)

TickCb = Callable[[], Awaitable[None]]


async def _periodic_loop(
    name: str,
    callback: TickCb,
    interval_s: float,
    stop_event: asyncio.Event,
) -> None:
    """
    Wait interval_s, run callback, repeat until stop_event is set.
    A failing callback is logged and the loop keeps going.
    """
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_s)
            return
        except asyncio.TimeoutError:
            pass
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            LOG.exception("Periodic task %s failed", name)


class PeriodicTask:
    """
    One named periodic activity. cancel() is synchronous so teardown can stop
    every task before any awaited work; wait() lets callers join the task.
    """

    __slots__ = ("name", "interval_s", "_callback", "_task", "_stop_event")

    def __init__(self, name: str, interval_s: float, callback: TickCb) -> None:
        self.name = name
        self.interval_s = interval_s
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> "PeriodicTask":
        if self._task is None:
            self._task = asyncio.create_task(
                _periodic_loop(self.name, self._callback, self.interval_s, self._stop_event),
                name=self.name,
            )
        return self

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self) -> None:
        """Stop the task; a tick in progress is cancelled at its next await."""
        self._stop_event.set()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def wait(self) -> None:
        if self._task is None or self._task is asyncio.current_task():
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class TaskGroup:
    """Named PeriodicTasks owned by the coordinator, cancelled together on teardown."""

    def __init__(self) -> None:
        self._tasks: dict[str, PeriodicTask] = {}

    def start(self, name: str, interval_s: float, callback: TickCb) -> PeriodicTask:
        self.cancel(name)
        task = PeriodicTask(name, interval_s, callback).start()
        self._tasks[name] = task
        return task

    def cancel(self, *names: str) -> None:
        for name in names:
            task = self._tasks.pop(name, None)
            if task is not None:
                task.cancel()

    def cancel_all(self) -> None:
        self.cancel(*list(self._tasks))

    async def stop_all(self) -> None:
        """Cancel every task and wait for each to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            await task.wait()

    def names(self) -> list[str]:
        return list(self._tasks)
