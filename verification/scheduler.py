"""One-shot delayed tasks, such as the deferred welcome check after a join."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Final

log: Final = logging.getLogger("verify-bot")

TaskFactory = Callable[[], Awaitable[object]]


class ScheduledTask:
    def __init__(self, name: str, delay: float) -> None:
        self.name = name
        self.delay = delay
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()


class DelayedTaskScheduler:
    """Runs ``await factory()`` once, ``delay`` seconds from now.

    Failures inside the task are logged. Handles are kept until the task
    finishes so a scheduled task is never garbage-collected mid-flight.
    """

    def __init__(self) -> None:
        self._pending: set[ScheduledTask] = set()

    def schedule(
        self, delay: float, factory: TaskFactory, *, name: str = "delayed-task"
    ) -> ScheduledTask:
        loop = asyncio.get_running_loop()
        scheduled = ScheduledTask(name, delay)
        self._pending.add(scheduled)

        def _start() -> None:
            if scheduled.cancelled:
                self._pending.discard(scheduled)
                return
            scheduled._task = loop.create_task(self._run(scheduled, factory), name=name)

        scheduled._handle = loop.call_later(max(0.0, delay), _start)
        return scheduled

    async def _run(self, scheduled: ScheduledTask, factory: TaskFactory) -> None:
        try:
            await factory()
        except asyncio.CancelledError:
            log.debug("Scheduled task %s cancelled", scheduled.name)
            raise
        except Exception as exc:  # pylint: disable=broad-except
            log.exception("Scheduled task %s failed: %s", scheduled.name, exc)
        finally:
            self._pending.discard(scheduled)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def cancel_all(self) -> None:
        for scheduled in list(self._pending):
            scheduled.cancel()
        self._pending.clear()
