"""Timers delivered as messages.

A scheduled timer is a task that sleeps and then posts a :class:`TimerFired`
message to the scheduler's inbox. Cancelling bumps the generation so late
messages from old timers are ignored.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

SleepFunc = Callable[[float], Awaitable[None]]


class TimerKind(Enum):
    RECONNECT = "reconnect"
    POLL = "poll"
    RETRY_SUBMIT = "retry_submit"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TimerFired:
    """Message posted when a timer elapses (or all timers are cancelled)."""

    kind: TimerKind
    generation: int


class TimerScheduler:
    """
    Schedules timers for a single session loop.

    Only one coroutine may wait on the scheduler at a time.
    """

    def __init__(self, sleep: Optional[SleepFunc] = None):
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._inbox: Optional[asyncio.Queue[TimerFired]] = None
        self._tasks: Set[asyncio.Task] = set()
        self._generation = 0

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _queue(self) -> asyncio.Queue[TimerFired]:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        return self._inbox

    def schedule(self, kind: TimerKind, delay: float) -> int:
        """
        Post a ``kind`` message after ``delay`` seconds.

        Returns:
            The generation the timer belongs to.
        """
        message = TimerFired(kind, self._generation)
        task = asyncio.create_task(self._fire(message, max(0.0, delay)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return message.generation

    async def _fire(self, message: TimerFired, delay: float) -> None:
        await self._sleep(delay)
        self._queue().put_nowait(message)

    async def wait(self, kind: TimerKind, delay: float) -> bool:
        """
        Schedule a timer and wait for it.

        Returns:
            True if the timer fired, False if timers were cancelled first.
        """
        generation = self.schedule(kind, delay)
        inbox = self._queue()
        while True:
            message = await inbox.get()
            if message.kind is TimerKind.CANCELLED and message.generation > generation:
                return False
            if message.kind is kind and message.generation == generation:
                return True

    def cancel_all(self) -> None:
        """Cancel every pending timer and wake any waiter."""
        self._generation += 1
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        if self._inbox is not None:
            self._inbox.put_nowait(TimerFired(TimerKind.CANCELLED, self._generation))
