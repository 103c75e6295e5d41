"""Session events for UI and logging consumers.

The session publishes events into a bounded queue instead of invoking
callbacks, so a slow consumer can never stall hashing or submission.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Union

from loguru import logger

from mining_engine.client.states import SessionState
from mining_engine.constants import EVENT_QUEUE_MAX_SIZE
from mining_engine.engine.models import Share, Work


@dataclass(frozen=True)
class StateChanged:
    old: SessionState
    new: SessionState


@dataclass(frozen=True)
class WorkReceived:
    work: Work


@dataclass(frozen=True)
class ShareFound:
    share: Share
    attempts: int


@dataclass(frozen=True)
class ShareResult:
    """Outcome of one share submission."""

    share: Share
    accepted: bool
    reason: Optional[str] = None
    reward: float = 0.0


@dataclass(frozen=True)
class ConnectionFailed:
    attempt: int
    retry_in: float
    error: str


@dataclass(frozen=True)
class StatsUpdate:
    stats: dict


SessionEventMessage = Union[
    StateChanged, WorkReceived, ShareFound, ShareResult, ConnectionFailed, StatsUpdate
]


class EventChannel:
    """Bounded event queue that drops the oldest event when full."""

    def __init__(self, max_size: int = EVENT_QUEUE_MAX_SIZE):
        self._queue: asyncio.Queue[SessionEventMessage] = asyncio.Queue(maxsize=max_size)
        self.dropped = 0

    def __len__(self) -> int:
        return self._queue.qsize()

    def publish(self, event: SessionEventMessage) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(
                    f"Session event queue full ({self._queue.maxsize}), "
                    f"dropped {self.dropped} oldest event(s)"
                )
        self._queue.put_nowait(event)

    async def get(self) -> SessionEventMessage:
        return await self._queue.get()

    def drain(self) -> List[SessionEventMessage]:
        """Return and remove every buffered event."""
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events
