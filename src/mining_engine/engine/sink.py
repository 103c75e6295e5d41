"""Persistence sink for accepted shares and reward credits.

The sink is write-only from the engine's point of view: nothing written here
is ever read back to make a protocol decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from loguru import logger


@dataclass(frozen=True)
class ShareEvent:
    """An accepted share, for audit."""

    session_id: str
    address: str
    job_id: str
    nonce: str
    hash: str
    difficulty: float
    timestamp: float


@dataclass(frozen=True)
class RewardEvent:
    """A confirmed reward credit, for balance accounting."""

    session_id: str
    address: str
    amount: float
    algorithm: str
    timestamp: float


class PersistenceSink:
    """Base sink; subclasses forward events to a store."""

    async def record_share(self, event: ShareEvent) -> None:
        raise NotImplementedError

    async def record_reward(self, event: RewardEvent) -> None:
        raise NotImplementedError


class LoggingSink(PersistenceSink):
    """
    Writes events to the log. Used when no store is configured.

    Records are bound with ``audit=True`` for the audit file sink.
    """

    def __init__(self):
        self._log = logger.bind(audit=True)

    async def record_share(self, event: ShareEvent) -> None:
        self._log.info(
            f"[{event.session_id}] Share accepted: job={event.job_id} "
            f"nonce={event.nonce} diff={event.difficulty:.6g}"
        )

    async def record_reward(self, event: RewardEvent) -> None:
        self._log.info(
            f"[{event.session_id}] Reward credited: {event.amount:.10f} "
            f"to {event.address} ({event.algorithm})"
        )


class MemorySink(PersistenceSink):
    """Keeps events in lists."""

    def __init__(self):
        self.shares: List[ShareEvent] = []
        self.rewards: List[RewardEvent] = []

    async def record_share(self, event: ShareEvent) -> None:
        self.shares.append(event)

    async def record_reward(self, event: RewardEvent) -> None:
        self.rewards.append(event)

    @property
    def total_rewarded(self) -> float:
        return sum(event.amount for event in self.rewards)
