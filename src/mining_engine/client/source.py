"""Work source interface used by the session client."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from mining_engine.engine.models import Share, Work


@dataclass(frozen=True)
class SubmitResult:
    """Result of ``mining.submitShare`` as seen by the client."""

    accepted: bool
    reward: Optional[float] = None
    new_difficulty: Optional[float] = None
    reason: Optional[str] = None

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> SubmitResult:
        """
        Build from a ``mining.submitShare`` result.

        Raises:
            ValueError: If the result is not an object or has bad numbers.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Malformed submit result: {data!r}")
        reward = data.get("reward")
        new_difficulty = data.get("newDifficulty")
        try:
            return cls(
                accepted=bool(data.get("accepted", False)),
                reward=float(reward) if reward is not None else None,
                new_difficulty=float(new_difficulty) if new_difficulty is not None else None,
                reason=str(data["reason"]) if data.get("reason") is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed submit result: {e}") from e


class WorkSource:
    """
    Base class for work-issuing services.

    Transport failures are raised as ``WorkSourceConnectionError``; the
    session client retries those with backoff.
    """

    name = "work-source"

    async def connect(self, address: str) -> str:
        """Open a session and return its id."""
        raise NotImplementedError

    async def get_work(self, session_id: str) -> Work:
        raise NotImplementedError

    async def submit_share(self, session_id: str, share: Share) -> SubmitResult:
        raise NotImplementedError

    async def get_stats(self, session_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    async def disconnect(self, session_id: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        """Release transport resources."""
        pass
