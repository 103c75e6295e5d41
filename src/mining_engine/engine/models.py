"""Core data types shared by the engine, the client and the service."""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from mining_engine.constants import MAX_REJECTION_REASONS, MAX_TARGET


def parse_target(value: Union[int, str]) -> int:
    """
    Parse a target from its wire form.

    Targets travel as hex strings (with or without ``0x``); plain ints are
    accepted for in-process use.

    Raises:
        ValueError: If the value is not a valid unsigned 256-bit integer.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid target: {value!r}")
    if isinstance(value, int):
        target = value
    elif isinstance(value, str):
        text = value.strip().lower().removeprefix("0x")
        if not text:
            raise ValueError("Target cannot be empty")
        target = int(text, 16)
    else:
        raise ValueError(f"Invalid target type: {type(value).__name__}")
    if target < 0 or target > MAX_TARGET:
        raise ValueError(f"Target out of range: {target:#x}")
    return target


def hash_to_int(hash_hex: str) -> int:
    """Interpret a hex digest as a big-endian unsigned integer."""
    return int(hash_hex.strip().lower().removeprefix("0x"), 16)


@dataclass(frozen=True)
class Work:
    """A unit of work issued by the work source. Immutable once issued."""

    job_id: str
    target: int
    difficulty: float
    block_height: int
    prev_hash: str
    issued_at: float = field(default_factory=time.time)

    def is_expired(self, max_age: float, now: Optional[float] = None) -> bool:
        """Check whether this work is older than ``max_age`` seconds."""
        now = time.time() if now is None else now
        return now - self.issued_at > max_age

    def to_rpc(self) -> Dict[str, Any]:
        """Convert to the ``mining.getWork`` result shape."""
        return {
            "jobId": self.job_id,
            "target": f"{self.target:064x}",
            "difficulty": self.difficulty,
            "blockHeight": self.block_height,
            "prevHash": self.prev_hash,
            "issuedAt": self.issued_at,
        }

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> Work:
        """
        Build a Work from a ``mining.getWork`` result.

        Raises:
            ValueError: If a required field is missing or malformed.
        """
        try:
            return cls(
                job_id=str(data["jobId"]),
                target=parse_target(data["target"]),
                difficulty=float(data["difficulty"]),
                block_height=int(data.get("blockHeight", 0)),
                prev_hash=str(data.get("prevHash", "")),
                issued_at=float(data.get("issuedAt") or time.time()),
            )
        except KeyError as e:
            raise ValueError(f"Work is missing field {e}") from e
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed work: {e}") from e


@dataclass(frozen=True)
class Share:
    """A candidate share, consumed exactly once by the validator."""

    job_id: str
    nonce: str
    hash: str
    submitted_at: float = field(default_factory=time.time)

    @property
    def hash_value(self) -> int:
        return hash_to_int(self.hash)


@dataclass(frozen=True)
class AntiBotScore:
    """
    Advisory automation score for a submitter.

    Recomputed on every share; never authoritative, only used to gate
    rewards and rates.
    """

    human_score: float
    timing_variance_sample: float
    proof_of_work_valid: bool = True


@dataclass
class SubmitterState:
    """Per-session state of one submitter. Discarded on disconnect."""

    address: str
    session_start_time: float = field(default_factory=time.time)
    valid_share_count: int = 0
    rejected_share_count: int = 0
    cumulative_reward: float = 0.0
    last_share_time: Optional[float] = None
    current_difficulty: float = 1.0
    human_score: float = 100.0
    rejection_reasons: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    @property
    def total_shares(self) -> int:
        return self.valid_share_count + self.rejected_share_count

    def record_accepted(self, now: float, reward: float) -> None:
        """Count an accepted share and credit its (already capped) reward."""
        self.valid_share_count += 1
        self.last_share_time = now
        if reward > 0:
            self.cumulative_reward += reward

    def record_rejected(self, reason: str) -> None:
        """Count a rejected share under its reason category."""
        self.rejected_share_count += 1
        if reason in self.rejection_reasons:
            self.rejection_reasons[reason] += 1
        elif len(self.rejection_reasons) < MAX_REJECTION_REASONS:
            self.rejection_reasons[reason] = 1
        else:
            self.rejection_reasons["other"] = self.rejection_reasons.get("other", 0) + 1

    def session_duration_ms(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return max(0.0, (now - self.session_start_time) * 1000.0)
