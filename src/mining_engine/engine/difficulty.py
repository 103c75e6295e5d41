"""Difficulty adjustment and target conversion."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Deque, List, Optional, Tuple

from loguru import logger

from mining_engine.constants import (
    HASH_RATE_PENALTY_THRESHOLD,
    MAX_ADJUSTMENT_RATIO,
    MAX_TARGET,
    MIN_ADJUSTMENT_RATIO,
)

if TYPE_CHECKING:
    from mining_engine.config.models import DifficultyConfig


def _is_valid(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


def adjust_difficulty(
    current_difficulty: float, actual_interval_ms: float, target_interval_ms: float
) -> float:
    """
    Retarget difficulty from observed vs. target share interval.

    The ratio ``target / actual`` is clamped to [0.5, 2.0], so a single
    anomalous timing sample can at most halve or double the difficulty.
    Malformed inputs return ``current_difficulty`` unchanged.

    Args:
        current_difficulty: Difficulty in effect for the last period.
        actual_interval_ms: Observed interval between shares.
        target_interval_ms: Desired interval between shares.

    Returns:
        New difficulty.
    """
    if not (
        _is_valid(current_difficulty)
        and _is_valid(actual_interval_ms)
        and _is_valid(target_interval_ms)
    ):
        return current_difficulty

    ratio = target_interval_ms / actual_interval_ms
    ratio = max(MIN_ADJUSTMENT_RATIO, min(MAX_ADJUSTMENT_RATIO, ratio))
    return current_difficulty * ratio


def per_submitter_difficulty(
    network_difficulty: float,
    submitter_hash_rate: float,
    average_hash_rate: float,
    threshold: float = HASH_RATE_PENALTY_THRESHOLD,
) -> float:
    """
    Personal difficulty for one submitter.

    A submitter hashing more than ``threshold`` times the population average
    gets ``network * ratio**2``, pushing specialised hardware toward a harder
    target instead of letting it dominate the reward pool.
    """
    if not (
        _is_valid(network_difficulty)
        and _is_valid(submitter_hash_rate)
        and _is_valid(average_hash_rate)
    ):
        return network_difficulty

    ratio = submitter_hash_rate / average_hash_rate
    if ratio > threshold:
        return network_difficulty * ratio ** 2
    return network_difficulty


def difficulty_to_target(difficulty: float) -> int:
    """
    Convert difficulty to target value.

    The target is the exclusive upper bound a share hash must be below.

    Raises:
        ValueError: If difficulty is zero or negative.
    """
    if difficulty <= 0:
        raise ValueError(f"Difficulty must be positive, got {difficulty}")
    if float(difficulty).is_integer():
        return MAX_TARGET // int(difficulty)
    # Float division rounds near 2**256, so clamp back into range
    return min(MAX_TARGET, int(MAX_TARGET / difficulty))


def target_to_difficulty(target: int) -> float:
    """Convert target to difficulty."""
    return MAX_TARGET / target if target > 0 else float("inf")


def estimate_hash_rate(records: List[Tuple[float, float]]) -> float:
    """
    Estimate hash rate from (timestamp, difficulty) share records.

    Each share at difficulty D represents roughly D hashes of work, so the
    rate is the summed difficulty over the covered duration. Returns 0.0 for
    fewer than two records or a window shorter than one second.
    """
    if len(records) < 2:
        return 0.0
    duration = records[-1][0] - records[0][0]
    if duration < 1:
        return 0.0
    return sum(difficulty for _, difficulty in records) / duration


@dataclass
class DifficultyAdjustment:
    """Record of one retarget."""

    timestamp: float
    old_difficulty: float
    new_difficulty: float
    actual_interval_ms: float
    target_interval_ms: float


class DifficultyController:
    """
    Windowed difficulty retargeting for one submitter.

    Records accepted-share timestamps and, once a full window is available,
    applies :func:`adjust_difficulty` to the mean observed interval, then
    clamps to the configured bounds.

    Not thread-safe; owned by a single session.
    """

    MAX_ADJUSTMENT_LOG = 100

    def __init__(self, config: Optional[DifficultyConfig] = None, name: str = "-"):
        self.name = name
        self._target_interval_ms = config.target_share_interval_ms if config else 10_000
        self._window = config.retarget_window if config else 10
        self._min_difficulty = config.min_difficulty if config else 1.0
        self._max_difficulty = config.max_difficulty if config else 1e15
        self._threshold = (
            config.hash_rate_penalty_threshold if config else HASH_RATE_PENALTY_THRESHOLD
        )
        self.difficulty: float = config.initial_difficulty if config else 1.0

        self._records: Deque[Tuple[float, float]] = deque(maxlen=self._window * 2)
        self._since_retarget = 0
        self.adjustments: Deque[DifficultyAdjustment] = deque(maxlen=self.MAX_ADJUSTMENT_LOG)

    def record_share(self, timestamp: float, difficulty: Optional[float] = None) -> None:
        """Record an accepted share for the next retarget."""
        self._records.append((timestamp, self.difficulty if difficulty is None else difficulty))
        self._since_retarget += 1

    @property
    def hash_rate(self) -> float:
        """Estimated hash rate over the recorded window."""
        return estimate_hash_rate(list(self._records))

    def retarget(self, now: Optional[float] = None) -> Optional[float]:
        """
        Retarget if a full window of shares has accumulated since the last one.

        Returns:
            The new difficulty, or None if no retarget happened.
        """
        if self._since_retarget < self._window or len(self._records) < 2:
            return None

        window = list(self._records)[-self._window:]
        if len(window) < 2:
            return None
        actual_ms = (window[-1][0] - window[0][0]) * 1000.0 / (len(window) - 1)

        old = self.difficulty
        new = adjust_difficulty(old, actual_ms, self._target_interval_ms)
        new = max(self._min_difficulty, min(self._max_difficulty, new))

        self._since_retarget = 0
        self.difficulty = new
        self.adjustments.append(
            DifficultyAdjustment(
                timestamp=time.time() if now is None else now,
                old_difficulty=old,
                new_difficulty=new,
                actual_interval_ms=actual_ms,
                target_interval_ms=self._target_interval_ms,
            )
        )
        logger.debug(
            f"[{self.name}] Difficulty retarget {old:.6g} -> {new:.6g} "
            f"(actual={actual_ms:.0f}ms, target={self._target_interval_ms:.0f}ms)"
        )
        return new

    def personal_difficulty(self, submitter_hash_rate: float, average_hash_rate: float) -> float:
        """Apply the high-hash-rate penalty on top of the current difficulty."""
        personal = per_submitter_difficulty(
            self.difficulty, submitter_hash_rate, average_hash_rate, self._threshold
        )
        return min(self._max_difficulty, personal)
