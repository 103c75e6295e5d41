"""Anti-bot scoring and reward/rate caps.

The human score is a probabilistic heuristic built on submission timing
jitter. Automated submitters tend to produce near-constant intervals while
people (and real hardware under real conditions) show natural variation. It
is NOT a security guarantee: a determined bot can add jitter. The score is
only ever used to scale rates and rewards, never to make a hard
accept/reject decision on its own.
"""

from __future__ import annotations

import math
import statistics
from collections import deque
from typing import TYPE_CHECKING, Deque, Optional

from mining_engine.constants import (
    DAILY_ADDRESS_SHARE,
    HUMAN_SCORE_CV_MULTIPLIER,
    MAX_HUMAN_SCORE,
    MIN_HUMAN_SCORE,
    MIN_TIMING_SAMPLES,
    MS_PER_HOUR,
)
from mining_engine.engine.models import AntiBotScore

if TYPE_CHECKING:
    from mining_engine.config.models import AntiBotConfig


def human_score(timing_variance_ms: float, mean_interval_ms: float) -> float:
    """
    Score how human a submitter looks, in [0, 100].

    ``cv = timing_variance_ms / mean_interval_ms``; the score is
    ``clamp(cv * 200, 0, 100)``. A non-positive mean interval scores 0.
    """
    if mean_interval_ms <= 0 or not math.isfinite(mean_interval_ms):
        return MIN_HUMAN_SCORE
    if timing_variance_ms <= 0 or not math.isfinite(timing_variance_ms):
        return MIN_HUMAN_SCORE
    cv = timing_variance_ms / mean_interval_ms
    return max(MIN_HUMAN_SCORE, min(MAX_HUMAN_SCORE, cv * HUMAN_SCORE_CV_MULTIPLIER))


def max_shares_per_minute(difficulty: float, human_score: float) -> int:
    """
    Shares a submitter may land per minute.

    ``floor((60 / difficulty) * (0.5 + human_score / 200))``. The human
    multiplier spans [0.5, 1.0]. Non-positive difficulty yields 0.
    """
    if difficulty <= 0 or not math.isfinite(difficulty):
        return 0
    score = max(MIN_HUMAN_SCORE, min(MAX_HUMAN_SCORE, human_score))
    base_rate = 60.0 / difficulty
    multiplier = 0.5 + score / 200.0
    return max(0, math.floor(base_rate * multiplier))


def session_reward_cap(session_duration_ms: float, base_reward_unit: float) -> float:
    """
    Ceiling on reward for a session of the given length.

    ``base * log2(hours + 1) * 10``; logarithmic so marathon sessions earn
    progressively less per hour.
    """
    if session_duration_ms <= 0 or base_reward_unit <= 0:
        return 0.0
    hours = session_duration_ms / MS_PER_HOUR
    return base_reward_unit * math.log2(hours + 1) * 10


def daily_address_cap(total_network_reward: float, distinct_address_count: int) -> float:
    """
    Ceiling on one address's daily reward.

    ``(total * 0.1) / max(1, log2(count))``; the ceiling shrinks as more
    distinct addresses participate, blunting Sybil spreading.
    """
    if total_network_reward <= 0:
        return 0.0
    divisor = max(1.0, math.log2(distinct_address_count)) if distinct_address_count > 1 else 1.0
    return (total_network_reward * DAILY_ADDRESS_SHARE) / divisor


class TimingHistory:
    """Rolling window of one submitter's share submission times."""

    def __init__(self, window: int = 100):
        self._times: Deque[float] = deque(maxlen=max(2, window))

    def __len__(self) -> int:
        return len(self._times)

    def record(self, timestamp: float) -> None:
        self._times.append(timestamp)

    def intervals_ms(self) -> list[float]:
        times = list(self._times)
        return [(b - a) * 1000.0 for a, b in zip(times, times[1:])]


class AntiBotScorer:
    """
    Per-submitter scorer over a rolling timing history.

    The timing variance sample is the sample standard deviation of the
    inter-share intervals, which makes ``variance / mean`` the coefficient
    of variation.
    """

    def __init__(self, config: Optional[AntiBotConfig] = None):
        window = config.timing_window if config else 100
        self._min_samples = config.min_samples if config else MIN_TIMING_SAMPLES
        self._history = TimingHistory(window)

    @property
    def sample_count(self) -> int:
        return len(self._history)

    def observe(self, timestamp: float, proof_of_work_valid: bool = True) -> AntiBotScore:
        """Record a submission and recompute the score."""
        self._history.record(timestamp)
        return self.score(proof_of_work_valid)

    def score(self, proof_of_work_valid: bool = True) -> AntiBotScore:
        if len(self._history) < self._min_samples:
            # Not enough data, assume human
            return AntiBotScore(MAX_HUMAN_SCORE, 0.0, proof_of_work_valid)

        intervals = self._history.intervals_ms()
        mean = statistics.fmean(intervals)
        deviation = statistics.stdev(intervals) if len(intervals) > 1 else 0.0
        return AntiBotScore(
            human_score=human_score(deviation, mean),
            timing_variance_sample=deviation,
            proof_of_work_valid=proof_of_work_valid,
        )
