"""Reconnect backoff policy."""

from __future__ import annotations

from mining_engine.constants import BACKOFF_INITIAL_DELAY, BACKOFF_MAX_DELAY


class ReconnectPolicy:
    """
    Exponential backoff with a retry budget.

    The delay starts at ``initial_delay`` and doubles after each failed
    attempt, capped at ``max_delay``. Once ``max_retries`` attempts have
    failed the policy is exhausted and the caller should give up.
    """

    def __init__(
        self,
        initial_delay: float = BACKOFF_INITIAL_DELAY,
        max_delay: float = BACKOFF_MAX_DELAY,
        max_retries: int = 10,
    ):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.max_retries = max_retries
        self.failures = 0

    @property
    def exhausted(self) -> bool:
        return self.failures >= self.max_retries

    def record_failure(self) -> None:
        self.failures += 1

    def next_delay(self) -> float:
        """Delay before the next attempt, given the failures so far."""
        if self.failures <= 0:
            return 0.0
        return min(self.initial_delay * (2 ** (self.failures - 1)), self.max_delay)

    def reset(self) -> None:
        """Called after a successful connect."""
        self.failures = 0
