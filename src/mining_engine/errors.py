"""Exception hierarchy for the mining engine.

Only ``ConnectionRetriesExhausted`` ever propagates out of a mining session.
Every other error is absorbed into the session counters and surfaced through
stats.
"""

from __future__ import annotations

from typing import Optional


class MiningError(Exception):
    """Base class for mining engine errors."""

    pass


class WorkSourceConnectionError(MiningError, ConnectionError):
    """Transient failure talking to the work-issuing service (retried with backoff)."""

    pass


class ConnectionRetriesExhausted(WorkSourceConnectionError):
    """Terminal connection failure after the configured retry budget."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Giving up after {attempts} connection attempts{detail}")


class StaleWorkError(MiningError):
    """Share references a superseded or expired job (triggers an immediate re-fetch)."""

    pass


class RateLimitedError(MiningError):
    """Share arrived faster than the submitter's allowed rate."""

    def __init__(self, message: str, retry_after: float = 0.0):
        super().__init__(message)
        self.retry_after = retry_after


class InvalidShareError(MiningError):
    """Share is permanently invalid for its nonce (counted, never retried)."""

    pass


class CapExceededError(MiningError):
    """
    A reward hit its session or address ceiling.

    Raised inside the reward accountant and absorbed there as a clamp; it is a
    normal gating outcome, never an error for the caller.
    """

    pass


class InvalidTransitionError(MiningError):
    """A session event is not valid in the current state."""

    pass
