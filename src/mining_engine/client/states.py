"""Mining session state machine.

Transitions are a pure table lookup: ``transition(state, event)`` returns the
next state or raises :class:`InvalidTransitionError`. The session client owns
the only mutable copy of the current state.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple

from mining_engine.errors import InvalidTransitionError


class SessionState(Enum):
    """Session lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDLE = "idle"  # connected, no work
    MINING = "mining"
    SUBMITTING = "submitting"


class SessionEvent(Enum):
    """Inputs that drive the session state machine."""

    CONNECT = "connect"
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    WORK_RECEIVED = "work_received"
    WORK_EXHAUSTED = "work_exhausted"
    SHARE_FOUND = "share_found"
    SHARE_ACCEPTED = "share_accepted"
    SHARE_REJECTED = "share_rejected"
    SHARE_STALE = "share_stale"
    CONNECTION_LOST = "connection_lost"
    DISCONNECT = "disconnect"


_S = SessionState
_E = SessionEvent

TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], SessionState] = {
    (_S.DISCONNECTED, _E.CONNECT): _S.CONNECTING,
    (_S.CONNECTING, _E.CONNECTED): _S.IDLE,
    (_S.CONNECTING, _E.CONNECT_FAILED): _S.DISCONNECTED,
    (_S.IDLE, _E.WORK_RECEIVED): _S.MINING,
    (_S.MINING, _E.WORK_RECEIVED): _S.MINING,
    (_S.MINING, _E.WORK_EXHAUSTED): _S.IDLE,
    (_S.MINING, _E.SHARE_FOUND): _S.SUBMITTING,
    # Accepted: request new work right away
    (_S.SUBMITTING, _E.SHARE_ACCEPTED): _S.IDLE,
    # Rejected: keep hashing the same work
    (_S.SUBMITTING, _E.SHARE_REJECTED): _S.MINING,
    (_S.SUBMITTING, _E.SHARE_STALE): _S.IDLE,
}

# Failure and shutdown are reachable from every state
for _state in SessionState:
    TRANSITIONS[(_state, _E.CONNECTION_LOST)] = _S.DISCONNECTED
    TRANSITIONS[(_state, _E.DISCONNECT)] = _S.DISCONNECTED


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """
    Compute the next state.

    Args:
        state: Current state.
        event: Incoming event.

    Returns:
        The next state.

    Raises:
        InvalidTransitionError: If the event is not valid in ``state``.
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"Event '{event.value}' is not valid in state '{state.value}'"
        ) from None


def can_get_work(state: SessionState) -> bool:
    return state in (SessionState.IDLE, SessionState.MINING)
