"""Mining session client."""

from mining_engine.client.backoff import ReconnectPolicy
from mining_engine.client.connection import RpcWorkSource
from mining_engine.client.events import EventChannel
from mining_engine.client.session import MiningSessionClient
from mining_engine.client.source import SubmitResult, WorkSource
from mining_engine.client.states import SessionEvent, SessionState, transition

__all__ = [
    "EventChannel",
    "MiningSessionClient",
    "ReconnectPolicy",
    "RpcWorkSource",
    "SessionEvent",
    "SessionState",
    "SubmitResult",
    "WorkSource",
    "transition",
]
