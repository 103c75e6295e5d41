"""Reference work-issuing service."""

from mining_engine.service.local import LocalWorkSource
from mining_engine.service.pool import MiningService, UnknownSessionError
from mining_engine.service.server import WorkServer, run_service

__all__ = [
    "LocalWorkSource",
    "MiningService",
    "UnknownSessionError",
    "WorkServer",
    "run_service",
]
