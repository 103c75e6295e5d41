"""
Test configuration and fixtures
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from mining_engine.client.source import SubmitResult, WorkSource
from mining_engine.config.models import Config
from mining_engine.constants import MAX_TARGET
from mining_engine.engine.models import Share, Work
from mining_engine.errors import WorkSourceConnectionError

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced wall clock whose sleep() advances time instantly."""

    def __init__(self, start: float = START_TIME):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay
        await asyncio.sleep(0)


def make_config(**sections: Dict[str, Any]) -> Config:
    """Config tuned for fast tests: difficulty 1 accepts almost any hash."""
    raw: Dict[str, Any] = {
        "mining": {
            "address": "test-miner",
            "threads": 1,
            "max_iterations": 100,
            "min_poll_interval": 5,
            "max_retries": 10,
            "stats_interval": 0,
        },
        "difficulty": {
            "initial_difficulty": 1,
            "min_difficulty": 1,
            "retarget_window": 10,
        },
    }
    for name, values in sections.items():
        raw.setdefault(name, {}).update(values)
    return Config.model_validate(raw)


class StubWorkSource(WorkSource):
    """Scriptable work source that records every call."""

    name = "stub"

    def __init__(self, clock: FakeClock, target: int = MAX_TARGET, difficulty: float = 1.0):
        self.clock = clock
        self.target = target
        self.difficulty = difficulty
        self.connect_failures = 0
        self.connects = 0
        self.disconnects: List[str] = []
        self.submitted: List[Share] = []
        self.results: List[SubmitResult] = []
        self.submit_gate: Optional[asyncio.Event] = None
        self._jobs = 0

    async def connect(self, address: str) -> str:
        self.connects += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise WorkSourceConnectionError("connection refused (is the work service running?)")
        return f"session-{self.connects}"

    async def get_work(self, session_id: str) -> Work:
        self._jobs += 1
        return Work(
            job_id=f"job-{self._jobs}",
            target=self.target,
            difficulty=self.difficulty,
            block_height=self._jobs,
            prev_hash="00" * 32,
            issued_at=self.clock(),
        )

    async def submit_share(self, session_id: str, share: Share) -> SubmitResult:
        self.submitted.append(share)
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.results:
            return self.results.pop(0)
        return SubmitResult(accepted=True)

    async def get_stats(self, session_id: str) -> Dict[str, Any]:
        return {"validShares": len(self.submitted)}

    async def disconnect(self, session_id: str) -> None:
        self.disconnects.append(session_id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return make_config()
