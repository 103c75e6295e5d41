"""Reward computation and cap gating."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, Optional, Set

from loguru import logger

from mining_engine.constants import MIN_REWARD_MULTIPLIER, SECONDS_PER_DAY
from mining_engine.engine.antibot import daily_address_cap, session_reward_cap
from mining_engine.errors import CapExceededError

if TYPE_CHECKING:
    from mining_engine.config.models import RewardsConfig


@dataclass(frozen=True)
class AlgorithmSpec:
    """Reference earning rate for one hashing algorithm."""

    name: str
    hardware: str
    reference_hash_rate: float  # H/s that earns daily_reward
    daily_reward: float


# randomx: per 1 KH/s of CPU, kheavyhash: per 1 TH/s of GPU
DEFAULT_ALGORITHMS: Dict[str, AlgorithmSpec] = {
    "randomx": AlgorithmSpec("randomx", "cpu", 1_000.0, 0.00012),
    "kheavyhash": AlgorithmSpec("kheavyhash", "gpu", 1_000_000_000_000.0, 0.0015),
}


@dataclass(frozen=True)
class RewardDecision:
    """Outcome of gating a computed reward through both caps."""

    computed: float
    applied: float
    session_cap: float
    address_cap: float

    @property
    def clamped(self) -> bool:
        return self.applied < self.computed


@dataclass
class DailyLedger:
    """Per-address reward totals for the current UTC day."""

    day: str = ""
    totals: Dict[str, float] = field(default_factory=dict)

    def _roll(self, now: float) -> None:
        today = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d")
        if today != self.day:
            self.day = today
            self.totals = {}

    def total(self, address: str, now: float) -> float:
        self._roll(now)
        return self.totals.get(address, 0.0)

    def add(self, address: str, amount: float, now: float) -> None:
        self._roll(now)
        self.totals[address] = self.totals.get(address, 0.0) + amount

    def distinct_addresses(self, now: float, include: Optional[str] = None) -> int:
        """Addresses credited today (plus ``include``), never less than one."""
        self._roll(now)
        addresses: Set[str] = set(self.totals)
        if include:
            addresses.add(include)
        return max(1, len(addresses))


class RewardAccountant:
    """
    Converts accepted work into token reward and applies the caps.

    Stateless apart from configuration: callers pass the running totals in.
    """

    def __init__(self, config: Optional[RewardsConfig] = None):
        self.base_reward_unit = config.base_reward_unit if config else 0.001
        self.algorithms: Dict[str, AlgorithmSpec] = dict(DEFAULT_ALGORITHMS)
        if config:
            for name, rate in config.algorithms.items():
                self.algorithms[name] = AlgorithmSpec(
                    name=name,
                    hardware=rate.hardware,
                    reference_hash_rate=rate.reference_hash_rate,
                    daily_reward=rate.daily_reward,
                )

    def reward(
        self, algorithm: str, hash_rate: float, duration_seconds: float, human_score: float
    ) -> float:
        """
        Reward for ``duration_seconds`` of hashing at ``hash_rate``.

        The algorithm's reference daily rate is scaled linearly by
        ``hash_rate / reference_hash_rate``, converted to a per-second rate
        and multiplied by the duration, then by ``max(0.1, human_score/100)``.

        Raises:
            ValueError: If the algorithm is unknown.
        """
        spec = self.algorithms.get(algorithm)
        if spec is None:
            raise ValueError(
                f"Unknown algorithm '{algorithm}'. Available: {sorted(self.algorithms)}"
            )
        if hash_rate <= 0 or duration_seconds <= 0:
            return 0.0
        daily = spec.daily_reward * (hash_rate / spec.reference_hash_rate)
        per_second = daily / SECONDS_PER_DAY
        multiplier = max(MIN_REWARD_MULTIPLIER, human_score / 100.0)
        return per_second * duration_seconds * multiplier

    def gate(
        self,
        computed: float,
        session_reward: float,
        session_duration_ms: float,
        address_daily_reward: float,
        total_network_reward: float,
        distinct_address_count: int,
    ) -> RewardDecision:
        """
        Clamp a computed reward to the remaining session and address capacity.

        Raises:
            CapExceededError: If either cap has no capacity left.
        """
        session_cap = session_reward_cap(session_duration_ms, self.base_reward_unit)
        address_cap = daily_address_cap(total_network_reward, distinct_address_count)
        remaining_session = session_cap - session_reward
        remaining_address = address_cap - address_daily_reward

        if remaining_session <= 0:
            raise CapExceededError(f"Session cap {session_cap:.8f} reached")
        if remaining_address <= 0:
            raise CapExceededError(f"Daily address cap {address_cap:.8f} reached")

        applied = max(0.0, min(computed, remaining_session, remaining_address))
        return RewardDecision(computed, applied, session_cap, address_cap)

    def credit(
        self,
        computed: float,
        session_reward: float,
        session_duration_ms: float,
        address_daily_reward: float,
        total_network_reward: float,
        distinct_address_count: int,
        label: str = "-",
    ) -> float:
        """
        Gate a reward and return the amount to credit.

        A cap hit is a normal outcome: it is logged and credits zero.
        """
        try:
            decision = self.gate(
                computed,
                session_reward,
                session_duration_ms,
                address_daily_reward,
                total_network_reward,
                distinct_address_count,
            )
        except CapExceededError as e:
            logger.debug(f"[{label}] Reward {computed:.10f} withheld: {e}")
            return 0.0

        if decision.clamped:
            logger.debug(
                f"[{label}] Reward clamped {decision.computed:.10f} -> {decision.applied:.10f} "
                f"(session cap={decision.session_cap:.8f}, address cap={decision.address_cap:.8f})"
            )
        return decision.applied
