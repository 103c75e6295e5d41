"""
Unit tests for reward computation, cap gating and the daily ledger.
"""

import pytest

from mining_engine.config.models import AlgorithmRate, RewardsConfig
from mining_engine.engine.rewards import DEFAULT_ALGORITHMS, DailyLedger, RewardAccountant
from mining_engine.errors import CapExceededError

DAY = 86_400
MIDNIGHT = 1_700_006_400.0  # 2023-11-15 00:00:00 UTC


class TestReward:
    def test_reference_rate_for_one_day(self):
        accountant = RewardAccountant()
        spec = DEFAULT_ALGORITHMS["randomx"]
        reward = accountant.reward("randomx", spec.reference_hash_rate, DAY, 100)
        assert reward == pytest.approx(spec.daily_reward)

    def test_scales_linearly_with_hash_rate(self):
        accountant = RewardAccountant()
        single = accountant.reward("kheavyhash", 1e12, 3600, 100)
        double = accountant.reward("kheavyhash", 2e12, 3600, 100)
        assert double == pytest.approx(2 * single)

    def test_human_score_multiplier(self):
        accountant = RewardAccountant()
        full = accountant.reward("randomx", 1000, 3600, 100)
        assert accountant.reward("randomx", 1000, 3600, 50) == pytest.approx(full * 0.5)

    def test_low_score_floored_at_tenth(self):
        accountant = RewardAccountant()
        full = accountant.reward("randomx", 1000, 3600, 100)
        assert accountant.reward("randomx", 1000, 3600, 0) == pytest.approx(full * 0.1)
        assert accountant.reward("randomx", 1000, 3600, 5) == pytest.approx(full * 0.1)

    def test_unknown_algorithm(self):
        with pytest.raises(ValueError, match="Unknown algorithm"):
            RewardAccountant().reward("scrypt", 1000, 60, 100)

    def test_zero_rate_or_duration(self):
        accountant = RewardAccountant()
        assert accountant.reward("randomx", 0, 60, 100) == 0
        assert accountant.reward("randomx", 1000, 0, 100) == 0

    def test_configured_algorithm_override(self):
        config = RewardsConfig(
            algorithms={"randomx": AlgorithmRate(reference_hash_rate=1, daily_reward=86_400)}
        )
        accountant = RewardAccountant(config)
        assert accountant.reward("randomx", 1, 1, 100) == pytest.approx(1.0)


class TestGate:
    def test_reward_below_caps_passes(self):
        accountant = RewardAccountant(RewardsConfig(base_reward_unit=10))
        decision = accountant.gate(1.0, 0.0, 10_800_000, 0.0, 1000, 1)
        assert decision.applied == pytest.approx(1.0)
        assert not decision.clamped

    def test_clamped_to_remaining_session_capacity(self):
        accountant = RewardAccountant(RewardsConfig(base_reward_unit=10))
        # cap at hour 3 is 200
        decision = accountant.gate(50.0, 180.0, 10_800_000, 0.0, 10_000, 1)
        assert decision.session_cap == pytest.approx(200)
        assert decision.applied == pytest.approx(20.0)
        assert decision.clamped

    def test_clamped_to_remaining_address_capacity(self):
        accountant = RewardAccountant(RewardsConfig(base_reward_unit=1000))
        decision = accountant.gate(50.0, 0.0, 10_800_000, 95.0, 1000, 1)
        assert decision.address_cap == pytest.approx(100)
        assert decision.applied == pytest.approx(5.0)

    def test_exhausted_session_cap_raises(self):
        accountant = RewardAccountant(RewardsConfig(base_reward_unit=10))
        with pytest.raises(CapExceededError):
            accountant.gate(1.0, 200.0, 10_800_000, 0.0, 1000, 1)

    def test_credit_absorbs_cap_hit(self):
        accountant = RewardAccountant(RewardsConfig(base_reward_unit=10))
        assert accountant.credit(1.0, 200.0, 10_800_000, 0.0, 1000, 1) == 0.0

    def test_zero_length_session_earns_nothing(self):
        accountant = RewardAccountant()
        assert accountant.credit(1.0, 0.0, 0, 0.0, 1000, 1) == 0.0

    def test_cumulative_never_exceeds_session_cap(self):
        accountant = RewardAccountant(RewardsConfig(base_reward_unit=1))
        total = 0.0
        duration_ms = 3_600_000
        for _ in range(100):
            total += accountant.credit(0.5, total, duration_ms, total, 10_000, 1)
        assert total == pytest.approx(10.0)


class TestDailyLedger:
    def test_totals_per_address(self):
        ledger = DailyLedger()
        ledger.add("a", 1.0, MIDNIGHT + 10)
        ledger.add("a", 2.0, MIDNIGHT + 20)
        ledger.add("b", 5.0, MIDNIGHT + 30)
        assert ledger.total("a", MIDNIGHT + 40) == pytest.approx(3.0)
        assert ledger.distinct_addresses(MIDNIGHT + 40) == 2

    def test_rolls_over_at_utc_midnight(self):
        ledger = DailyLedger()
        ledger.add("a", 1.0, MIDNIGHT + DAY - 1)
        assert ledger.total("a", MIDNIGHT + DAY) == 0.0

    def test_distinct_includes_current_address(self):
        ledger = DailyLedger()
        assert ledger.distinct_addresses(MIDNIGHT, include="a") == 1
        ledger.add("b", 1.0, MIDNIGHT)
        assert ledger.distinct_addresses(MIDNIGHT, include="a") == 2
