"""
Unit tests for ShareValidator rule ordering and outcomes.
"""

import pytest

from mining_engine.config.models import ValidationConfig
from mining_engine.constants import MAX_TARGET
from mining_engine.engine.models import Share, Work
from mining_engine.engine.validation import (
    RejectReason,
    ShareStatus,
    ShareValidator,
    rate_limit_interval,
)
from mining_engine.errors import InvalidShareError, RateLimitedError, StaleWorkError

T0 = 1_700_000_000.0
LOW_HASH = "00" * 32
HIGH_HASH = "ff" * 32


def _work(job_id="job-1", target=MAX_TARGET, difficulty=1.0, issued_at=T0):
    return Work(
        job_id=job_id,
        target=target,
        difficulty=difficulty,
        block_height=1,
        prev_hash="ab" * 32,
        issued_at=issued_at,
    )


def _share(job_id="job-1", nonce="0000000000000001", hash=LOW_HASH, at=T0 + 1):
    return Share(job_id=job_id, nonce=nonce, hash=hash, submitted_at=at)


@pytest.fixture
def validator():
    v = ShareValidator("test", ValidationConfig(work_max_age=120))
    v.issue(_work())
    return v


class TestRateLimitInterval:
    def test_difficulty_one_full_score(self):
        assert rate_limit_interval(1, 100) == pytest.approx(1.0)

    def test_low_score_slows_rate(self):
        assert rate_limit_interval(1, 0) == pytest.approx(2.0)

    def test_zero_allowance_floors_to_one_per_minute(self):
        assert rate_limit_interval(1000, 100) == pytest.approx(60.0)


class TestShareValidator:
    def test_accepts_valid_share(self, validator):
        verdict = validator.validate(_share(), "addr")
        assert verdict.status is ShareStatus.ACCEPTED
        assert verdict.accepted
        assert verdict.to_error() is None

    def test_unknown_job_is_stale(self, validator):
        verdict = validator.validate(_share(job_id="nope"), "addr")
        assert verdict.reason == RejectReason.STALE_JOB
        assert isinstance(verdict.to_error(), StaleWorkError)

    def test_one_generation_grace(self, validator):
        validator.issue(_work(job_id="job-2"))
        assert validator.validate(_share(job_id="job-1"), "addr").accepted

    def test_two_generations_back_is_stale(self, validator):
        validator.issue(_work(job_id="job-2"))
        validator.issue(_work(job_id="job-3"))
        verdict = validator.validate(_share(job_id="job-1"), "addr")
        assert verdict.reason == RejectReason.STALE_JOB
        assert validator.current_work.job_id == "job-3"

    def test_expired_work_is_stale(self, validator):
        verdict = validator.validate(_share(at=T0 + 121), "addr")
        assert verdict.reason == RejectReason.STALE_JOB

    def test_duplicate_nonce_accepted_at_most_once(self, validator):
        first = validator.validate(_share(at=T0 + 1), "addr")
        second = validator.validate(_share(at=T0 + 100), "addr")
        assert first.accepted
        assert second.reason == RejectReason.DUPLICATE_NONCE
        assert isinstance(second.to_error(), InvalidShareError)
        assert validator.accepted == 1

    def test_same_nonce_on_different_job_is_fine(self, validator):
        validator.validate(_share(at=T0 + 1), "addr")
        validator.issue(_work(job_id="job-2"))
        assert validator.validate(_share(job_id="job-2", at=T0 + 10), "addr").accepted

    def test_rate_limited_with_retry_after(self, validator):
        validator.validate(_share(nonce="01", at=T0 + 1), "addr")
        verdict = validator.validate(_share(nonce="02", at=T0 + 1.25), "addr")
        assert verdict.status is ShareStatus.REJECTED
        assert verdict.reason == RejectReason.RATE_LIMITED
        assert verdict.retry_after == pytest.approx(0.75)
        error = verdict.to_error()
        assert isinstance(error, RateLimitedError)
        assert error.retry_after == pytest.approx(0.75)

    def test_rate_limited_nonce_can_be_retried(self, validator):
        validator.validate(_share(nonce="01", at=T0 + 1), "addr")
        assert not validator.validate(_share(nonce="02", at=T0 + 1.5), "addr").accepted
        assert validator.validate(_share(nonce="02", at=T0 + 2.5), "addr").accepted

    def test_rate_limit_is_per_address(self, validator):
        validator.validate(_share(nonce="01", at=T0 + 1), "addr-a")
        assert validator.validate(_share(nonce="02", at=T0 + 1.1), "addr-b").accepted

    def test_first_share_never_rate_limited(self):
        v = ShareValidator("test")
        v.issue(_work(difficulty=1e9))
        assert v.validate(_share(), "addr").accepted

    def test_rate_limit_can_be_disabled(self):
        v = ShareValidator("test", ValidationConfig(enforce_rate_limit=False))
        v.issue(_work())
        v.validate(_share(nonce="01"), "addr")
        assert v.validate(_share(nonce="02"), "addr").accepted

    def test_hash_at_target_is_insufficient(self, validator):
        verdict = validator.validate(_share(hash=HIGH_HASH), "addr")
        assert verdict.reason == RejectReason.INSUFFICIENT_DIFFICULTY

    def test_zero_target_accepts_nothing(self):
        v = ShareValidator("test")
        v.issue(_work(target=0))
        for i, digest in enumerate((LOW_HASH, "01" + "00" * 31, "7f" * 32)):
            verdict = v.validate(_share(nonce=f"{i:016x}", hash=digest), "addr")
            assert verdict.reason == RejectReason.INSUFFICIENT_DIFFICULTY

    def test_max_target_accepts_ordinary_hashes(self):
        v = ShareValidator("test", ValidationConfig(enforce_rate_limit=False))
        v.issue(_work(target=MAX_TARGET))
        for i, digest in enumerate((LOW_HASH, "7f" * 32, "ff" * 31 + "fe")):
            assert v.validate(_share(nonce=f"{i:016x}", hash=digest), "addr").accepted

    def test_malformed_hash_is_insufficient(self, validator):
        verdict = validator.validate(_share(hash="not-hex"), "addr")
        assert verdict.reason == RejectReason.INSUFFICIENT_DIFFICULTY

    def test_insufficient_nonce_is_remembered(self, validator):
        validator.validate(_share(hash=HIGH_HASH), "addr")
        verdict = validator.validate(_share(hash=LOW_HASH, at=T0 + 5), "addr")
        assert verdict.reason == RejectReason.DUPLICATE_NONCE

    def test_stale_checked_before_duplicate(self, validator):
        validator.validate(_share(), "addr")
        verdict = validator.validate(_share(at=T0 + 500), "addr")
        assert verdict.reason == RejectReason.STALE_JOB

    def test_duplicate_checked_before_rate_limit(self, validator):
        validator.validate(_share(at=T0 + 1), "addr")
        verdict = validator.validate(_share(at=T0 + 1.1), "addr")
        assert verdict.reason == RejectReason.DUPLICATE_NONCE

    def test_proof_check_runs_last(self):
        v = ShareValidator("test", proof_check=lambda work, share: False)
        v.issue(_work())
        verdict = v.validate(_share(), "addr")
        assert verdict.reason == RejectReason.INVALID_PROOF
        assert v.invalid_proof_rejected == 1

        v.issue(_work(job_id="job-2", target=0))
        verdict = v.validate(_share(job_id="job-2"), "addr")
        assert verdict.reason == RejectReason.INSUFFICIENT_DIFFICULTY

    def test_clear_forgets_jobs(self, validator):
        validator.clear()
        assert validator.current_work is None
        assert validator.validate(_share(), "addr").reason == RejectReason.STALE_JOB

    def test_stats(self, validator):
        validator.validate(_share(), "addr")
        validator.validate(_share(job_id="x"), "addr")
        stats = validator.get_stats()
        assert stats["accepted"] == 1
        assert stats["stale_rejected"] == 1
        assert stats["tracked_jobs"] == 1
