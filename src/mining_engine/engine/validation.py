"""Share validation: stale jobs, duplicate nonces, rate limits and targets."""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Optional, Set

from loguru import logger

from mining_engine.constants import DEFAULT_WORK_MAX_AGE, MAX_NONCES_PER_JOB
from mining_engine.engine.antibot import max_shares_per_minute
from mining_engine.engine.models import Share, Work
from mining_engine.errors import (
    InvalidShareError,
    MiningError,
    RateLimitedError,
    StaleWorkError,
)

if TYPE_CHECKING:
    from mining_engine.config.models import ValidationConfig


class ShareStatus(Enum):
    """Lifecycle of a share inside the validator."""

    PENDING = "pending"
    VALIDATED = "validated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RejectReason:
    """Rejection reason strings (also the wire ``reason`` values)."""

    STALE_JOB = "stale-job"
    DUPLICATE_NONCE = "duplicate-nonce"
    RATE_LIMITED = "rate-limited"
    INSUFFICIENT_DIFFICULTY = "insufficient-difficulty"
    INVALID_PROOF = "invalid-proof"


@dataclass(frozen=True)
class ShareVerdict:
    """Terminal result of validating one share."""

    status: ShareStatus
    reason: Optional[str] = None
    retry_after: float = 0.0

    @property
    def accepted(self) -> bool:
        return self.status is ShareStatus.ACCEPTED

    def to_error(self) -> Optional[MiningError]:
        """The taxonomy error matching a rejection, or None if accepted."""
        if self.accepted:
            return None
        if self.reason == RejectReason.STALE_JOB:
            return StaleWorkError(self.reason)
        if self.reason == RejectReason.RATE_LIMITED:
            return RateLimitedError(self.reason, self.retry_after)
        return InvalidShareError(self.reason or "rejected")


def rate_limit_interval(difficulty: float, human_score: float) -> float:
    """
    Minimum seconds between accepted shares from one address.

    ``60 / max_shares_per_minute``; a computed allowance of zero is floored
    to one share per minute so high difficulties still admit shares.
    """
    allowed = max_shares_per_minute(difficulty, human_score)
    return 60.0 / max(1, allowed)


class ShareValidator:
    """
    Accepts or rejects shares against the currently issued work.

    Rules run in a fixed order and the first failure decides the reason:
    stale job, duplicate nonce, rate limit, insufficient difficulty. An
    optional proof check runs last.

    Thread Safety:
        NOT thread-safe. Each session owns its own validator and calls it
        from a single task.
    """

    def __init__(
        self,
        session_id: str,
        config: Optional[ValidationConfig] = None,
        proof_check: Optional[Callable[[Work, Share], bool]] = None,
    ):
        """
        Initialize the share validator.

        Args:
            session_id: Session identifier for logging.
            config: Validation configuration.
            proof_check: Optional callback re-deriving the share hash; a False
                result rejects the share as ``invalid-proof``.
        """
        self.session_id = session_id
        self._work_max_age = config.work_max_age if config else DEFAULT_WORK_MAX_AGE
        self._enforce_rate_limit = config.enforce_rate_limit if config else True
        self._proof_check = proof_check

        # Current generation first, then the one-generation grace entry
        self._jobs: OrderedDict[str, Work] = OrderedDict()
        self._current_job_id: Optional[str] = None
        self._seen_nonces: Dict[str, Set[str]] = {}
        self._last_accepted: Dict[str, float] = {}

        self.accepted: int = 0
        self.stale_rejected: int = 0
        self.duplicates_rejected: int = 0
        self.rate_limited: int = 0
        self.over_target_rejected: int = 0
        self.invalid_proof_rejected: int = 0

    @property
    def current_work(self) -> Optional[Work]:
        if self._current_job_id is None:
            return None
        return self._jobs.get(self._current_job_id)

    def job(self, job_id: str) -> Optional[Work]:
        """Look up a tracked job (current or grace generation)."""
        return self._jobs.get(job_id)

    def issue(self, work: Work) -> None:
        """
        Register newly issued work.

        The previous job stays valid for one more generation; anything older
        is dropped together with its nonce history.
        """
        if work.job_id == self._current_job_id:
            return
        self._jobs[work.job_id] = work
        self._seen_nonces.setdefault(work.job_id, set())
        self._current_job_id = work.job_id
        while len(self._jobs) > 2:
            old_id, _ = self._jobs.popitem(last=False)
            self._seen_nonces.pop(old_id, None)
        logger.debug(
            f"[{self.session_id}] Issued job {work.job_id} "
            f"(height={work.block_height}, diff={work.difficulty:.6g})"
        )

    def is_stale(self, job_id: str, now: float) -> bool:
        """True if ``job_id`` is untracked or its work has expired."""
        work = self._jobs.get(job_id)
        return work is None or work.is_expired(self._work_max_age, now)

    def clear(self) -> None:
        """Forget all jobs and nonce history (session reset)."""
        self._jobs.clear()
        self._seen_nonces.clear()
        self._current_job_id = None

    def validate(
        self,
        share: Share,
        address: str,
        human_score: float = 100.0,
        now: Optional[float] = None,
    ) -> ShareVerdict:
        """
        Validate a share.

        Args:
            share: The share to evaluate.
            address: Submitter identity (for the rate limit).
            human_score: Submitter's current human score.
            now: Evaluation time (defaults to the share's submission time).

        Returns:
            Terminal verdict; ACCEPTED or REJECTED with a reason.
        """
        now = share.submitted_at if now is None else now

        # 1. Current or immediately preceding work, and not expired
        if self.is_stale(share.job_id, now):
            self.stale_rejected += 1
            return ShareVerdict(ShareStatus.REJECTED, RejectReason.STALE_JOB)
        work = self._jobs[share.job_id]

        # 2. Nonce not seen for this job
        seen = self._seen_nonces.setdefault(share.job_id, set())
        if share.nonce in seen:
            self.duplicates_rejected += 1
            return ShareVerdict(ShareStatus.REJECTED, RejectReason.DUPLICATE_NONCE)

        # 3. Rate limit since the last accepted share from this address
        if self._enforce_rate_limit:
            last = self._last_accepted.get(address)
            if last is not None:
                interval = rate_limit_interval(work.difficulty, human_score)
                elapsed = now - last
                if elapsed < interval:
                    self.rate_limited += 1
                    return ShareVerdict(
                        ShareStatus.REJECTED,
                        RejectReason.RATE_LIMITED,
                        retry_after=interval - elapsed,
                    )

        # 4. Hash strictly below target
        try:
            hash_value = share.hash_value
        except ValueError:
            hash_value = None
        if hash_value is None or not hash_value < work.target:
            self.over_target_rejected += 1
            self._remember(share.job_id, share.nonce)
            return ShareVerdict(ShareStatus.REJECTED, RejectReason.INSUFFICIENT_DIFFICULTY)

        if self._proof_check is not None and not self._proof_check(work, share):
            self.invalid_proof_rejected += 1
            self._remember(share.job_id, share.nonce)
            logger.warning(
                f"[{self.session_id}] Share hash does not match its nonce "
                f"(job={share.job_id}, nonce={share.nonce})"
            )
            return ShareVerdict(ShareStatus.REJECTED, RejectReason.INVALID_PROOF)

        self._remember(share.job_id, share.nonce)
        self._last_accepted[address] = now
        self.accepted += 1
        return ShareVerdict(ShareStatus.ACCEPTED)

    def _remember(self, job_id: str, nonce: str) -> None:
        seen = self._seen_nonces.setdefault(job_id, set())
        if len(seen) < MAX_NONCES_PER_JOB:
            seen.add(nonce)

    def get_stats(self) -> dict:
        """Get validation statistics."""
        return {
            "accepted": self.accepted,
            "stale_rejected": self.stale_rejected,
            "duplicates_rejected": self.duplicates_rejected,
            "rate_limited": self.rate_limited,
            "over_target_rejected": self.over_target_rejected,
            "invalid_proof_rejected": self.invalid_proof_rejected,
            "tracked_jobs": len(self._jobs),
        }
