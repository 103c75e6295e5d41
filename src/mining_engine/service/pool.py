"""In-process work-issuing service.

Implements the ``mining.*`` RPC surface on top of the engine: issues work at a
per-submitter difficulty, validates shares, scores timing, credits capped
rewards and retargets difficulty.
"""

from __future__ import annotations

import asyncio
import random
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from loguru import logger

from mining_engine.constants import MAX_ADDRESS_LENGTH
from mining_engine.engine.antibot import AntiBotScorer
from mining_engine.engine.difficulty import DifficultyController, difficulty_to_target
from mining_engine.engine.hashing import (
    HashPrimitive,
    compute_hash,
    get_hash_primitive,
    normalize_nonce,
)
from mining_engine.engine.models import Share, SubmitterState, Work
from mining_engine.engine.rewards import DailyLedger, RewardAccountant
from mining_engine.engine.sink import LoggingSink, PersistenceSink, RewardEvent, ShareEvent
from mining_engine.engine.validation import RejectReason, ShareValidator
from mining_engine.errors import MiningError

if TYPE_CHECKING:
    from mining_engine.config.models import Config


class UnknownSessionError(MiningError):
    """Request references a session that does not exist."""

    pass


@dataclass
class ServiceSession:
    """Service-side state for one connected submitter."""

    session_id: str
    state: SubmitterState
    validator: ShareValidator
    difficulty: DifficultyController
    scorer: AntiBotScorer
    hash_rate: float = 0.0
    proof_failures: int = 0
    last_seen: float = 0.0


class MiningService:
    """
    Reference work-issuing service.

    All mutation happens on the event loop thread; the service is not
    thread-safe.
    """

    def __init__(
        self,
        config: Config,
        sink: Optional[PersistenceSink] = None,
        hasher: Optional[HashPrimitive] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the service.

        Args:
            config: Application configuration.
            sink: Persistence sink for accepted shares and rewards.
            hasher: Hash primitive used to verify proofs.
            rng: PRNG for chain-tip seeding.
            clock: Wall-clock source.
        """
        self.config = config
        self._sink = sink or LoggingSink()
        self._hasher = hasher or get_hash_primitive(config.service.hash_primitive)
        self._rng = rng or random.Random()
        self._clock = clock
        self._accountant = RewardAccountant(config.rewards)
        self._ledger = DailyLedger()
        self._sessions: Dict[str, ServiceSession] = {}
        self._job_seq = 0
        self.shares_accepted = 0
        self.total_rewarded = 0.0
        self.evicted = 0

        # Accepted shares extend a simple share chain
        self._height = 0
        self._tip = self._rng.getrandbits(256).to_bytes(32, "big").hex()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def _get(self, session_id: str, now: float) -> ServiceSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise UnknownSessionError(f"Unknown session: {session_id}")
        session.last_seen = now
        return session

    def _is_active(self, session: ServiceSession, now: float) -> bool:
        last = session.state.last_share_time
        return last is not None and now - last < self.config.service.active_window

    def _active_sessions(self, now: float) -> List[ServiceSession]:
        return [s for s in self._sessions.values() if self._is_active(s, now)]

    def _average_hash_rate(self, now: float) -> float:
        rates = [s.hash_rate for s in self._active_sessions(now) if s.hash_rate > 0]
        return sum(rates) / len(rates) if rates else 0.0

    async def connect(self, address: Optional[str] = None) -> dict:
        """``mining.connect``: open a session for ``address``."""
        if address is not None and not isinstance(address, str):
            raise TypeError(f"address must be a string, got {type(address).__name__}")
        address = (address or "anonymous").strip()[:MAX_ADDRESS_LENGTH] or "anonymous"
        session_id = uuid.uuid4().hex[:16]
        now = self._clock()

        def proof_check(work: Work, share: Share) -> bool:
            digest = compute_hash(self._hasher, work, address, int(share.nonce, 16))
            return digest.hex() == share.hash.lower().removeprefix("0x")

        controller = DifficultyController(self.config.difficulty, name=session_id)
        self._sessions[session_id] = ServiceSession(
            session_id=session_id,
            state=SubmitterState(
                address=address,
                session_start_time=now,
                current_difficulty=controller.difficulty,
            ),
            validator=ShareValidator(
                session_id,
                self.config.validation,
                proof_check=proof_check if self.config.validation.verify_proof else None,
            ),
            difficulty=controller,
            scorer=AntiBotScorer(self.config.antibot),
            last_seen=now,
        )
        logger.info(f"[{session_id}] Session opened for {address}")
        return {"sessionId": session_id}

    async def get_work(self, session_id: str) -> dict:
        """``mining.getWork``: issue a new job at the session's personal difficulty."""
        now = self._clock()
        session = self._get(session_id, now)

        difficulty = session.difficulty.personal_difficulty(
            session.hash_rate, self._average_hash_rate(now)
        )
        session.state.current_difficulty = difficulty

        self._job_seq += 1
        work = Work(
            job_id=f"{self._job_seq:08x}",
            target=difficulty_to_target(difficulty),
            difficulty=difficulty,
            block_height=self._height,
            prev_hash=self._tip,
            issued_at=now,
        )
        session.validator.issue(work)
        return work.to_rpc()

    async def submit_share(self, session_id: str, job_id: str, nonce: str, hash: str) -> dict:
        """``mining.submitShare``: validate, score, credit and retarget."""
        now = self._clock()
        session = self._get(session_id, now)
        state = session.state

        try:
            share = Share(
                job_id=str(job_id),
                nonce=normalize_nonce(nonce),
                hash=str(hash).strip().lower().removeprefix("0x"),
                submitted_at=now,
            )
        except (TypeError, ValueError):
            # An unparseable nonce still goes through the stale-job rule first
            if session.validator.is_stale(str(job_id), now):
                reason = RejectReason.STALE_JOB
            else:
                reason = RejectReason.INSUFFICIENT_DIFFICULTY
            state.record_rejected(reason)
            logger.debug(f"[{session_id}] Share rejected: {reason}, bad nonce {nonce!r}")
            return {"accepted": False, "reason": reason}

        verdict = session.validator.validate(share, state.address, state.human_score, now)
        if not verdict.accepted:
            state.record_rejected(verdict.reason)
            if verdict.reason == RejectReason.INVALID_PROOF:
                session.proof_failures += 1
                session.scorer.observe(now, proof_of_work_valid=False)
            logger.debug(f"[{session_id}] Share rejected: {verdict.reason} (job={job_id})")
            return {"accepted": False, "reason": verdict.reason}

        # Credit at the difficulty of the share's own job, which may be the grace generation
        share_work = session.validator.job(share.job_id)
        share_difficulty = share_work.difficulty if share_work else state.current_difficulty

        score = session.scorer.observe(now)
        state.human_score = score.human_score

        since = state.last_share_time or state.session_start_time
        duration = max(0.0, now - since)
        if duration > 0:
            session.hash_rate = share_difficulty / duration

        computed = self._accountant.reward(
            self.config.service.algorithm, session.hash_rate, duration, state.human_score
        )
        applied = self._accountant.credit(
            computed,
            session_reward=state.cumulative_reward,
            session_duration_ms=state.session_duration_ms(now),
            address_daily_reward=self._ledger.total(state.address, now),
            total_network_reward=self.config.service.daily_emission,
            distinct_address_count=self._ledger.distinct_addresses(now, include=state.address),
            label=session_id,
        )
        state.record_accepted(now, applied)
        if applied > 0:
            self._ledger.add(state.address, applied, now)
        self.shares_accepted += 1
        self.total_rewarded += applied

        self._height += 1
        self._tip = share.hash

        session.difficulty.record_share(now, share_difficulty)
        retargeted = session.difficulty.retarget(now)

        await self._sink.record_share(
            ShareEvent(
                session_id=session_id,
                address=state.address,
                job_id=share.job_id,
                nonce=share.nonce,
                hash=share.hash,
                difficulty=share_difficulty,
                timestamp=now,
            )
        )
        if applied > 0:
            await self._sink.record_reward(
                RewardEvent(
                    session_id=session_id,
                    address=state.address,
                    amount=applied,
                    algorithm=self.config.service.algorithm,
                    timestamp=now,
                )
            )

        result = {"accepted": True, "reward": applied}
        if retargeted is not None:
            new_difficulty = session.difficulty.personal_difficulty(
                session.hash_rate, self._average_hash_rate(now)
            )
            state.current_difficulty = new_difficulty
            result["newDifficulty"] = f"{new_difficulty:.6f}"
        return result

    async def get_stats(self, session_id: str) -> dict:
        """``mining.getStats``: session counters."""
        now = self._clock()
        session = self._get(session_id, now)
        state = session.state
        return {
            "hashRate": session.hash_rate,
            "validShares": state.valid_share_count,
            "rejectedShares": state.rejected_share_count,
            "totalReward": state.cumulative_reward,
            "currentDifficulty": f"{state.current_difficulty:.6f}",
            "humanScore": state.human_score,
            "uptime": max(0.0, now - state.session_start_time),
        }

    async def disconnect(self, session_id: str) -> dict:
        """``mining.disconnect``: drop the session. Unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            state = session.state
            logger.info(
                f"[{session_id}] Session closed for {state.address}: "
                f"{state.valid_share_count} accepted / {state.rejected_share_count} rejected, "
                f"reward={state.cumulative_reward:.10f}"
            )
        return {}

    async def get_pool_stats(self) -> dict:
        """
        ``mining.getPoolStats``: service-wide counters.

        Only sessions with a share inside the active window count towards
        ``activeMiners``, ``totalHashRate`` and the average difficulty.
        """
        now = self._clock()
        active = self._active_sessions(now)
        difficulty = (
            sum(s.state.current_difficulty for s in active) / len(active)
            if active
            else self.config.difficulty.initial_difficulty
        )
        return {
            "sessions": len(self._sessions),
            "activeMiners": len(active),
            "totalHashRate": sum(s.hash_rate for s in active),
            "averageHashRate": self._average_hash_rate(now),
            "difficulty": f"{difficulty:.6f}",
            "blockHeight": self._height,
            "sharesAccepted": self.shares_accepted,
            "totalRewarded": self.total_rewarded,
            "evictedSessions": self.evicted,
        }

    def cleanup_inactive(self) -> int:
        """
        Evict sessions that have made no request within the idle timeout.

        Returns:
            Number of sessions evicted.
        """
        now = self._clock()
        cutoff = now - self.config.service.session_idle_timeout
        idle = [sid for sid, s in self._sessions.items() if s.last_seen < cutoff]
        for session_id in idle:
            session = self._sessions.pop(session_id)
            logger.info(
                f"[{session_id}] Evicting idle session for {session.state.address} "
                f"(last request {now - session.last_seen:.0f}s ago)"
            )
        self.evicted += len(idle)
        return len(idle)

    async def run_cleanup(self, stop_event: asyncio.Event) -> None:
        """Sweep idle sessions every ``cleanup_interval`` seconds until ``stop_event`` is set."""
        interval = max(1.0, self.config.service.cleanup_interval)
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            evicted = self.cleanup_inactive()
            if evicted:
                stats = await self.get_pool_stats()
                logger.info(
                    f"Pool: {stats['sessions']} sessions, {stats['activeMiners']} active, "
                    f"{stats['totalHashRate']:.2f} H/s total"
                )
