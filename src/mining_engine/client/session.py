"""Mining session client: the protocol state machine."""

from __future__ import annotations

import asyncio
import dataclasses
import random
import time
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from loguru import logger

from mining_engine.client.backoff import ReconnectPolicy
from mining_engine.client.events import (
    ConnectionFailed,
    EventChannel,
    ShareFound,
    ShareResult,
    StateChanged,
    StatsUpdate,
    WorkReceived,
)
from mining_engine.client.hashing import HashWorkerPool
from mining_engine.client.source import SubmitResult, WorkSource
from mining_engine.client.states import SessionEvent, SessionState, can_get_work, transition
from mining_engine.client.stats import log_session_stats, run_stats_logger
from mining_engine.client.timers import SleepFunc, TimerKind, TimerScheduler
from mining_engine.engine.antibot import AntiBotScorer
from mining_engine.engine.hashing import HashPrimitive, format_nonce, get_hash_primitive
from mining_engine.engine.models import Share, SubmitterState, Work
from mining_engine.engine.rewards import DailyLedger, RewardAccountant
from mining_engine.engine.sink import LoggingSink, PersistenceSink, RewardEvent, ShareEvent
from mining_engine.engine.validation import RejectReason, ShareValidator
from mining_engine.errors import (
    ConnectionRetriesExhausted,
    InvalidTransitionError,
    WorkSourceConnectionError,
)

if TYPE_CHECKING:
    from mining_engine.config.models import Config


class MiningSessionClient:
    """
    Drives one mining session against a work source.

    Lifecycle::

        Disconnected -> Connecting -> Idle -> Mining -> Submitting -> Idle | Mining

    with Disconnected reachable from every state. All mutable session state
    lives on this object and is only touched from the event loop; hash
    workers see the current work read-only.

    Only :class:`ConnectionRetriesExhausted` escapes :meth:`run`. Rejections,
    rate limits and cap hits are counted in :attr:`state` and reported by
    :meth:`get_stats`.
    """

    def __init__(
        self,
        config: Config,
        source: WorkSource,
        hasher: Optional[HashPrimitive] = None,
        rng: Optional[random.Random] = None,
        sink: Optional[PersistenceSink] = None,
        sleep: Optional[SleepFunc] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the session client.

        Args:
            config: Application configuration; ``config.mining`` is required.
            source: Work source to mine against.
            hasher: Hash primitive (defaults to the configured one).
            rng: PRNG used to pick starting nonces.
            sink: Persistence sink for confirmed shares and rewards.
            sleep: Sleep used by timers (injectable for tests).
            clock: Wall-clock source.

        Raises:
            ValueError: If no mining section is configured.
        """
        if config.mining is None:
            raise ValueError("Mining configuration is required for a mining session")

        self.config = config
        self.mining = config.mining
        self.address = config.mining.address
        self._source = source
        self._rng = rng or random.Random()
        self._sink = sink or LoggingSink()
        self._clock = clock

        self._pool = HashWorkerPool(
            hasher or get_hash_primitive(self.mining.hash_primitive),
            threads=self.mining.threads,
        )
        self._timers = TimerScheduler(sleep)
        self._policy = ReconnectPolicy(
            self.mining.backoff_initial, self.mining.backoff_max, self.mining.max_retries
        )
        self._accountant = RewardAccountant(config.rewards)
        self._ledger = DailyLedger()
        self.events = EventChannel(self.mining.event_queue_size)

        self._state = SessionState.DISCONNECTED
        self._closed = False
        self._session_id: Optional[str] = None
        self._work: Optional[Work] = None
        self._next_nonce = 0
        self._last_poll: Optional[float] = None
        self._hash_attempts = 0
        self._hash_seconds = 0.0
        self.accepted_total = 0

        self.state = SubmitterState(address=self.address, human_score=self.mining.human_score)
        self._validator = ShareValidator("-", config.validation)
        self._scorer = AntiBotScorer(config.antibot)

    @property
    def session_state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def current_work(self) -> Optional[Work]:
        return self._work

    @property
    def hash_rate(self) -> float:
        """Measured local hash rate for this session (H/s)."""
        if self._hash_seconds <= 0:
            return 0.0
        return self._hash_attempts / self._hash_seconds

    @property
    def label(self) -> str:
        return self._session_id or "-"

    def _apply(self, event: SessionEvent) -> SessionState:
        old = self._state
        self._state = transition(old, event)
        if self._state is not old:
            logger.debug(f"[{self.label}] {old.value} -> {self._state.value} ({event.value})")
            self.events.publish(StateChanged(old, self._state))
        return self._state

    def _is_current(self, session_id: Optional[str]) -> bool:
        return self._state is not SessionState.DISCONNECTED and session_id == self._session_id

    async def connect(self) -> str:
        """
        Establish a session with the work source.

        Returns:
            The session id.

        Raises:
            WorkSourceConnectionError: If the work source is unreachable.
        """
        if self._state is not SessionState.DISCONNECTED:
            if self._session_id is not None:
                return self._session_id
            raise InvalidTransitionError(f"Cannot connect while {self._state.value}")

        self._apply(SessionEvent.CONNECT)
        try:
            session_id = await self._source.connect(self.address)
        except WorkSourceConnectionError:
            if self._state is SessionState.CONNECTING:
                self._apply(SessionEvent.CONNECT_FAILED)
            raise

        if self._state is not SessionState.CONNECTING:
            # disconnect() ran while the request was in flight
            await self._source.disconnect(session_id)
            raise WorkSourceConnectionError("Session closed while connecting")

        now = self._clock()
        self._session_id = session_id
        self.state = SubmitterState(
            address=self.address,
            session_start_time=now,
            human_score=self.mining.human_score,
        )
        self._validator = ShareValidator(session_id, self.config.validation)
        self._scorer = AntiBotScorer(self.config.antibot)
        self._work = None
        self._last_poll = None
        self._hash_attempts = 0
        self._hash_seconds = 0.0
        self._pool.reset()
        self._policy.reset()
        self._apply(SessionEvent.CONNECTED)

        logger.info(f"[{session_id}] Session established for {self.address}")
        return session_id

    async def get_work(self) -> Optional[Work]:
        """
        Fetch new work, honouring the minimum poll interval.

        Returns:
            The new work, or None if the session ended while waiting.

        Raises:
            InvalidTransitionError: If not in Idle or Mining.
            WorkSourceConnectionError: On transport failure.
        """
        if not can_get_work(self._state):
            raise InvalidTransitionError(f"Cannot get work while {self._state.value}")

        if self._last_poll is not None:
            wait = self.mining.min_poll_interval - (self._clock() - self._last_poll)
            if wait > 0:
                if not await self._timers.wait(TimerKind.POLL, wait):
                    return None

        session_id = self._session_id
        work = await self._source.get_work(session_id)
        self._last_poll = self._clock()
        if not self._is_current(session_id):
            return None

        self._work = work
        self._next_nonce = self._rng.getrandbits(48)
        # Local expiry counts from receipt; the service clock may be skewed
        self._validator.issue(dataclasses.replace(work, issued_at=self._last_poll))
        self.state.current_difficulty = work.difficulty
        self._apply(SessionEvent.WORK_RECEIVED)
        self.events.publish(WorkReceived(work))
        return work

    async def mine_once(self) -> Optional[Share]:
        """
        Run one bounded hashing pass over the current work.

        Returns:
            The share found (session now Submitting), or None if the pass
            was exhausted (session now Idle) or interrupted.
        """
        work = self._work
        if self._state is not SessionState.MINING or work is None:
            raise InvalidTransitionError(f"Cannot mine while {self._state.value}")

        session_id = self._session_id
        started = time.monotonic()
        result = await self._pool.search(
            work, self.address, self._next_nonce, self.mining.max_iterations
        )
        self._hash_attempts += result.attempts
        self._hash_seconds += time.monotonic() - started

        if not self._is_current(session_id) or self._work is not work:
            return None
        self._next_nonce = result.next_nonce

        if result.found is None:
            self._apply(SessionEvent.WORK_EXHAUSTED)
            return None

        share = Share(
            job_id=work.job_id,
            nonce=format_nonce(result.found.nonce),
            hash=result.found.digest.hex(),
            submitted_at=self._clock(),
        )
        self._apply(SessionEvent.SHARE_FOUND)
        self.events.publish(ShareFound(share, result.attempts))
        return share

    async def submit_share(self, share: Share) -> Optional[SubmitResult]:
        """
        Validate a share locally, then submit it.

        Local rate limiting waits out the interval and retries; any other
        local rejection is counted without contacting the work source.

        Returns:
            The submission result, or None if the session ended first.

        Raises:
            InvalidTransitionError: If not in Submitting.
            WorkSourceConnectionError: On transport failure.
        """
        if self._state is not SessionState.SUBMITTING:
            raise InvalidTransitionError(f"Cannot submit while {self._state.value}")

        session_id = self._session_id
        now = self._clock()
        verdict = self._validator.validate(share, self.address, self.state.human_score, now)
        while verdict.reason == RejectReason.RATE_LIMITED:
            logger.debug(f"[{session_id}] Rate limited, retrying in {verdict.retry_after:.1f}s")
            if not await self._timers.wait(TimerKind.RETRY_SUBMIT, verdict.retry_after):
                return None
            now = self._clock()
            share = dataclasses.replace(share, submitted_at=now)
            verdict = self._validator.validate(share, self.address, self.state.human_score, now)

        if not verdict.accepted:
            return self._on_rejected(share, verdict.reason or "rejected")

        result = await self._source.submit_share(session_id, share)
        if not self._is_current(session_id):
            logger.debug(f"[{session_id}] Discarding submit result after disconnect")
            return None

        if result.accepted:
            await self._on_accepted(share, result, now)
        else:
            self._on_rejected(share, result.reason or "rejected")
        self.events.publish(StatsUpdate(self.get_stats()))
        return result

    async def _on_accepted(self, share: Share, result: SubmitResult, now: float) -> None:
        state = self.state
        session_id = self.label

        since = state.last_share_time or state.session_start_time
        duration = max(0.0, now - since)
        score = self._scorer.observe(now)
        # The identity provider's score acts as a ceiling
        state.human_score = min(self.mining.human_score, score.human_score)

        if result.reward is not None:
            computed = result.reward
        else:
            computed = self._accountant.reward(
                self.mining.algorithm, self.hash_rate, duration, state.human_score
            )
        applied = self._accountant.credit(
            computed,
            session_reward=state.cumulative_reward,
            session_duration_ms=state.session_duration_ms(now),
            address_daily_reward=self._ledger.total(self.address, now),
            total_network_reward=self.mining.network_daily_reward,
            distinct_address_count=self.mining.distinct_addresses,
            label=session_id,
        )
        state.record_accepted(now, applied)
        if applied > 0:
            self._ledger.add(self.address, applied, now)
        if result.new_difficulty is not None:
            state.current_difficulty = result.new_difficulty
        self.accepted_total += 1

        # Transition first; disconnect() may run while the sink writes are awaited
        self.events.publish(ShareResult(share, True, reward=applied))
        self._apply(SessionEvent.SHARE_ACCEPTED)

        await self._persist(
            self._sink.record_share(
                ShareEvent(
                    session_id=session_id,
                    address=self.address,
                    job_id=share.job_id,
                    nonce=share.nonce,
                    hash=share.hash,
                    difficulty=state.current_difficulty,
                    timestamp=now,
                )
            )
        )
        if applied > 0:
            await self._persist(
                self._sink.record_reward(
                    RewardEvent(
                        session_id=session_id,
                        address=self.address,
                        amount=applied,
                        algorithm=self.mining.algorithm,
                        timestamp=now,
                    )
                )
            )

    async def _persist(self, write: Awaitable[None]) -> None:
        """Await a sink write; a failing sink is logged and mining continues."""
        try:
            await write
        except Exception as e:
            logger.error(f"[{self.label}] Persistence sink write failed: {e}")

    def _on_rejected(self, share: Share, reason: str) -> SubmitResult:
        self.state.record_rejected(reason)
        logger.info(f"[{self.label}] Share rejected: {reason} (job={share.job_id}, nonce={share.nonce})")
        self.events.publish(ShareResult(share, False, reason=reason))
        if reason == RejectReason.STALE_JOB:
            self._apply(SessionEvent.SHARE_STALE)
        else:
            self._apply(SessionEvent.SHARE_REJECTED)
        return SubmitResult(accepted=False, reason=reason)

    async def disconnect(self) -> None:
        """End the session. Idempotent."""
        self._closed = True
        await self._teardown(SessionEvent.DISCONNECT)

    async def _teardown(self, event: SessionEvent) -> None:
        self._pool.cancel()
        self._timers.cancel_all()
        if self._state is SessionState.DISCONNECTED:
            return

        session_id = self._session_id
        self._session_id = None
        self._work = None
        self._apply(event)

        if session_id is not None:
            stats = self.get_stats()
            stats["sessionId"] = session_id
            log_session_stats(stats)
            if event is SessionEvent.DISCONNECT:
                await self._source.disconnect(session_id)
                return
        await self._source.close()

    async def _connect_with_backoff(self) -> None:
        while not self._closed:
            try:
                await self.connect()
                return
            except WorkSourceConnectionError as e:
                if self._closed:
                    return
                self._policy.record_failure()
                if self._policy.exhausted:
                    logger.error(
                        f"Giving up on {self._source.name} after {self._policy.failures} attempts: {e}"
                    )
                    raise ConnectionRetriesExhausted(self._policy.failures, e) from e

                delay = self._policy.next_delay()
                attempt = self._policy.failures
                if attempt <= 2:
                    logger.info(f"{e} (attempt {attempt}), retrying in {delay:.0f}s")
                else:
                    logger.warning(f"{e} (attempt {attempt}), retrying in {delay:.0f}s")
                self.events.publish(ConnectionFailed(attempt, delay, str(e)))
                if not await self._timers.wait(TimerKind.RECONNECT, delay):
                    return

    async def _mine(self, max_shares: Optional[int]) -> None:
        while self._state is not SessionState.DISCONNECTED:
            if max_shares is not None and self.accepted_total >= max_shares:
                await self.disconnect()
                return

            if self._state is SessionState.IDLE:
                await self.get_work()
            elif self._state is SessionState.MINING:
                share = await self.mine_once()
                if share is not None:
                    await self.submit_share(share)
            else:
                raise InvalidTransitionError(f"Unexpected state in mining loop: {self._state.value}")

    async def run(self, max_shares: Optional[int] = None) -> SubmitterState:
        """
        Mine until :meth:`disconnect` is called or ``max_shares`` are accepted.

        Lost connections are re-established with exponential backoff.

        Returns:
            The final submitter state of the last session.

        Raises:
            ConnectionRetriesExhausted: If the retry budget runs out.
        """
        self._closed = False
        stop_event = asyncio.Event()
        stats_task = None
        if self.mining.stats_interval > 0:
            stats_task = asyncio.create_task(
                run_stats_logger(self, self.mining.stats_interval, stop_event)
            )

        try:
            while not self._closed:
                await self._connect_with_backoff()
                if self._closed:
                    break
                try:
                    await self._mine(max_shares)
                except WorkSourceConnectionError as e:
                    if self._closed:
                        break
                    logger.warning(f"[{self.label}] Connection lost: {e}")
                    await self._teardown(SessionEvent.CONNECTION_LOST)
        finally:
            stop_event.set()
            if stats_task is not None:
                await stats_task
            self._pool.shutdown()

        return self.state

    def get_stats(self) -> dict:
        """Local session statistics."""
        state = self.state
        return {
            "sessionId": self._session_id,
            "state": self._state.value,
            "address": self.address,
            "hashRate": self.hash_rate,
            "validShares": state.valid_share_count,
            "rejectedShares": state.rejected_share_count,
            "totalReward": state.cumulative_reward,
            "currentDifficulty": f"{state.current_difficulty:.6f}",
            "humanScore": state.human_score,
            "uptime": max(0.0, self._clock() - state.session_start_time),
            "rejectionReasons": dict(state.rejection_reasons),
            "validator": self._validator.get_stats(),
            "eventsDropped": self.events.dropped,
        }

    async def get_remote_stats(self) -> dict:
        """``mining.getStats`` as reported by the work source."""
        if self._session_id is None:
            return {}
        return await self._source.get_stats(self._session_id)
