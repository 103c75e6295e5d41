"""Parallel hash workers.

Workers run in a thread pool and share only the current work (read-only)
and a per-search "found" flag. Worker ``i`` of ``n`` tries nonces
``start + i``, ``start + i + n``, ``start + i + 2n``... so ranges never
overlap.
"""

from __future__ import annotations

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from mining_engine.constants import HASH_WORKER_CHECK_INTERVAL
from mining_engine.engine.hashing import HashPrimitive, compute_hash
from mining_engine.engine.models import Work

NONCE_MASK = 0xFFFFFFFFFFFFFFFF


@dataclass(frozen=True)
class FoundNonce:
    """A nonce whose hash is below the work target."""

    nonce: int
    digest: bytes


@dataclass(frozen=True)
class SearchResult:
    """Outcome of one bounded search over a work unit."""

    found: Optional[FoundNonce]
    attempts: int
    next_nonce: int


class HashWorkerPool:
    """
    Runs bounded nonce searches across N threads.

    ``cancel()`` makes every worker stop within ``check_interval``
    attempts; the flag stays set until ``reset()``.
    """

    def __init__(
        self,
        hasher: HashPrimitive,
        threads: int = 1,
        check_interval: int = HASH_WORKER_CHECK_INTERVAL,
    ):
        self.hasher = hasher
        self.threads = max(1, threads)
        self._check_interval = max(1, check_interval)
        self._cancel = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self.total_attempts = 0

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.threads, thread_name_prefix="hash-worker"
            )
        return self._executor

    async def search(
        self, work: Work, address: str, start_nonce: int, max_iterations: int
    ) -> SearchResult:
        """
        Try up to ``max_iterations`` nonces for ``work``.

        Args:
            work: Work to hash against (read-only).
            address: Miner address mixed into the header.
            start_nonce: First nonce of this search.
            max_iterations: Total attempts across all workers.

        Returns:
            The lowest winning nonce (if any), attempts made and where the
            next search should start.
        """
        if self._cancel.is_set():
            return SearchResult(None, 0, start_nonce)

        found = threading.Event()
        per_worker = max(1, -(-max_iterations // self.threads))
        loop = asyncio.get_running_loop()
        executor = self._get_executor()

        futures = [
            loop.run_in_executor(
                executor,
                self._worker,
                work,
                address,
                (start_nonce + i) & NONCE_MASK,
                per_worker,
                found,
            )
            for i in range(self.threads)
        ]
        outcomes: List[tuple] = await asyncio.gather(*futures)

        attempts = sum(count for _, count in outcomes)
        self.total_attempts += attempts
        hits = [hit for hit, _ in outcomes if hit is not None]
        winner = min(hits, key=lambda h: h.nonce) if hits else None

        next_nonce = (start_nonce + per_worker * self.threads) & NONCE_MASK
        if winner is not None:
            next_nonce = (winner.nonce + 1) & NONCE_MASK
        return SearchResult(winner, attempts, next_nonce)

    def _worker(
        self,
        work: Work,
        address: str,
        nonce: int,
        iterations: int,
        found: threading.Event,
    ) -> tuple:
        attempts = 0
        for i in range(iterations):
            if i % self._check_interval == 0 and (found.is_set() or self._cancel.is_set()):
                break
            digest = compute_hash(self.hasher, work, address, nonce)
            attempts += 1
            if int.from_bytes(digest, "big") < work.target:
                found.set()
                return FoundNonce(nonce, digest), attempts
            nonce = (nonce + self.threads) & NONCE_MASK
        return None, attempts

    def cancel(self) -> None:
        self._cancel.set()

    def reset(self) -> None:
        self._cancel.clear()

    def shutdown(self) -> None:
        """Stop workers and release the thread pool."""
        self._cancel.set()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            logger.debug("Hash worker pool shut down")
