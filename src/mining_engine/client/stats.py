"""Periodic session statistics logging."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from mining_engine.utils import format_uptime

if TYPE_CHECKING:
    from mining_engine.client.session import MiningSessionClient


def log_session_stats(stats: dict) -> None:
    """Log a stats snapshot as a banner block."""
    logger.info("=" * 60)
    logger.info(
        f"MINING STATISTICS [{stats.get('sessionId') or '-'}] "
        f"(uptime: {format_uptime(stats.get('uptime', 0))})"
    )
    logger.info("=" * 60)
    logger.info(f"State: {stats.get('state')} | Address: {stats.get('address')}")
    logger.info(
        f"Hash rate: {stats.get('hashRate', 0.0):.2f} H/s | "
        f"Difficulty: {stats.get('currentDifficulty')} | "
        f"Human score: {stats.get('humanScore', 0.0):.1f}"
    )

    valid = stats.get("validShares", 0)
    rejected = stats.get("rejectedShares", 0)
    total = valid + rejected
    rate = (valid / total * 100) if total else 0.0
    logger.info(f"Shares: {valid} accepted / {rejected} rejected ({rate:.1f}% accepted)")

    reasons = stats.get("rejectionReasons") or {}
    if reasons:
        logger.info("Rejection reasons:")
        for reason, count in sorted(reasons.items(), key=lambda x: -x[1]):
            logger.info(f"  - {reason}: {count}")

    logger.info(f"Reward: {stats.get('totalReward', 0.0):.10f}")
    logger.info("=" * 60)


async def run_stats_logger(
    client: MiningSessionClient, interval: float, stop_event: asyncio.Event
) -> None:
    """
    Log session stats every ``interval`` seconds until ``stop_event`` is set.

    Args:
        client: Session to report on.
        interval: Seconds between reports.
        stop_event: Event to signal shutdown.
    """
    interval = max(1.0, interval)
    while not stop_event.is_set():
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass
        log_session_stats(client.get_stats())
