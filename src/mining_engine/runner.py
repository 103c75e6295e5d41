"""Foreground runners for the CLI: signal handling and top-level loops."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import TYPE_CHECKING, Any, Optional

from loguru import logger

from mining_engine.errors import ConnectionRetriesExhausted

if TYPE_CHECKING:
    from mining_engine.config.models import Config


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set ``stop_event`` on SIGINT/SIGTERM. Must be called inside the loop."""
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)
    else:
        # Windows doesn't support add_signal_handler
        def sync_signal_handler(signum: int, frame: Any) -> None:
            loop.call_soon_threadsafe(stop_event.set)

        signal.signal(signal.SIGINT, sync_signal_handler)
        signal.signal(signal.SIGTERM, sync_signal_handler)


async def run_miner(
    config: Config, local: bool = False, max_shares: Optional[int] = None
) -> int:
    """
    Run a mining session until interrupted.

    Args:
        config: Application configuration (with a mining section).
        local: Mine against an in-process service instead of the network.
        max_shares: Stop after this many accepted shares.

    Returns:
        Process exit code.
    """
    from mining_engine.client.connection import RpcWorkSource
    from mining_engine.client.session import MiningSessionClient
    from mining_engine.service.local import LocalWorkSource
    from mining_engine.service.pool import MiningService

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    if local:
        source = LocalWorkSource(MiningService(config))
        logger.info("Mining against in-process work service")
    else:
        source = RpcWorkSource(config.work_source)

    client = MiningSessionClient(config, source)
    run_task = asyncio.create_task(client.run(max_shares=max_shares))
    stop_task = asyncio.create_task(stop_event.wait())

    try:
        done, _ = await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if stop_task in done:
            logger.info("Shutdown requested, closing session...")
            await client.disconnect()
        state = await run_task
    except ConnectionRetriesExhausted as e:
        logger.error(str(e))
        return 1
    finally:
        stop_task.cancel()

    logger.info(
        f"Mining finished: {state.valid_share_count} accepted, "
        f"{state.rejected_share_count} rejected, reward={state.cumulative_reward:.10f}"
    )
    return 0


async def run_server(config: Config) -> int:
    """Run the work service until interrupted."""
    from mining_engine.service.server import run_service

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    logger.info(
        f"Starting work service (algorithm={config.service.algorithm}, "
        f"hash={config.service.hash_primitive})"
    )
    await run_service(config, stop_event)
    logger.info("Work service shutdown complete")
    return 0
