"""Loguru-based logging configuration.

Share and reward events from :class:`~mining_engine.engine.sink.LoggingSink`
are bound with ``audit=True`` so they can be routed to a separate audit file.
"""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, List

from loguru import logger

if TYPE_CHECKING:
    from mining_engine.config.models import LoggingConfig

AUDIT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {message}"


def _is_audit(record: dict) -> bool:
    return bool(record["extra"].get("audit"))


def setup_logging(config: LoggingConfig) -> List[int]:
    """
    Configure Loguru based on the provided configuration.

    Args:
        config: Logging configuration object.

    Returns:
        Ids of the handlers that were added.
    """
    logger.remove()
    handlers = []

    colorize = config.colorize if config.colorize is not None else sys.stderr.isatty()
    handlers.append(
        logger.add(sys.stderr, level=config.level, format=config.format, colorize=colorize)
    )

    if config.file:
        handlers.append(
            logger.add(
                config.file,
                level=config.level,
                format=config.format,
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                encoding="utf-8",
            )
        )

    # Audit records are kept regardless of the console level
    if config.audit_file:
        handlers.append(
            logger.add(
                config.audit_file,
                level="DEBUG",
                format=AUDIT_FORMAT,
                filter=_is_audit,
                rotation=config.rotation,
                retention=config.retention,
                encoding="utf-8",
            )
        )

    logger.debug(
        f"Logging configured: level={config.level}, file={config.file}, "
        f"audit={config.audit_file}"
    )
    return handlers
