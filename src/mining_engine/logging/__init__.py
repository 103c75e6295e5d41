"""Logging configuration."""

from mining_engine.logging.setup import setup_logging

__all__ = ["setup_logging"]
