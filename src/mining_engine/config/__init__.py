"""Configuration module for the mining engine."""

from mining_engine.config.models import (
    AntiBotConfig,
    Config,
    DifficultyConfig,
    LoggingConfig,
    MiningConfig,
    RewardsConfig,
    ServiceConfig,
    ValidationConfig,
    WorkSourceConfig,
)
from mining_engine.config.loader import ConfigError, load_config, validate_config

__all__ = [
    "AntiBotConfig",
    "Config",
    "ConfigError",
    "DifficultyConfig",
    "LoggingConfig",
    "MiningConfig",
    "RewardsConfig",
    "ServiceConfig",
    "ValidationConfig",
    "WorkSourceConfig",
    "load_config",
    "validate_config",
]
