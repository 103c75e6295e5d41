"""YAML configuration loading."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from mining_engine.config.models import Config


class ConfigError(Exception):
    """Raised when a configuration file cannot be loaded or is invalid."""

    pass


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_mapping(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        reason = "not found" if not path.exists() else "is not a file"
        raise ConfigError(f"Configuration file {reason}: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    if data is None:
        raise ConfigError(f"Configuration file is empty: {path}")
    if not isinstance(data, dict):
        raise ConfigError(
            f"Configuration must be a YAML mapping of sections, got {type(data).__name__}"
        )
    return data


def load_config(
    path: Union[str, Path], overrides: Optional[Dict[str, Any]] = None
) -> Config:
    """
    Load and validate configuration from a YAML file.

    Args:
        path: Path to the configuration file.
        overrides: Nested section values (e.g. from CLI flags) merged over the
            file before validation.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file is unreadable or fails validation. Validation
            failures list every offending ``section.field``.
    """
    data = _read_mapping(Path(path))
    if overrides:
        data = _merge(data, overrides)

    try:
        return Config.model_validate(data)
    except ValidationError as e:
        problems = [
            f"  - {'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigError("Configuration validation failed:\n" + "\n".join(problems)) from e


def validate_config(path: Union[str, Path]) -> Tuple[bool, str]:
    """
    Check a configuration file without starting anything.

    Returns:
        ``(True, summary)`` if valid, else ``(False, error message)``.
    """
    try:
        config = load_config(path)
    except ConfigError as e:
        return False, str(e)

    miner = config.mining.address if config.mining else "none"
    return (
        True,
        f"Configuration valid: miner={miner}, "
        f"work source={config.work_source.host}:{config.work_source.port}",
    )
