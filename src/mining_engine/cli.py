"""Command-line interface for the mining engine."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from loguru import logger

from mining_engine import __version__


def find_config_file() -> Optional[Path]:
    """
    Find the configuration file in common locations.

    Returns:
        Path to config file or None.
    """
    search_paths = [
        Path("config.yaml"),
        Path("config.yml"),
        Path.home() / ".config" / "mining-engine" / "config.yaml",
        Path("/etc/mining-engine/config.yaml"),
    ]

    if sys.platform == "win32":
        search_paths.append(Path.home() / "AppData" / "Local" / "mining-engine" / "config.yaml")

    for path in search_paths:
        if path.exists():
            return path

    return None


def _load(
    config_path: Optional[Path],
    log_level: Optional[str],
    overrides: Optional[Dict[str, Any]] = None,
):
    from mining_engine.config.loader import ConfigError, load_config
    from mining_engine.logging.setup import setup_logging

    if config_path is None:
        config_path = find_config_file()
        if config_path is None:
            click.echo("Error: No configuration file found", err=True)
            click.echo("Please specify a config file with -c/--config", err=True)
            sys.exit(1)

    click.echo(f"Using configuration: {config_path}")

    overrides = dict(overrides or {})
    if log_level:
        overrides["logging"] = {"level": log_level.upper()}

    try:
        config = load_config(config_path, overrides)
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    setup_logging(config.logging)
    return config


config_option = click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
log_level_option = click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override log level from config",
)


@click.group()
@click.version_option(version=__version__, prog_name="mining-engine")
def main():
    """Mining protocol client and reward engine."""
    pass


@main.command()
@config_option
@log_level_option
@click.option("--local", is_flag=True, help="Mine against an in-process work service")
@click.option("--shares", type=int, default=None, help="Stop after N accepted shares")
@click.option("--threads", type=int, default=None, help="Override hash worker threads")
def mine(
    config_path: Optional[Path],
    log_level: Optional[str],
    local: bool,
    shares: Optional[int],
    threads: Optional[int],
):
    """Start a mining session."""
    from mining_engine.runner import run_miner

    overrides = {"mining": {"threads": threads}} if threads is not None else None
    config = _load(config_path, log_level, overrides)
    if config.mining is None:
        click.echo("Configuration error: a 'mining' section with an address is required", err=True)
        sys.exit(1)

    try:
        code = asyncio.run(run_miner(config, local=local, max_shares=shares))
    except KeyboardInterrupt:
        click.echo("\nShutdown requested...")
        code = 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        code = 1
    sys.exit(code)


@main.command()
@config_option
@log_level_option
@click.option("--port", type=int, default=None, help="Override bind port")
def serve(config_path: Optional[Path], log_level: Optional[str], port: Optional[int]):
    """Run the reference work service."""
    from mining_engine.runner import run_server

    overrides = {"service": {"bind_port": port}} if port is not None else None
    config = _load(config_path, log_level, overrides)

    try:
        code = asyncio.run(run_server(config))
    except KeyboardInterrupt:
        click.echo("\nShutdown requested...")
        code = 0
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        code = 1
    sys.exit(code)


@main.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
def validate(config_path: Path):
    """Validate a configuration file."""
    from mining_engine.config.loader import load_config, validate_config
    from mining_engine.engine.rewards import RewardAccountant

    is_valid, message = validate_config(config_path)

    if not is_valid:
        click.echo(f"✗ {message}", err=True)
        sys.exit(1)

    click.echo(f"✓ {message}")
    config = load_config(config_path)

    if config.mining:
        click.echo("\nMining:")
        click.echo(f"  - address: {config.mining.address}")
        click.echo(f"  - algorithm: {config.mining.algorithm} ({config.mining.hash_primitive})")
        click.echo(f"  - threads: {config.mining.threads}")

    click.echo("\nAlgorithms:")
    for name, spec in sorted(RewardAccountant(config.rewards).algorithms.items()):
        click.echo(
            f"  - {name}: {spec.daily_reward}/day at {spec.reference_hash_rate:g} H/s ({spec.hardware})"
        )

    click.echo(f"\nService: {config.service.bind_host}:{config.service.bind_port}")


@main.command()
def init():
    """Create a sample configuration file."""
    dest_path = Path("config.yaml")
    if dest_path.exists():
        if not click.confirm(f"{dest_path} already exists. Overwrite?"):
            click.echo("Skipping config file creation.")
            return
    dest_path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    click.echo(f"Created {dest_path}")


SAMPLE_CONFIG = """# Mining Engine Configuration

work_source:
  host: "127.0.0.1"               # Work service host
  port: 3334
  ssl: false
  timeout: 30                     # Request timeout (seconds)

mining:
  address: "miner-address"        # Payout identity
  algorithm: "randomx"            # Reward rate table entry
  hash_primitive: "sha256d"       # sha256d or blake2b
  threads: 1                      # Parallel hash workers
  max_iterations: 10000           # Hash attempts per work unit per poll
  min_poll_interval: 5            # Seconds between getWork calls
  backoff_initial: 1              # First reconnect delay (seconds)
  backoff_max: 30                 # Reconnect delay ceiling (seconds)
  max_retries: 10                 # Reconnect attempts before giving up
  human_score: 100                # Initial score from the identity provider
  network_daily_reward: 1000      # Network-wide daily reward (address cap base)
  distinct_addresses: 1           # Participating addresses (address cap divisor)
  stats_interval: 900             # Seconds between stats banners (0 disables)

difficulty:
  initial_difficulty: 1000
  target_share_interval_ms: 10000
  retarget_window: 10             # Shares per retarget
  min_difficulty: 1
  max_difficulty: 1.0e+15
  hash_rate_penalty_threshold: 1.5

antibot:
  timing_window: 100              # Submission times kept per submitter
  min_samples: 3

rewards:
  base_reward_unit: 0.001
  # algorithms:
  #   randomx:
  #     hardware: "cpu"
  #     reference_hash_rate: 1000
  #     daily_reward: 0.00012

validation:
  work_max_age: 120               # Seconds before issued work goes stale
  enforce_rate_limit: true
  verify_proof: true              # Recompute share hashes on the service

service:
  bind_host: "0.0.0.0"
  bind_port: 3334
  max_connections: 100
  read_timeout: 600
  hash_primitive: "sha256d"
  algorithm: "randomx"
  daily_emission: 1000
  active_window: 300              # Seconds after the last share a session counts as active
  session_idle_timeout: 86400     # Evict sessions with no request for this long
  cleanup_interval: 1800          # Idle sweep period (0 disables)

logging:
  level: "INFO"                   # DEBUG, INFO, WARNING, ERROR
  file: null                      # Log file path (null for console only)
  rotation: "50 MB"
  retention: 10
  format: "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}"
  audit_file: null                # Share and reward audit log (null to disable)
"""
