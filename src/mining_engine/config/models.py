"""Pydantic configuration models with validation."""

from __future__ import annotations

import re
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from mining_engine.constants import (
    ACTIVE_SESSION_WINDOW,
    BACKOFF_INITIAL_DELAY,
    BACKOFF_MAX_DELAY,
    DEFAULT_WORK_MAX_AGE,
    EVENT_QUEUE_MAX_SIZE,
    HASH_RATE_PENALTY_THRESHOLD,
    MAX_ADDRESS_LENGTH,
    MAX_ITERATIONS_PER_WORK,
    MIN_POLL_INTERVAL,
    MIN_TIMING_SAMPLES,
    SESSION_CLEANUP_INTERVAL,
    SESSION_IDLE_TIMEOUT,
)


class WorkSourceConfig(BaseModel):
    """Connection settings for the remote work-issuing service."""

    host: str = Field(default="127.0.0.1", description="Service hostname or IP")
    port: int = Field(default=3334, ge=1, le=65535, description="Service port")
    ssl: bool = Field(default=False, description="Use SSL/TLS connection")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")


class MiningConfig(BaseModel):
    """Configuration for a mining session."""

    address: str = Field(..., description="Miner identity (payout address)")
    algorithm: str = Field(default="randomx", description="Reward algorithm")
    hash_primitive: str = Field(default="sha256d", description="Hash primitive name")
    threads: int = Field(default=1, ge=1, le=256, description="Parallel hash workers")
    max_iterations: int = Field(
        default=MAX_ITERATIONS_PER_WORK, ge=1, description="Hash attempts per work unit per poll"
    )
    min_poll_interval: float = Field(
        default=MIN_POLL_INTERVAL, ge=0, description="Minimum seconds between getWork calls"
    )
    backoff_initial: float = Field(
        default=BACKOFF_INITIAL_DELAY, gt=0, description="First reconnect delay in seconds"
    )
    backoff_max: float = Field(
        default=BACKOFF_MAX_DELAY, gt=0, description="Maximum reconnect delay in seconds"
    )
    # 10 retries = 1+2+4+8+16+30*5 seconds (~3 minutes) before giving up
    max_retries: int = Field(default=10, ge=1, description="Reconnect attempts before giving up")
    human_score: float = Field(
        default=100.0, ge=0, le=100, description="Initial human score from the identity provider"
    )
    network_daily_reward: float = Field(
        default=1000.0, ge=0, description="Network-wide daily reward used for the address cap"
    )
    distinct_addresses: int = Field(
        default=1, ge=1, description="Distinct participating addresses used for the address cap"
    )
    event_queue_size: int = Field(
        default=EVENT_QUEUE_MAX_SIZE, ge=1, description="Maximum buffered session events"
    )
    stats_interval: float = Field(
        default=900.0, ge=0, description="Seconds between stats log banners (0 disables)"
    )

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate the miner address is a printable identifier."""
        v = v.strip()
        if not v:
            raise ValueError("Miner address cannot be empty")
        if len(v) > MAX_ADDRESS_LENGTH:
            raise ValueError(f"Miner address must be {MAX_ADDRESS_LENGTH} characters or less")
        if not re.match(r"^[A-Za-z0-9._:-]+$", v):
            raise ValueError(
                "Miner address may only contain letters, digits, '.', '_', ':' and '-'"
            )
        return v

    @field_validator("algorithm", "hash_primitive")
    @classmethod
    def lowercase_name(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def validate_backoff(self) -> "MiningConfig":
        """Ensure the backoff ceiling is not below the first delay."""
        if self.backoff_max < self.backoff_initial:
            raise ValueError(
                f"backoff_max ({self.backoff_max}) must be >= backoff_initial ({self.backoff_initial})"
            )
        return self


class DifficultyConfig(BaseModel):
    """Configuration for difficulty retargeting."""

    initial_difficulty: float = Field(default=1000.0, gt=0, description="Starting difficulty")
    # 10s target matches the network's share cadence
    target_share_interval_ms: float = Field(
        default=10_000.0, gt=0, description="Desired interval between shares (ms)"
    )
    retarget_window: int = Field(default=10, ge=2, description="Shares per retarget period")
    min_difficulty: float = Field(default=1.0, gt=0, description="Lower difficulty bound")
    max_difficulty: float = Field(default=1e15, gt=0, description="Upper difficulty bound")
    hash_rate_penalty_threshold: float = Field(
        default=HASH_RATE_PENALTY_THRESHOLD,
        gt=1,
        description="Hash rate multiple of the average above which the squared penalty applies",
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> "DifficultyConfig":
        """Ensure min <= initial <= max."""
        if self.min_difficulty > self.max_difficulty:
            raise ValueError("min_difficulty must be <= max_difficulty")
        if not (self.min_difficulty <= self.initial_difficulty <= self.max_difficulty):
            raise ValueError(
                f"initial_difficulty {self.initial_difficulty} must lie within "
                f"[{self.min_difficulty}, {self.max_difficulty}]"
            )
        return self


class AntiBotConfig(BaseModel):
    """Configuration for anti-bot scoring."""

    timing_window: int = Field(default=100, ge=2, description="Submission times kept per submitter")
    min_samples: int = Field(
        default=MIN_TIMING_SAMPLES, ge=2, description="Samples needed before scoring"
    )


class AlgorithmRate(BaseModel):
    """Reference earning rate for one algorithm."""

    hardware: str = Field(default="cpu", description="Hardware class (cpu/gpu)")
    reference_hash_rate: float = Field(..., gt=0, description="H/s that earns daily_reward")
    daily_reward: float = Field(..., ge=0, description="Tokens per day at the reference rate")


class RewardsConfig(BaseModel):
    """Configuration for reward computation and caps."""

    base_reward_unit: float = Field(default=0.001, gt=0, description="Session cap base unit")
    algorithms: Dict[str, AlgorithmRate] = Field(
        default_factory=dict, description="Overrides/additions to the algorithm table"
    )


class ValidationConfig(BaseModel):
    """Configuration for share validation."""

    work_max_age: float = Field(
        default=DEFAULT_WORK_MAX_AGE, gt=0, description="Seconds before issued work goes stale"
    )
    enforce_rate_limit: bool = Field(default=True, description="Reject shares arriving too fast")
    verify_proof: bool = Field(
        default=True, description="Recompute share hashes server-side (invalid-proof rejection)"
    )


class ServiceConfig(BaseModel):
    """Configuration for the reference work-issuing service."""

    bind_host: str = Field(default="0.0.0.0", description="Address to bind to")
    bind_port: int = Field(default=3334, ge=0, le=65535, description="Port to listen on (0 picks a free port)")
    max_connections: int = Field(default=100, ge=1, description="Maximum concurrent connections")
    read_timeout: int = Field(default=600, ge=10, description="Client read timeout in seconds")
    hash_primitive: str = Field(default="sha256d", description="Hash primitive used to verify proofs")
    algorithm: str = Field(default="randomx", description="Algorithm used for reward rates")
    daily_emission: float = Field(
        default=1000.0, ge=0, description="Tokens emitted network-wide per day (address cap base)"
    )
    active_window: float = Field(
        default=ACTIVE_SESSION_WINDOW,
        gt=0,
        description="Seconds after its last share that a session counts as active",
    )
    session_idle_timeout: float = Field(
        default=SESSION_IDLE_TIMEOUT, gt=0, description="Seconds without a request before eviction"
    )
    cleanup_interval: float = Field(
        default=SESSION_CLEANUP_INTERVAL, ge=0, description="Seconds between idle sweeps (0 disables)"
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(default="INFO", description="Log level")
    file: Optional[str] = Field(default=None, description="Log file path")
    rotation: str = Field(default="50 MB", description="Log rotation size")
    retention: int = Field(default=10, ge=1, description="Number of rotated files to keep")
    format: str = Field(
        default="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {message}",
        description="Log message format",
    )
    audit_file: Optional[str] = Field(
        default=None, description="Separate log of accepted shares and reward credits"
    )
    colorize: Optional[bool] = Field(
        default=None, description="Colour console output (default: only on a terminal)"
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class Config(BaseModel):
    """Main configuration model."""

    work_source: WorkSourceConfig = Field(default_factory=WorkSourceConfig)
    mining: Optional[MiningConfig] = None
    difficulty: DifficultyConfig = Field(default_factory=DifficultyConfig)
    antibot: AntiBotConfig = Field(default_factory=AntiBotConfig)
    rewards: RewardsConfig = Field(default_factory=RewardsConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def validate_algorithms(self) -> "Config":
        """Ensure configured algorithms have a reward rate."""
        from mining_engine.engine.rewards import DEFAULT_ALGORITHMS

        known = set(DEFAULT_ALGORITHMS) | set(self.rewards.algorithms)
        names = [self.service.algorithm]
        if self.mining:
            names.append(self.mining.algorithm)
        for name in names:
            if name not in known:
                raise ValueError(f"Unknown algorithm '{name}'. Available: {sorted(known)}")
        return self
