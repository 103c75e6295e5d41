"""Difficulty, anti-bot scoring, rewards and share validation."""

from mining_engine.engine.antibot import (
    AntiBotScorer,
    daily_address_cap,
    human_score,
    max_shares_per_minute,
    session_reward_cap,
)
from mining_engine.engine.difficulty import (
    DifficultyController,
    adjust_difficulty,
    difficulty_to_target,
    per_submitter_difficulty,
    target_to_difficulty,
)
from mining_engine.engine.models import AntiBotScore, Share, SubmitterState, Work
from mining_engine.engine.rewards import RewardAccountant
from mining_engine.engine.validation import RejectReason, ShareStatus, ShareValidator, ShareVerdict

__all__ = [
    "AntiBotScore",
    "AntiBotScorer",
    "DifficultyController",
    "RejectReason",
    "RewardAccountant",
    "Share",
    "ShareStatus",
    "ShareValidator",
    "ShareVerdict",
    "SubmitterState",
    "Work",
    "adjust_difficulty",
    "daily_address_cap",
    "difficulty_to_target",
    "human_score",
    "max_shares_per_minute",
    "per_submitter_difficulty",
    "session_reward_cap",
    "target_to_difficulty",
]
