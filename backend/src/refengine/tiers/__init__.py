"""Reward tier ladder."""

from refengine.tiers.engine import ReferralStats, TierEvaluation, evaluate, progress_to_next, select_tier
from refengine.tiers.service import DEFAULT_TIERS, TierService

__all__ = [
    "DEFAULT_TIERS",
    "ReferralStats",
    "TierEvaluation",
    "TierService",
    "evaluate",
    "progress_to_next",
    "select_tier",
]
