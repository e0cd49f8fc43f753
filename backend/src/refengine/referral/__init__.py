"""Referral codes, commissions and rewards."""

from refengine.referral.commission import CommissionPolicy, compute_purchase_reward, split_signup
from refengine.referral.service import (
    ProgramConfig,
    PurchaseEvent,
    ReferralService,
    load_program_config,
)

__all__ = [
    "CommissionPolicy",
    "ProgramConfig",
    "PurchaseEvent",
    "ReferralService",
    "compute_purchase_reward",
    "load_program_config",
    "split_signup",
]
