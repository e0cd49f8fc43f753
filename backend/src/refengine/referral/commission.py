"""Commission calculation.

Pure functions: given a qualifying event they return the money lines to
apply. Persistence lives in ``refengine.referral.service``.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol, Sequence

from refengine.settings import settings

CENT = Decimal("0.01")

REWARD_FIXED = "fixed"
REWARD_PERCENTAGE = "percentage"


def money(value: Any) -> Decimal:
    """Round to cents."""
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


class UplineMember(Protocol):
    email: str
    commission_override: Decimal | None


class PurchaseRewardConfig(Protocol):
    reward_type: str
    reward_value: Decimal
    minimum_purchase_amount: Decimal


@dataclass(frozen=True)
class CommissionPolicy:
    """Fixed signup commissions per level plus the new-account bonus."""

    level_amounts: tuple[Decimal, ...]
    referred_bonus: Decimal

    @classmethod
    def from_settings(cls) -> "CommissionPolicy":
        return cls(
            level_amounts=(
                money(settings.signup_commission_level1),
                money(settings.signup_commission_level2),
                money(settings.signup_commission_level3),
            ),
            referred_bonus=money(settings.referred_signup_bonus),
        )

    @property
    def max_levels(self) -> int:
        return len(self.level_amounts)


@dataclass(frozen=True)
class CommissionLine:
    level: int
    beneficiary_email: str
    amount: Decimal


@dataclass
class SignupSplit:
    """How one signup is paid out across the upline."""

    referred_email: str
    lines: list[CommissionLine] = field(default_factory=list)
    referred_bonus: Decimal = Decimal("0.00")

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0.00")) + self.referred_bonus

    def summary(self) -> dict[str, Any]:
        return {
            "total_paid": str(self.total),
            "levels": [
                {"level": line.level, "account": line.beneficiary_email, "amount": str(line.amount)}
                for line in self.lines
            ],
            "referred_bonus": str(self.referred_bonus),
        }


def split_signup(
    chain: Sequence[UplineMember],
    referred_email: str,
    policy: CommissionPolicy,
) -> SignupSplit:
    """Split a signup into one commission line per upline level.

    Args:
        chain: Upline, level-1 referrer first. Extra members past the
            policy's depth are ignored; a short chain just pays fewer levels.
        referred_email: The newly referred account
        policy: Commission amounts

    Returns:
        SignupSplit with one line per paid level and the referred bonus
    """
    split = SignupSplit(referred_email=referred_email, referred_bonus=policy.referred_bonus)
    for index, member in enumerate(chain[: policy.max_levels]):
        level = index + 1
        amount = policy.level_amounts[index]
        if level == 1 and member.commission_override is not None:
            amount = money(member.commission_override)
        split.lines.append(CommissionLine(level=level, beneficiary_email=member.email, amount=amount))
    return split


def compute_purchase_reward(amount_paid: Decimal, config: PurchaseRewardConfig) -> Decimal | None:
    """Referrer reward for a purchase.

    Returns:
        Reward in dollars, or None when the purchase is below the minimum
    """
    amount_paid = money(amount_paid)
    minimum = money(config.minimum_purchase_amount)
    if minimum and amount_paid < minimum:
        return None

    if config.reward_type == REWARD_PERCENTAGE:
        return money(amount_paid * Decimal(str(config.reward_value)) / Decimal("100"))
    if config.reward_type == REWARD_FIXED:
        return money(config.reward_value)
    raise ValueError(f"Unknown reward type: {config.reward_type}")
