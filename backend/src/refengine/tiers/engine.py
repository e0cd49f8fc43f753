"""Tier selection.

Tier state is derived from referral aggregates only, so any recompute
converges on the same answer no matter how often or when it runs.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol, Sequence

from refengine.errors import NoTiersConfigured
from refengine.storage.models import ReferralStatus

SUCCESSFUL_STATUSES = frozenset({
    ReferralStatus.COMPLETED.value,
    ReferralStatus.ACTIVE.value,
    ReferralStatus.REWARDED.value,
})

HUNDRED = Decimal("100")


class Tier(Protocol):
    id: int
    tier_name: str
    tier_level: int
    min_referrals: int
    min_commission: Decimal
    bonus_amount: Decimal


class QualifyingEvent(Protocol):
    status: str
    commission_earned: Decimal


@dataclass(frozen=True)
class ReferralStats:
    total_referrals: int = 0
    successful_referrals: int = 0
    total_commission_earned: Decimal = Decimal("0.00")

    @classmethod
    def from_events(cls, events: Iterable[QualifyingEvent]) -> "ReferralStats":
        total = 0
        successful = 0
        earned = Decimal("0.00")
        for event in events:
            total += 1
            if event.status in SUCCESSFUL_STATUSES:
                successful += 1
                earned += Decimal(str(event.commission_earned or 0))
        return cls(total_referrals=total, successful_referrals=successful, total_commission_earned=earned)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_referrals": self.total_referrals,
            "successful_referrals": self.successful_referrals,
            "total_commission_earned": str(self.total_commission_earned),
        }


@dataclass(frozen=True)
class TierEvaluation:
    current: Tier
    next: Tier | None
    progress: Decimal
    tier_changed: bool
    bonus: Decimal


def _qualifies(tier: Tier, stats: ReferralStats) -> bool:
    return (
        stats.successful_referrals >= tier.min_referrals
        and stats.total_commission_earned >= Decimal(str(tier.min_commission))
    )


def select_tier(tiers: Sequence[Tier], stats: ReferralStats) -> tuple[Tier, Tier | None]:
    """Pick the current and next tier.

    The current tier is the highest one whose referral AND commission
    minimums are both met; the lowest tier when none is.

    Raises:
        NoTiersConfigured: Empty tier list
    """
    if not tiers:
        raise NoTiersConfigured()

    ladder = sorted(tiers, key=lambda t: t.tier_level)
    index = 0
    for i, tier in enumerate(ladder):
        if _qualifies(tier, stats):
            index = i

    current = ladder[index]
    next_tier = ladder[index + 1] if index + 1 < len(ladder) else None
    return current, next_tier


def _percent(achieved: Decimal, required: Decimal) -> Decimal:
    if required <= 0:
        return HUNDRED
    return achieved / required * HUNDRED


def progress_to_next(stats: ReferralStats, next_tier: Tier | None) -> Decimal:
    """Percentage toward the next tier, the weaker of the two minimums."""
    if next_tier is None:
        return HUNDRED

    referral_progress = _percent(Decimal(stats.successful_referrals), Decimal(next_tier.min_referrals))
    commission_progress = _percent(stats.total_commission_earned, Decimal(str(next_tier.min_commission)))
    progress = min(referral_progress, commission_progress)
    progress = max(Decimal("0"), min(HUNDRED, progress))
    return progress.quantize(Decimal("0.01"))


def evaluate(tiers: Sequence[Tier], stats: ReferralStats, previous_level: int | None) -> TierEvaluation:
    """Evaluate an account's tier against its previous level.

    ``tier_changed`` is set only on a strict tier-up from a known level;
    a first evaluation or a demotion never pays a bonus.
    """
    current, next_tier = select_tier(tiers, stats)
    changed = previous_level is not None and current.tier_level > previous_level
    return TierEvaluation(
        current=current,
        next=next_tier,
        progress=progress_to_next(stats, next_tier),
        tier_changed=changed,
        bonus=Decimal(str(current.bonus_amount)) if changed else Decimal("0.00"),
    )
