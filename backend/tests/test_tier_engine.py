"""
Unit tests for tier selection.

Tests cover:
- Highest-satisfied tier selection with both minimums
- Progress toward the next tier
- Tier-up detection
"""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from refengine.errors import NoTiersConfigured
from refengine.tiers.engine import ReferralStats, evaluate, progress_to_next, select_tier


@dataclass
class FakeTier:
    id: int
    tier_name: str
    tier_level: int
    min_referrals: int
    min_commission: Decimal = Decimal("0")
    bonus_amount: Decimal = Decimal("0")


@dataclass
class FakeEvent:
    status: str
    commission_earned: Decimal


@pytest.fixture
def ladder():
    # Deliberately unsorted
    return [
        FakeTier(3, "Pro", 3, 10, Decimal("50"), Decimal("25")),
        FakeTier(1, "Starter", 1, 0),
        FakeTier(2, "Rising", 2, 5, Decimal("0"), Decimal("10")),
    ]


def stats(referrals: int, earned: str = "0") -> ReferralStats:
    return ReferralStats(
        total_referrals=referrals,
        successful_referrals=referrals,
        total_commission_earned=Decimal(earned),
    )


class TestReferralStats:
    """Test aggregation of referral events."""

    def test_only_successful_statuses_count(self):
        events = [
            FakeEvent("completed", Decimal("5")),
            FakeEvent("rewarded", Decimal("10")),
            FakeEvent("active", Decimal("1")),
            FakeEvent("pending", Decimal("100")),
        ]

        result = ReferralStats.from_events(events)

        assert result.total_referrals == 4
        assert result.successful_referrals == 3
        assert result.total_commission_earned == Decimal("16")


class TestSelectTier:
    """Test tier selection."""

    def test_no_activity_gets_lowest_tier(self, ladder):
        current, next_tier = select_tier(ladder, stats(0))
        assert current.tier_level == 1
        assert next_tier.tier_level == 2

    def test_highest_satisfied_tier_wins(self, ladder):
        current, next_tier = select_tier(ladder, stats(12, "60"))
        assert current.tier_level == 3
        assert next_tier is None

    def test_both_minimums_must_hold(self, ladder):
        """Enough referrals but not enough commission stays below Pro."""
        current, _ = select_tier(ladder, stats(12, "10"))
        assert current.tier_level == 2

    def test_monotonic_in_referrals(self, ladder):
        levels = [select_tier(ladder, stats(n, "1000"))[0].tier_level for n in range(0, 15)]
        assert levels == sorted(levels)

    def test_empty_ladder_raises(self):
        with pytest.raises(NoTiersConfigured):
            select_tier([], stats(3))


class TestProgress:
    """Test progress toward the next tier."""

    def test_weaker_requirement_bounds_progress(self, ladder):
        pro = ladder[0]
        # 5/10 referrals = 50%, 40/50 commission = 80%
        assert progress_to_next(stats(5, "40"), pro) == Decimal("50.00")

    def test_zero_requirement_counts_as_met(self, ladder):
        rising = ladder[2]
        assert progress_to_next(stats(2), rising) == Decimal("40.00")

    def test_clamped_to_hundred(self, ladder):
        assert progress_to_next(stats(50, "500"), ladder[0]) == Decimal("100.00")

    def test_top_tier_is_complete(self):
        assert progress_to_next(stats(1), None) == Decimal("100")


class TestEvaluate:
    """Test tier-up detection."""

    def test_first_evaluation_is_not_a_tier_up(self, ladder):
        result = evaluate(ladder, stats(5), previous_level=None)
        assert result.current.tier_level == 2
        assert result.tier_changed is False
        assert result.bonus == Decimal("0.00")

    def test_strict_increase_pays_new_tier_bonus(self, ladder):
        result = evaluate(ladder, stats(5), previous_level=1)
        assert result.tier_changed is True
        assert result.bonus == Decimal("10")

    def test_same_level_is_not_a_tier_up(self, ladder):
        result = evaluate(ladder, stats(6), previous_level=2)
        assert result.tier_changed is False

    def test_demotion_pays_nothing(self, ladder):
        result = evaluate(ladder, stats(0), previous_level=3)
        assert result.current.tier_level == 1
        assert result.tier_changed is False
        assert result.bonus == Decimal("0.00")
