"""
Unit tests for commission calculation.

Tests cover:
- Multi-level signup splits and conservation
- Per-account commission overrides
- Chain truncation
- Purchase reward computation and the minimum purchase rule
"""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from refengine.referral.commission import (
    CommissionPolicy,
    compute_purchase_reward,
    money,
    split_signup,
)
from refengine.referral.service import ProgramConfig


@dataclass
class Member:
    email: str
    commission_override: Decimal | None = None


@pytest.fixture
def policy():
    return CommissionPolicy(
        level_amounts=(Decimal("5.00"), Decimal("2.00"), Decimal("1.00")),
        referred_bonus=Decimal("1.00"),
    )


def config(reward_type="percentage", value="10", minimum="50"):
    return ProgramConfig(
        enabled=True,
        reward_type=reward_type,
        reward_value=Decimal(value),
        minimum_purchase_amount=Decimal(minimum),
    )


class TestSignupSplit:
    """Test signup commission splits."""

    def test_full_chain_pays_every_level(self, policy):
        chain = [Member("a@x.io"), Member("b@x.io"), Member("c@x.io")]

        split = split_signup(chain, "new@x.io", policy)

        assert [(l.level, l.beneficiary_email, l.amount) for l in split.lines] == [
            (1, "a@x.io", Decimal("5.00")),
            (2, "b@x.io", Decimal("2.00")),
            (3, "c@x.io", Decimal("1.00")),
        ]
        assert split.referred_bonus == Decimal("1.00")

    def test_total_is_sum_of_lines_plus_bonus(self, policy):
        """Total paid equals the sum of the constants for the levels present."""
        chain = [Member("a@x.io"), Member("b@x.io"), Member("c@x.io")]

        split = split_signup(chain, "new@x.io", policy)

        assert split.total == Decimal("5.00") + Decimal("2.00") + Decimal("1.00") + Decimal("1.00")

    def test_short_chain_truncates_without_error(self, policy):
        split = split_signup([Member("a@x.io")], "new@x.io", policy)

        assert len(split.lines) == 1
        assert split.total == Decimal("6.00")

    def test_chain_longer_than_policy_is_cut(self, policy):
        chain = [Member(f"m{i}@x.io") for i in range(5)]

        split = split_signup(chain, "new@x.io", policy)

        assert [line.level for line in split.lines] == [1, 2, 3]

    def test_override_applies_to_level_one_only(self, policy):
        chain = [
            Member("house@x.io", commission_override=Decimal("20")),
            Member("b@x.io", commission_override=Decimal("99")),
        ]

        split = split_signup(chain, "new@x.io", policy)

        assert split.lines[0].amount == Decimal("20.00")
        assert split.lines[1].amount == Decimal("2.00")

    def test_summary_serializes_amounts(self, policy):
        summary = split_signup([Member("a@x.io")], "new@x.io", policy).summary()

        assert summary == {
            "total_paid": "6.00",
            "levels": [{"level": 1, "account": "a@x.io", "amount": "5.00"}],
            "referred_bonus": "1.00",
        }


class TestPurchaseReward:
    """Test purchase reward computation."""

    def test_percentage_reward(self):
        assert compute_purchase_reward(Decimal("100"), config()) == Decimal("10.00")

    def test_below_minimum_is_none(self):
        assert compute_purchase_reward(Decimal("40"), config()) is None

    def test_exactly_minimum_qualifies(self):
        assert compute_purchase_reward(Decimal("50"), config()) == Decimal("5.00")

    def test_fixed_reward(self):
        assert compute_purchase_reward(Decimal("75"), config("fixed", "7.50")) == Decimal("7.50")

    def test_percentage_rounds_half_up_to_cents(self):
        # 33.35 * 15% = 5.0025
        assert compute_purchase_reward(Decimal("33.35"), config(value="15", minimum="0")) == Decimal("5.00")
        # 0.35 * 10% = 0.035
        assert compute_purchase_reward(Decimal("0.35"), config(minimum="0")) == Decimal("0.04")

    def test_zero_minimum_means_no_minimum(self):
        assert compute_purchase_reward(Decimal("1"), config(minimum="0")) == Decimal("0.10")

    def test_unknown_reward_type_raises(self):
        with pytest.raises(ValueError):
            compute_purchase_reward(Decimal("100"), config("points"))


def test_money_rounds_to_cents():
    assert money("1.005") == Decimal("1.01")
    assert money(None) == Decimal("0.00")
