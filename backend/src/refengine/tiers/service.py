"""Tier recomputation and ladder management."""

from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from refengine.errors import AccountNotFound, ValidationError
from refengine.logging_config import get_logger
from refengine.notifications import Notifier
from refengine.referral.commission import money
from refengine.storage.db import Database
from refengine.storage.models import AccountTierSnapshot, TierDefinition, utcnow
from refengine.storage.repo import AccountRepository, ReferralEventRepository, TierRepository
from refengine.tiers.engine import ReferralStats, evaluate

logger = get_logger(__name__)

DEFAULT_TIERS: list[dict[str, Any]] = [
    {
        "tier_name": "Starter",
        "tier_level": 1,
        "min_referrals": 0,
        "min_commission": Decimal("0"),
        "bonus_amount": Decimal("0"),
        "percentage_boost": Decimal("0"),
        "perks": ["Basic referral tracking", "Standard commission rates"],
    },
    {
        "tier_name": "Rising",
        "tier_level": 2,
        "min_referrals": 5,
        "min_commission": Decimal("0"),
        "bonus_amount": Decimal("10"),
        "percentage_boost": Decimal("0"),
        "perks": ["$10 tier bonus", "Priority support"],
    },
    {
        "tier_name": "Pro",
        "tier_level": 3,
        "min_referrals": 10,
        "min_commission": Decimal("0"),
        "bonus_amount": Decimal("25"),
        "percentage_boost": Decimal("0"),
        "perks": ["$25 tier bonus", "Featured referrer badge"],
    },
    {
        "tier_name": "Elite",
        "tier_level": 4,
        "min_referrals": 25,
        "min_commission": Decimal("0"),
        "bonus_amount": Decimal("50"),
        "percentage_boost": Decimal("10"),
        "perks": ["$50 tier bonus", "+10% commission boost", "Early feature access"],
    },
    {
        "tier_name": "Champion",
        "tier_level": 5,
        "min_referrals": 50,
        "min_commission": Decimal("0"),
        "bonus_amount": Decimal("100"),
        "percentage_boost": Decimal("15"),
        "perks": ["$100 tier bonus", "+15% commission boost", "Dedicated account manager"],
    },
    {
        "tier_name": "Legend",
        "tier_level": 6,
        "min_referrals": 100,
        "min_commission": Decimal("0"),
        "bonus_amount": Decimal("250"),
        "percentage_boost": Decimal("20"),
        "perks": ["$250 tier bonus", "+20% commission boost", "Revenue share program"],
    },
]


def validate_ladder(tiers: list[dict[str, Any]]) -> None:
    """Tier levels and referral minimums must both strictly increase."""
    ordered = sorted(tiers, key=lambda t: t["tier_level"])
    for lower, upper in zip(ordered, ordered[1:]):
        if upper["tier_level"] == lower["tier_level"]:
            raise ValidationError(f"Duplicate tier level {upper['tier_level']}", "invalid_tier_ladder")
        if upper["min_referrals"] <= lower["min_referrals"]:
            raise ValidationError(
                f"Tier {upper['tier_name']} must require more referrals than {lower['tier_name']}",
                "invalid_tier_ladder",
            )


def history_entry(tier: TierDefinition, achieved_at: str, bonus: Decimal) -> dict[str, str]:
    return {"tier_name": tier.tier_name, "achieved_at": achieved_at, "bonus_earned": str(money(bonus))}


class TierService:
    """Recompute account tiers and pay tier-up bonuses once."""

    def __init__(self, database: Database, notifier: Notifier | None = None):
        self.database = database
        self.notifier = notifier

    def recalculate(self, email: str) -> dict[str, Any]:
        """Recompute the tier for one account.

        Args:
            email: Account email

        Returns:
            Dict with current/next tier, stats, tier_changed and tier_bonus

        Raises:
            AccountNotFound: Unknown account
            NoTiersConfigured: No active tiers
        """
        try:
            return self._recalculate(email)
        except IntegrityError:
            # Lost the first-insert race on the snapshot row; the retry sees it
            logger.info("tier_snapshot_race_retry", account=email)
            return self._recalculate(email)

    def _recalculate(self, email: str) -> dict[str, Any]:
        with self.database.session() as session:
            accounts = AccountRepository(session)
            tiers_repo = TierRepository(session)

            account = accounts.get_by_email(email, for_update=True)
            if account is None:
                raise AccountNotFound(email)

            tiers = tiers_repo.list_active()
            validate_ladder([tier.to_dict() for tier in tiers])
            stats = ReferralStats.from_events(ReferralEventRepository(session).list_for_referrer(account.email))

            snapshot = tiers_repo.get_snapshot(account.id)
            previous_level = snapshot.current_tier_level if snapshot else None
            result = evaluate(tiers, stats, previous_level)
            now = utcnow().isoformat()

            if snapshot is None:
                snapshot = tiers_repo.add_snapshot(AccountTierSnapshot(
                    account_id=account.id,
                    account_email=account.email,
                    current_tier_id=result.current.id,
                    current_tier_level=result.current.tier_level,
                    tier_history=[history_entry(result.current, now, Decimal("0"))],
                ))
                logger.info("tier_initialized", account=account.email, tier=result.current.tier_name)

            elif result.tier_changed:
                while not tiers_repo.advance_snapshot(snapshot.id, previous_level, result.current):
                    # Another recompute moved this account first and paid that bonus
                    session.refresh(snapshot)
                    logger.info("tier_advance_lost", account=account.email, level=snapshot.current_tier_level)
                    previous_level = snapshot.current_tier_level
                    result = evaluate(tiers, stats, previous_level)
                    if not result.tier_changed:
                        break

            if result.tier_changed:
                # Reassign rather than mutate so the JSON column is flushed
                snapshot.tier_history = [*snapshot.tier_history, history_entry(result.current, now, result.bonus)]
                snapshot.tier_bonuses_earned = snapshot.tier_bonuses_earned + result.bonus
                snapshot.current_tier_id = result.current.id
                snapshot.current_tier_level = result.current.tier_level
                if result.bonus > 0:
                    accounts.add_earnings(account.id, result.bonus)
                logger.info(
                    "tier_upgraded",
                    account=account.email,
                    from_level=previous_level,
                    to_level=result.current.tier_level,
                    bonus=str(result.bonus),
                )

            snapshot.next_tier_id = result.next.id if result.next else None
            snapshot.total_referrals = stats.total_referrals
            snapshot.successful_referrals = stats.successful_referrals
            snapshot.total_commission_earned = stats.total_commission_earned
            snapshot.progress_to_next_tier = result.progress

            response = {
                "success": True,
                "current_tier": result.current.to_dict(),
                "next_tier": result.next.to_dict() if result.next else None,
                "stats": {**stats.to_dict(), "progress_to_next_tier": str(result.progress)},
                "tier_changed": result.tier_changed,
                "tier_bonus": str(result.bonus),
            }
            account_email = account.email

        if result.tier_changed and self.notifier is not None:
            self.notifier.notify(
                account_email,
                "tier_upgrade",
                f"Welcome to {response['current_tier']['tier_name']}!",
                f"You reached a new referral tier and earned a ${result.bonus} bonus.",
            )
        return response

    def install_default_tiers(self) -> dict[str, Any]:
        """Install the default tier ladder when no tiers exist."""
        validate_ladder(DEFAULT_TIERS)
        with self.database.session() as session:
            repo = TierRepository(session)
            existing = repo.count()
            if existing:
                logger.info("default_tiers_skipped", existing=existing)
                return {"success": True, "created": 0, "existing": existing, "message": "Tiers already configured"}

            for definition in DEFAULT_TIERS:
                repo.add(TierDefinition(**definition))

        logger.info("default_tiers_installed", count=len(DEFAULT_TIERS))
        return {"success": True, "created": len(DEFAULT_TIERS), "existing": 0, "message": "Default tiers installed"}

    def list_tiers(self) -> list[dict[str, Any]]:
        with self.database.session() as session:
            return [tier.to_dict() for tier in TierRepository(session).list_active()]
