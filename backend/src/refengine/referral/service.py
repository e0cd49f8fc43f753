"""Referral service: codes, signup commissions and purchase rewards."""

import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from refengine.errors import (
    AccountNotFound,
    ReferrerNotFound,
    SelfReferral,
    ServiceUnavailable,
    ValidationError,
)
from refengine.logging_config import get_logger
from refengine.notifications import Notifier
from refengine.payments.gateway import PaymentGateway, to_cents
from refengine.referral.commission import (
    CommissionPolicy,
    SignupSplit,
    compute_purchase_reward,
    money,
    split_signup,
)
from refengine.settings import settings
from refengine.storage.db import Database
from refengine.storage.models import (
    CommissionSource,
    ConversionType,
    ReferralEvent,
    ReferralStatus,
    utcnow,
)
from refengine.storage.repo import (
    AccountRepository,
    CommissionRepository,
    ReferralConfigRepository,
    ReferralEventRepository,
)

logger = get_logger(__name__)

CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8


def _generate_unique_code(length: int = CODE_LENGTH) -> str:
    """Generate a readable referral code.

    Uses uppercase letters and digits, avoiding confusing characters.
    Format: ABC12XYZ (8 chars by default)
    """
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def signup_key(referrer_email: str, referred_email: str, level: int) -> str:
    return f"signup:{referrer_email}:{referred_email}:{level}"


def purchase_key(referred_email: str, referral_code: str, checkout_session_id: str) -> str:
    return f"purchase:{referred_email}:{referral_code}:{checkout_session_id}"


@dataclass(frozen=True)
class ProgramConfig:
    """Detached copy of the active purchase referral configuration."""

    enabled: bool
    reward_type: str
    reward_value: Decimal
    minimum_purchase_amount: Decimal
    referred_discount_value: Decimal = Decimal("0")

    @classmethod
    def defaults(cls) -> "ProgramConfig":
        return cls(
            enabled=settings.referral_enabled,
            reward_type=settings.referral_reward_type,
            reward_value=settings.referral_reward_value,
            minimum_purchase_amount=settings.referral_minimum_purchase,
        )


def load_program_config(database: Database) -> ProgramConfig:
    """Active ReferralConfig row, or settings defaults when none exists."""
    with database.session() as session:
        row = ReferralConfigRepository(session).get_active()
        if row is None:
            return ProgramConfig.defaults()
        return ProgramConfig(
            enabled=row.enabled,
            reward_type=row.reward_type,
            reward_value=row.reward_value,
            minimum_purchase_amount=row.minimum_purchase_amount,
            referred_discount_value=row.referred_discount_value,
        )


@dataclass(frozen=True)
class PurchaseEvent:
    """A completed payment, normalized from any provider event type."""

    checkout_session_id: str
    customer_email: str | None
    amount_paid: Decimal
    referral_code: str | None
    customer_id: str | None = None
    payment_intent_id: str | None = None


class ReferralService:
    """Service for referral codes and commissions.

    Operations:
    - Referral codes (create, validate)
    - Multi-level signup commissions
    - Purchase referral rewards issued through the payment gateway
    """

    def __init__(
        self,
        database: Database,
        gateway: PaymentGateway | None = None,
        notifier: Notifier | None = None,
        tier_service: Any = None,
        policy: CommissionPolicy | None = None,
    ):
        self.database = database
        self.gateway = gateway
        self.notifier = notifier
        self.tier_service = tier_service
        self.policy = policy or CommissionPolicy.from_settings()

    # ==================== CODES ====================

    def get_or_create_code(self, email: str) -> str:
        """Get existing referral code or create a new one for the account.

        Args:
            email: Account email

        Returns:
            Referral code
        """
        with self.database.session() as session:
            accounts = AccountRepository(session)
            account = accounts.get_by_email(email, for_update=True) or accounts.create(email)
            if account.referral_code:
                return account.referral_code

            code = _generate_unique_code()
            attempts = 0
            while attempts < 10 and accounts.code_exists(code):
                code = _generate_unique_code()
                attempts += 1

            account.referral_code = code
            logger.info("referral_code_created", account=account.email, code=code)
            return code

    def referral_link(self, code: str) -> str:
        return f"{settings.public_base_url}/signup?ref={code}"

    def validate_code(self, code: str, customer_email: str | None = None) -> dict[str, Any]:
        """Validate a referral code before signup or checkout.

        Args:
            code: Referral code to validate
            customer_email: Optional customer to check for self use and reuse

        Returns:
            Dict with ``valid`` and either referrer info or an error
        """
        if not code:
            raise ValidationError("No referral code provided", "missing_referral_code")

        code = code.upper().strip()
        with self.database.session() as session:
            referrer = AccountRepository(session).get_by_referral_code(code)
            if referrer is None:
                return {"valid": False, "error": "Invalid referral code"}

            if customer_email:
                customer_email = customer_email.lower().strip()
                if referrer.email == customer_email:
                    return {"valid": False, "error": "Cannot use your own referral code"}
                if ReferralEventRepository(session).has_rewarded_purchase(customer_email):
                    return {"valid": False, "error": "You have already used a referral code"}

            referrer_name = referrer.name.split()[0] if referrer.name else None
            return {
                "valid": True,
                "referral_code": code,
                "referrer_name": referrer_name,
            }

    # ==================== SIGNUP PATH ====================

    def track_signup(self, referred_email: str, referral_code: str) -> dict[str, Any]:
        """Attribute a new account to a referral code and pay the upline.

        All commission lines, balance credits and the platform commission
        record are written in one transaction. The level-1 idempotency key
        makes replays report ``already_tracked`` instead of paying twice.

        Args:
            referred_email: Newly signed-up account
            referral_code: Code the account signed up with

        Returns:
            Summary with total paid and the per-level breakdown

        Raises:
            ValidationError: Missing code, self referral, already referred
            ReferrerNotFound: Unknown code
        """
        if not referral_code or not referral_code.strip():
            raise ValidationError("No referral code provided", "missing_referral_code")

        code = referral_code.upper().strip()
        referred_email = referred_email.lower().strip()

        for attempt in range(2):
            try:
                split, event_id = self._apply_signup(referred_email, code)
                break
            except IntegrityError:
                if self._signup_tracked(referred_email, code):
                    # A concurrent delivery inserted the same level-1 line first
                    logger.info("referral_signup_race_lost", code=code, referred=referred_email)
                    return self._already_tracked(None)
                if attempt:
                    raise
                # Lost an unrelated insert race, such as provisioning the account
                logger.info("referral_signup_retry", code=code, referred=referred_email)

        if split is None:
            return self._already_tracked(event_id)

        logger.info(
            "referral_signup_processed",
            referrer=split.lines[0].beneficiary_email,
            referred=referred_email,
            levels=len(split.lines),
            total_paid=str(split.total),
        )

        for line in split.lines:
            self._notify(
                line.beneficiary_email,
                "referral",
                "New referral commission",
                f"You earned ${line.amount} from a level {line.level} referral signup.",
            )
        self._refresh_tiers([line.beneficiary_email for line in split.lines])

        return {
            "success": True,
            "already_tracked": False,
            "referral_event_id": event_id,
            **split.summary(),
        }

    def _apply_signup(self, referred_email: str, code: str) -> tuple[SignupSplit | None, int | None]:
        """Write the whole signup in one transaction.

        Returns:
            (split, level-1 event id), or (None, existing event id) when the
            signup was already tracked
        """
        with self.database.session() as session:
            accounts = AccountRepository(session)
            events = ReferralEventRepository(session)

            referrer = accounts.get_by_referral_code(code)
            if referrer is None:
                raise ReferrerNotFound(code)
            if referrer.email == referred_email:
                raise SelfReferral(referred_email)

            referred = accounts.get_by_email(referred_email, for_update=True) or accounts.create(referred_email)

            existing = events.get_signup_event(referrer.email, referred.email)
            if existing is not None:
                logger.info("referral_signup_already_tracked", referrer=referrer.email, referred=referred.email)
                return None, existing.id

            if referred.referred_by_id is not None and referred.referred_by_id != referrer.id:
                raise ValidationError("Account was already referred by someone else", "already_referred")

            chain = [referrer] + accounts.upline(referrer, self.policy.max_levels - 1)
            if any(member.id == referred.id for member in chain):
                raise ValidationError("Referral would create a cycle", "referral_cycle")

            split = split_signup(chain, referred.email, self.policy)
            referred.referred_by_id = referrer.id

            level_one_id = None
            for line, beneficiary in zip(split.lines, chain):
                event = events.add(ReferralEvent(
                    idempotency_key=signup_key(beneficiary.email, referred.email, line.level),
                    referrer_email=beneficiary.email,
                    referred_email=referred.email,
                    referral_code=code,
                    commission_earned=line.amount,
                    status=ReferralStatus.COMPLETED.value,
                    conversion_type=ConversionType.SIGNUP.value,
                    level=line.level,
                ))
                if line.level == 1:
                    level_one_id = event.id
                accounts.add_earnings(beneficiary.id, line.amount)

            if split.referred_bonus > 0:
                accounts.add_earnings(referred.id, split.referred_bonus)

            CommissionRepository(session).record(
                source_type=CommissionSource.REFERRAL.value,
                reference_id=str(level_one_id),
                amount=split.total,
                beneficiary_email=referrer.email,
            )
            return split, level_one_id

    def _signup_tracked(self, referred_email: str, code: str) -> bool:
        with self.database.session() as session:
            referrer = AccountRepository(session).get_by_referral_code(code)
            if referrer is None:
                return False
            return ReferralEventRepository(session).get_signup_event(referrer.email, referred_email) is not None

    def _already_tracked(self, event_id: int | None) -> dict[str, Any]:
        return {
            "success": True,
            "already_tracked": True,
            "message": "Referral already tracked",
            "referral_event_id": event_id,
            "total_paid": "0.00",
            "levels": [],
            "referred_bonus": "0.00",
        }

    # ==================== PURCHASE PATH ====================

    def process_purchase(self, event: PurchaseEvent, config: ProgramConfig) -> dict[str, Any]:
        """Apply a purchase referral reward exactly once.

        The ledger row is committed in ``pending`` state before the gateway is
        contacted; it becomes ``rewarded`` only after the gateway call
        succeeds. A gateway failure leaves the row pending and re-raises so
        the caller can retry.

        Args:
            event: Normalized purchase
            config: Active program configuration

        Returns:
            Result summary (also stored as webhook metadata)
        """
        if not event.referral_code:
            return {"message": "no_referral_code"}
        if not event.customer_email:
            return {"error": "missing_customer_email"}

        code = event.referral_code.upper().strip()
        customer_email = event.customer_email.lower().strip()

        with self.database.session() as session:
            referrer = AccountRepository(session).get_by_referral_code(code)
            if referrer is None:
                logger.info("purchase_referral_invalid_code", code=code)
                return {"error": "invalid_code", "referral_code": code}
            if referrer.email == customer_email:
                logger.info("purchase_self_referral_prevented", code=code)
                return {"error": "self_referral"}
            referrer_id = referrer.id
            referrer_email = referrer.email
            customer_id = referrer.gateway_customer_id

        reward = compute_purchase_reward(event.amount_paid, config)
        if reward is None:
            logger.info(
                "purchase_below_minimum",
                amount_paid=str(event.amount_paid),
                minimum=str(config.minimum_purchase_amount),
            )
            return {"skipped": "below_minimum", "amount_paid": str(money(event.amount_paid))}

        key = purchase_key(customer_email, code, event.checkout_session_id)
        event_id, already_issued = self._upsert_pending(key, referrer_email, customer_email, code, reward, event)
        if already_issued:
            logger.info("purchase_reward_already_issued", referral_event_id=event_id)
            return {"error": "reward_already_issued", "referral_event_id": event_id}

        result = {
            "referrer": referrer_email,
            "referred": customer_email,
            "reward": str(reward),
            "amount_paid": str(money(event.amount_paid)),
            "referral_event_id": event_id,
        }

        if not customer_id:
            logger.info("purchase_reward_deferred", referral_event_id=event_id, reason="no_gateway_customer")
            return {**result, "reward_pending": "no_gateway_customer"}
        if self.gateway is None:
            raise ServiceUnavailable("Payment gateway not configured")

        self.gateway.credit_customer_balance(
            customer_id=customer_id,
            amount=reward,
            description=f"Referral reward for {customer_email}",
            metadata={"referral_event_id": str(event_id), "referred_email": customer_email},
            idempotency_key=f"referral-reward-{event_id}-{to_cents(reward)}",
        )

        with self.database.session() as session:
            flipped = ReferralEventRepository(session).mark_rewarded(event_id, utcnow())
            if flipped:
                AccountRepository(session).add_earnings(referrer_id, reward)

        if not flipped:
            # Another delivery finished between our upsert and the gateway call
            logger.info("purchase_reward_already_issued", referral_event_id=event_id)
            return {"error": "reward_already_issued", "referral_event_id": event_id}

        logger.info("purchase_reward_issued", referral_event_id=event_id, referrer=referrer_email, reward=str(reward))
        self._notify(
            referrer_email,
            "referral",
            "Referral reward issued",
            f"You earned ${reward} because {customer_email} made a purchase.",
        )
        self._refresh_tiers([referrer_email])
        return {"success": True, **result}

    def _upsert_pending(
        self,
        key: str,
        referrer_email: str,
        customer_email: str,
        code: str,
        reward: Decimal,
        event: PurchaseEvent,
    ) -> tuple[int, bool]:
        """Insert or refresh the pending purchase row.

        Returns:
            (referral event id, reward already issued)
        """
        try:
            with self.database.session() as session:
                row = ReferralEventRepository(session).add(ReferralEvent(
                    idempotency_key=key,
                    referrer_email=referrer_email,
                    referred_email=customer_email,
                    referral_code=code,
                    commission_earned=reward,
                    status=ReferralStatus.PENDING.value,
                    conversion_type=ConversionType.PURCHASE.value,
                    level=None,
                    checkout_session_id=event.checkout_session_id,
                    payment_intent_id=event.payment_intent_id,
                    amount_paid=money(event.amount_paid),
                ))
                return row.id, False
        except IntegrityError:
            pass

        with self.database.session() as session:
            existing = ReferralEventRepository(session).get_by_key(key, for_update=True)
            if existing.reward_issued:
                return existing.id, True
            existing.commission_earned = reward
            existing.amount_paid = money(event.amount_paid)
            existing.payment_intent_id = event.payment_intent_id or existing.payment_intent_id
            logger.info("purchase_referral_updated", referral_event_id=existing.id)
            return existing.id, False

    # ==================== STATS ====================

    def get_referral_stats(self, email: str) -> dict[str, Any]:
        """Referral statistics for an account.

        Args:
            email: Account email

        Returns:
            Dict with code, counts by status and level, and earnings
        """
        with self.database.session() as session:
            account = AccountRepository(session).get_by_email(email)
            if account is None:
                raise AccountNotFound(email)

            events = ReferralEventRepository(session).list_for_referrer(account.email)
            by_status: dict[str, int] = {}
            by_level: dict[str, int] = {}
            for event in events:
                by_status[event.status] = by_status.get(event.status, 0) + 1
                level = str(event.level) if event.level else "purchase"
                by_level[level] = by_level.get(level, 0) + 1

            return {
                "code": account.referral_code,
                "link": self.referral_link(account.referral_code) if account.referral_code else None,
                "total_referrals": len(events),
                "by_status": by_status,
                "by_level": by_level,
                "commission_earned": str(sum((e.commission_earned for e in events), Decimal("0.00"))),
                "total_earnings": str(account.total_earnings),
            }

    # ==================== HELPERS ====================

    def _notify(self, email: str, type: str, title: str, message: str) -> None:
        if self.notifier is not None:
            self.notifier.notify(email, type, title, message)

    def _refresh_tiers(self, emails: list[str]) -> None:
        """Recompute tiers after commit. Failures never undo the commission."""
        if self.tier_service is None:
            return
        for email in emails:
            try:
                self.tier_service.recalculate(email)
            except Exception as e:
                logger.warning("tier_refresh_failed", account=email, error=str(e))
