"""Ledger models for the commission engine."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

Money = Numeric(12, 2, asdecimal=True)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class DestinationStatus(str, Enum):
    """Payout destination verification states."""
    NONE = "none"
    PENDING = "pending"
    VERIFIED = "verified"
    RESTRICTED = "restricted"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ACTIVE = "active"  # never written here; kept for imported rows and counted as successful
    REWARDED = "rewarded"


class ConversionType(str, Enum):
    SIGNUP = "signup"
    PURCHASE = "purchase"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CommissionSource(str, Enum):
    TIP = "tip"
    REFERRAL = "referral"
    SERVICE_ORDER = "service_order"
    PPC = "ppc"


class Account(Base):
    """Platform account as seen by the commission engine.

    ``email`` is the identity key used throughout the ledger.
    """

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Referral attribution
    referral_code: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True, index=True)
    referred_by_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("accounts.id"), nullable=True, index=True
    )
    commission_override: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    # Earnings
    total_earnings: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # Gateway references
    gateway_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_destination_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payout_destination_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DestinationStatus.NONE.value
    )

    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    referred_by: Mapped["Account | None"] = relationship("Account", remote_side=[id])

    @property
    def has_payout_destination(self) -> bool:
        return bool(self.payout_destination_id) and (
            self.payout_destination_status == DestinationStatus.VERIFIED.value
        )

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, email={self.email}, earnings={self.total_earnings})>"


class ReferralEvent(Base):
    """One commission line: a signup level or a purchase reward."""

    __tablename__ = "referral_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)

    referrer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    referred_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    referral_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    commission_earned: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ReferralStatus.PENDING.value)
    conversion_type: Mapped[str] = mapped_column(String(20), nullable=False)
    level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Purchase referrals only
    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount_paid: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    reward_issued: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reward_issued_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<ReferralEvent(referrer={self.referrer_email}, referred={self.referred_email}, "
            f"level={self.level}, status={self.status})>"
        )


class ReferralConfig(Base):
    """Purchase referral program configuration. Latest row wins."""

    __tablename__ = "referral_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reward_type: Mapped[str] = mapped_column(String(20), nullable=False, default="percentage")
    reward_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("10"))
    minimum_purchase_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    referred_discount_value: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class TierDefinition(Base):
    """A rung of the reward tier ladder."""

    __tablename__ = "referral_tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tier_name: Mapped[str] = mapped_column(String(100), nullable=False)
    tier_level: Mapped[int] = mapped_column(Integer, unique=True, nullable=False)
    min_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_commission: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    bonus_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    percentage_boost: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    perks: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tier_name": self.tier_name,
            "tier_level": self.tier_level,
            "min_referrals": self.min_referrals,
            "min_commission": str(self.min_commission),
            "bonus_amount": str(self.bonus_amount),
            "percentage_boost": str(self.percentage_boost),
            "perks": list(self.perks or []),
        }

    def __repr__(self) -> str:
        return f"<TierDefinition(level={self.tier_level}, name={self.tier_name})>"


class AccountTierSnapshot(Base):
    """Derived tier state for one account. Recomputed, never hand-edited."""

    __tablename__ = "account_tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), unique=True, nullable=False)
    account_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    current_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("referral_tiers.id"), nullable=False)
    current_tier_level: Mapped[int] = mapped_column(Integer, nullable=False)
    next_tier_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("referral_tiers.id"), nullable=True)

    total_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_commission_earned: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    progress_to_next_tier: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    tier_bonuses_earned: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tier_history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class WebhookEventRecord(Base):
    """Idempotency ledger for inbound payment-provider events."""

    __tablename__ = "webhook_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    source: Mapped[str] = mapped_column(String(50), nullable=False, default="stripe")

    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    result_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Claim lease: a delivery owns the event until locked_until
    locked_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<WebhookEventRecord(id={self.event_id}, type={self.event_type}, processed={self.processed})>"


class PayoutRecord(Base):
    """Append-only audit trail of payouts."""

    __tablename__ = "payout_records"
    __table_args__ = (
        UniqueConstraint("batch_run_id", "account_id", name="uq_payout_run_account"),
        # At most one pending payout per account
        Index(
            "uq_payout_one_pending",
            "account_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    account_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    destination_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    destination_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PayoutStatus.PENDING.value)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="batch")
    batch_run_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "account": self.account_email,
            "amount": str(self.amount),
            "status": self.status,
            "source": self.source,
            "transfer_id": self.destination_transfer_id,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class CommissionRecord(Base):
    """Platform-side admin commission ledger."""

    __tablename__ = "commission_records"
    __table_args__ = (
        UniqueConstraint("source_type", "reference_id", "beneficiary_email", name="uq_commission_reference"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    beneficiary_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Notification(Base):
    """In-app notification, written best-effort."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
