"""Repository layer for ledger access.

Each repository wraps a session owned by the caller, so several repositories
can take part in one transaction. Uniqueness constraints on the models are
the idempotency guards; repositories never do check-then-insert on their own.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from refengine.logging_config import get_logger
from refengine.storage.models import (
    Account,
    AccountTierSnapshot,
    CommissionRecord,
    ConversionType,
    Notification,
    PayoutRecord,
    PayoutStatus,
    ReferralConfig,
    ReferralEvent,
    ReferralStatus,
    TierDefinition,
    WebhookEventRecord,
    utcnow,
)

logger = get_logger(__name__)

MAX_REFERRAL_LEVELS = 3


class AccountRepository:
    """Repository for Account entities."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, email: str, name: str | None = None, **fields: Any) -> Account:
        account = Account(email=email.lower().strip(), name=name, **fields)
        self.session.add(account)
        self.session.flush()
        logger.info("account_created", account_id=account.id, email=account.email)
        return account

    def get_by_id(self, account_id: int) -> Account | None:
        return self.session.get(Account, account_id)

    def get_by_email(self, email: str, for_update: bool = False) -> Account | None:
        """Get account by identity key.

        Args:
            email: Account email
            for_update: Lock the row for the rest of the transaction
        """
        stmt = select(Account).where(Account.email == email.lower().strip())
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalar(stmt)

    def get_by_referral_code(self, code: str) -> Account | None:
        return self.session.scalar(
            select(Account).where(Account.referral_code == code.upper().strip())
        )

    def code_exists(self, code: str) -> bool:
        return self.session.scalar(
            select(func.count(Account.id)).where(Account.referral_code == code)
        ) > 0

    def lock(self, account_id: int) -> Account | None:
        """SELECT FOR UPDATE on one account row."""
        return self.session.scalar(
            select(Account).where(Account.id == account_id).with_for_update()
        )

    def add_earnings(self, account_id: int, delta: Decimal) -> None:
        """Atomically add ``delta`` to an account balance.

        A single UPDATE statement, so concurrent credits never lose updates.
        """
        self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(total_earnings=Account.total_earnings + delta)
        )

    def subtract_earnings(self, account_id: int, amount: Decimal) -> None:
        self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(total_earnings=Account.total_earnings - amount)
        )

    def upline(self, account: Account, max_levels: int = MAX_REFERRAL_LEVELS) -> list[Account]:
        """Walk ``referred_by`` links upwards.

        Returns at most ``max_levels`` ancestors, nearest first. Stops at the
        first missing link or on a cycle.
        """
        chain: list[Account] = []
        seen = {account.id}
        current = account
        while len(chain) < max_levels and current.referred_by_id is not None:
            if current.referred_by_id in seen:
                logger.warning("referral_cycle_detected", account_id=account.id)
                break
            parent = self.get_by_id(current.referred_by_id)
            if parent is None:
                break
            chain.append(parent)
            seen.add(parent.id)
            current = parent
        return chain

    def list_with_earnings(self) -> list[Account]:
        return list(self.session.scalars(
            select(Account).where(Account.total_earnings > 0).order_by(Account.id)
        ))

    def list_with_destination(self) -> list[Account]:
        return list(self.session.scalars(
            select(Account).where(Account.payout_destination_id.is_not(None)).order_by(Account.id)
        ))


class ReferralEventRepository:
    """Repository for ReferralEvent entities."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, event: ReferralEvent) -> ReferralEvent:
        """Insert an event. Raises IntegrityError on a duplicate idempotency key."""
        self.session.add(event)
        self.session.flush()
        return event

    def get_by_key(self, key: str, for_update: bool = False) -> ReferralEvent | None:
        stmt = select(ReferralEvent).where(ReferralEvent.idempotency_key == key)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalar(stmt)

    def get_signup_event(self, referrer_email: str, referred_email: str) -> ReferralEvent | None:
        return self.session.scalar(
            select(ReferralEvent).where(
                ReferralEvent.referrer_email == referrer_email,
                ReferralEvent.referred_email == referred_email,
                ReferralEvent.conversion_type == ConversionType.SIGNUP.value,
                ReferralEvent.level == 1,
            )
        )

    def list_for_referrer(self, referrer_email: str) -> list[ReferralEvent]:
        return list(self.session.scalars(
            select(ReferralEvent)
            .where(ReferralEvent.referrer_email == referrer_email)
            .order_by(ReferralEvent.created_at)
        ))

    def has_rewarded_purchase(self, referred_email: str) -> bool:
        return self.session.scalar(
            select(func.count(ReferralEvent.id)).where(
                ReferralEvent.referred_email == referred_email,
                ReferralEvent.conversion_type == ConversionType.PURCHASE.value,
                ReferralEvent.reward_issued.is_(True),
            )
        ) > 0

    def mark_rewarded(self, event_id: int, issued_at: datetime) -> bool:
        """Compare-and-set ``reward_issued`` from false to true.

        Returns:
            True if this call flipped the flag
        """
        result = self.session.execute(
            update(ReferralEvent)
            .where(ReferralEvent.id == event_id, ReferralEvent.reward_issued.is_(False))
            .values(
                reward_issued=True,
                reward_issued_at=issued_at,
                status=ReferralStatus.REWARDED.value,
            )
        )
        return result.rowcount == 1


class ReferralConfigRepository:
    """Repository for ReferralConfig entities."""

    def __init__(self, session: Session):
        self.session = session

    def get_active(self) -> ReferralConfig | None:
        """Latest configuration row, if any."""
        return self.session.scalar(
            select(ReferralConfig).order_by(ReferralConfig.created_at.desc(), ReferralConfig.id.desc())
        )

    def add(self, config: ReferralConfig) -> ReferralConfig:
        self.session.add(config)
        self.session.flush()
        return config


class TierRepository:
    """Repository for TierDefinition and AccountTierSnapshot entities."""

    def __init__(self, session: Session):
        self.session = session

    def list_active(self) -> list[TierDefinition]:
        return list(self.session.scalars(
            select(TierDefinition)
            .where(TierDefinition.is_active.is_(True))
            .order_by(TierDefinition.tier_level)
        ))

    def count(self) -> int:
        return self.session.scalar(select(func.count(TierDefinition.id)))

    def add(self, tier: TierDefinition) -> TierDefinition:
        self.session.add(tier)
        self.session.flush()
        return tier

    def get_snapshot(self, account_id: int) -> AccountTierSnapshot | None:
        return self.session.scalar(
            select(AccountTierSnapshot).where(AccountTierSnapshot.account_id == account_id)
        )

    def add_snapshot(self, snapshot: AccountTierSnapshot) -> AccountTierSnapshot:
        self.session.add(snapshot)
        self.session.flush()
        return snapshot

    def advance_snapshot(self, snapshot_id: int, from_level: int, tier: TierDefinition) -> bool:
        """Move a snapshot up from ``from_level`` to ``tier``.

        Returns False when another recompute already moved it.
        """
        result = self.session.execute(
            update(AccountTierSnapshot)
            .where(
                AccountTierSnapshot.id == snapshot_id,
                AccountTierSnapshot.current_tier_level == from_level,
            )
            .values(current_tier_id=tier.id, current_tier_level=tier.tier_level)
        )
        return result.rowcount == 1


class WebhookEventRepository:
    """Repository for WebhookEventRecord entities."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, event_id: str) -> WebhookEventRecord | None:
        return self.session.scalar(
            select(WebhookEventRecord).where(WebhookEventRecord.event_id == event_id)
        )

    def insert_claimed(self, event_id: str, event_type: str, source: str, lease_until: datetime) -> WebhookEventRecord:
        """Record first sight of an event, already claimed by the caller.

        Raises IntegrityError when the event id was seen before.
        """
        record = WebhookEventRecord(
            event_id=event_id,
            event_type=event_type,
            source=source,
            processed=False,
            locked_until=lease_until,
            attempts=1,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def claim(self, event_id: str, now: datetime, lease_until: datetime) -> bool:
        """Compare-and-set the claim lease on an unfinished event.

        Succeeds only when the event is unprocessed and no live lease exists.
        """
        result = self.session.execute(
            update(WebhookEventRecord)
            .where(
                WebhookEventRecord.event_id == event_id,
                WebhookEventRecord.processed.is_(False),
                or_(
                    WebhookEventRecord.locked_until.is_(None),
                    WebhookEventRecord.locked_until < now,
                ),
            )
            .values(locked_until=lease_until, attempts=WebhookEventRecord.attempts + 1)
        )
        return result.rowcount == 1

    def mark_processed(self, event_id: str, metadata: dict[str, Any]) -> None:
        self.session.execute(
            update(WebhookEventRecord)
            .where(WebhookEventRecord.event_id == event_id)
            .values(
                processed=True,
                result_metadata=metadata,
                locked_until=None,
                last_error=None,
                processed_at=utcnow(),
            )
        )

    def release(self, event_id: str, error: str) -> None:
        """Drop the lease after a failed attempt so a redelivery can retry."""
        self.session.execute(
            update(WebhookEventRecord)
            .where(WebhookEventRecord.event_id == event_id, WebhookEventRecord.processed.is_(False))
            .values(locked_until=None, last_error=error[:2000])
        )

    def delete_processed_before(self, cutoff: datetime) -> int:
        result = self.session.execute(
            delete(WebhookEventRecord).where(
                WebhookEventRecord.processed.is_(True),
                WebhookEventRecord.processed_at < cutoff,
            )
        )
        return result.rowcount


class PayoutRepository:
    """Repository for PayoutRecord entities."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        account: Account,
        amount: Decimal,
        source: str,
        batch_run_id: str | None = None,
    ) -> PayoutRecord:
        """Insert a pending payout.

        Raises IntegrityError on a duplicate (run, account) or when the
        account already has a pending payout.
        """
        record = PayoutRecord(
            account_id=account.id,
            account_email=account.email,
            amount=amount,
            destination_id=account.payout_destination_id,
            status=PayoutStatus.PENDING.value,
            source=source,
            batch_run_id=batch_run_id,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def get(self, record_id: int, for_update: bool = False) -> PayoutRecord | None:
        stmt = select(PayoutRecord).where(PayoutRecord.id == record_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.scalar(stmt)

    def has_pending(self, account_id: int) -> bool:
        return self.session.scalar(
            select(func.count(PayoutRecord.id)).where(
                PayoutRecord.account_id == account_id,
                PayoutRecord.status == PayoutStatus.PENDING.value,
            )
        ) > 0

    def list_for_account(self, account_id: int, limit: int = 50) -> list[PayoutRecord]:
        return list(self.session.scalars(
            select(PayoutRecord)
            .where(PayoutRecord.account_id == account_id)
            .order_by(PayoutRecord.created_at.desc(), PayoutRecord.id.desc())
            .limit(limit)
        ))

    def mark_completed(self, record_id: int, transfer_id: str) -> bool:
        """pending -> completed. Returns False if the record already left pending."""
        result = self.session.execute(
            update(PayoutRecord)
            .where(PayoutRecord.id == record_id, PayoutRecord.status == PayoutStatus.PENDING.value)
            .values(
                status=PayoutStatus.COMPLETED.value,
                destination_transfer_id=transfer_id,
                completed_at=utcnow(),
            )
        )
        return result.rowcount == 1

    def mark_failed(self, record_id: int, reason: str, reviewed_by: str | None = None) -> bool:
        result = self.session.execute(
            update(PayoutRecord)
            .where(PayoutRecord.id == record_id, PayoutRecord.status == PayoutStatus.PENDING.value)
            .values(status=PayoutStatus.FAILED.value, failure_reason=reason[:2000], reviewed_by=reviewed_by)
        )
        return result.rowcount == 1


class CommissionRepository:
    """Repository for the platform CommissionRecord ledger."""

    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        source_type: str,
        reference_id: str,
        amount: Decimal,
        beneficiary_email: str,
        status: str = "completed",
    ) -> CommissionRecord:
        """Insert a commission line. Raises IntegrityError on a duplicate reference."""
        record = CommissionRecord(
            source_type=source_type,
            reference_id=str(reference_id),
            amount=amount,
            beneficiary_email=beneficiary_email,
            status=status,
        )
        self.session.add(record)
        self.session.flush()
        return record

    def list_recent(self, source_type: str | None = None, limit: int = 100) -> list[CommissionRecord]:
        stmt = select(CommissionRecord)
        if source_type:
            stmt = stmt.where(CommissionRecord.source_type == source_type)
        return list(self.session.scalars(
            stmt.order_by(CommissionRecord.created_at.desc(), CommissionRecord.id.desc()).limit(limit)
        ))

    def total_by_source(self) -> dict[str, Decimal]:
        rows = self.session.execute(
            select(CommissionRecord.source_type, func.sum(CommissionRecord.amount))
            .group_by(CommissionRecord.source_type)
        ).all()
        return {source: Decimal(str(total or 0)) for source, total in rows}


class NotificationRepository:
    """Repository for Notification entities."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, user_email: str, type: str, title: str, message: str) -> Notification:
        notification = Notification(user_email=user_email, type=type, title=title, message=message)
        self.session.add(notification)
        self.session.flush()
        return notification

    def list_for_user(self, user_email: str) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_email == user_email)
        return list(self.session.scalars(stmt.order_by(Notification.id)))


def lease_window(seconds: int) -> tuple[datetime, datetime]:
    """Current time and the end of a claim lease starting now."""
    now = utcnow()
    return now, now + timedelta(seconds=seconds)
