"""Single payouts, admin review and payout destination health."""

from datetime import timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from refengine.errors import (
    AccountNotFound,
    GatewayError,
    InsufficientPlatformBalance,
    NotFoundError,
    ServiceUnavailable,
    ValidationError,
)
from refengine.logging_config import get_logger
from refengine.notifications import Notifier
from refengine.payments.gateway import PaymentGateway, Transfer
from refengine.referral.commission import money
from refengine.settings import settings
from refengine.storage.db import Database
from refengine.storage.models import Account, DestinationStatus, PayoutRecord, PayoutStatus, utcnow
from refengine.storage.repo import AccountRepository, PayoutRepository

logger = get_logger(__name__)

REVIEW_ACTIONS = ("approve", "reject")


def check_destination(account: Account) -> None:
    """Raise unless the account can receive a transfer."""
    if not account.payout_destination_id:
        raise ValidationError("No payout destination connected", "no_payout_destination")
    if account.payout_destination_status != DestinationStatus.VERIFIED.value:
        raise ValidationError("Payout destination is not verified", "payout_destination_not_verified")


class PayoutService:
    """Move earnings to payout destinations.

    A transfer always follows the same sequence: a ``pending`` PayoutRecord
    is committed first, the gateway is called with ``payout-{record id}`` as
    idempotency key, and the balance is decremented only when the record
    moves to ``completed``.
    """

    def __init__(
        self,
        database: Database,
        gateway: PaymentGateway | None,
        notifier: Notifier | None = None,
    ):
        self.database = database
        self.gateway = gateway
        self.notifier = notifier

    # ==================== TRANSFER SEQUENCE ====================

    def execute_transfer(self, record: PayoutRecord) -> Transfer:
        """Run the gateway transfer for a committed pending record.

        Raises:
            GatewayError: Transfer failed; the record is marked failed
        """
        if self.gateway is None:
            raise ServiceUnavailable("Payment gateway not configured")

        try:
            transfer = self.gateway.create_transfer(
                destination=record.destination_id,
                amount=record.amount,
                description="Referral earnings payout",
                metadata={"payout_id": str(record.id), "account": record.account_email},
                idempotency_key=f"payout-{record.id}",
            )
        except GatewayError as e:
            with self.database.session() as session:
                PayoutRepository(session).mark_failed(record.id, e.message)
            logger.warning(
                "payout_failed",
                payout_id=record.id,
                account=record.account_email,
                gateway_code=e.gateway_code,
                error=e.message,
            )
            self._notify(
                record.account_email,
                "Payout failed",
                f"Your payout of ${record.amount} could not be processed: {e.message}",
            )
            raise

        with self.database.session() as session:
            completed = PayoutRepository(session).mark_completed(record.id, transfer.id)
            if completed:
                AccountRepository(session).subtract_earnings(record.account_id, record.amount)

        if not completed:
            logger.error("payout_state_conflict", payout_id=record.id, transfer_id=transfer.id)
            return transfer

        logger.info(
            "payout_completed",
            payout_id=record.id,
            account=record.account_email,
            amount=str(record.amount),
            transfer_id=transfer.id,
        )
        self._notify(
            record.account_email,
            "Payout sent",
            f"Your payout of ${record.amount} has been sent to your connected account.",
        )
        return transfer

    # ==================== SINGLE PAYOUT ====================

    def _check_request(self, account: Account, amount: Decimal, payouts: PayoutRepository) -> None:
        check_destination(account)
        if amount > account.total_earnings:
            raise ValidationError(
                f"Insufficient balance. Available: ${account.total_earnings}",
                "insufficient_balance",
            )
        if payouts.has_pending(account.id):
            raise ValidationError("You already have a pending payout request", "payout_pending")

    def request_payout(self, email: str, amount: Decimal) -> dict[str, Any]:
        """Transfer part of an account's earnings on request.

        Args:
            email: Requesting account
            amount: Dollars to transfer

        Returns:
            Dict with payout_id, transfer_id, amount, status and estimated_arrival

        Raises:
            ValidationError: Below minimum, no destination, insufficient
                earnings, or another payout pending
            InsufficientPlatformBalance: Gateway balance cannot cover it
            GatewayError: Transfer failed
        """
        amount = money(amount)
        minimum = money(settings.payout_request_minimum)
        if amount < minimum:
            raise ValidationError(f"Minimum payout is ${minimum}", "below_minimum_payout")
        if self.gateway is None:
            raise ServiceUnavailable("Payment gateway not configured")

        with self.database.session() as session:
            account = AccountRepository(session).get_by_email(email)
            if account is None:
                raise AccountNotFound(email)
            self._check_request(account, amount, PayoutRepository(session))

        available = self.gateway.get_available_balance()
        if available < amount:
            logger.warning("payout_platform_balance_low", required=str(amount), available=str(available))
            raise InsufficientPlatformBalance(amount, available)

        try:
            with self.database.session() as session:
                payouts = PayoutRepository(session)
                account = AccountRepository(session).get_by_email(email, for_update=True)
                self._check_request(account, amount, payouts)
                record = payouts.create(account, amount, source="request")
        except IntegrityError:
            # A concurrent request or batch queued a payout for this account first
            raise ValidationError("You already have a pending payout request", "payout_pending")

        logger.info("payout_requested", payout_id=record.id, account=record.account_email, amount=str(amount))
        transfer = self.execute_transfer(record)

        arrival = utcnow() + timedelta(days=settings.payout_settlement_days)
        return {
            "success": True,
            "payout_id": record.id,
            "transfer_id": transfer.id,
            "amount": str(amount),
            "status": PayoutStatus.COMPLETED.value,
            "estimated_arrival": transfer.arrival_date or arrival.date().isoformat(),
        }

    # ==================== REVIEW ====================

    def review_payout(self, record_id: int, action: str, reviewer: str, notes: str | None = None) -> dict[str, Any]:
        """Approve or reject a payout awaiting manual review.

        Rejection never touches the balance; balances only move when a
        record completes.
        """
        if action not in REVIEW_ACTIONS:
            raise ValidationError(f"Unknown review action: {action}", "invalid_action")

        with self.database.session() as session:
            payouts = PayoutRepository(session)
            record = payouts.get(record_id, for_update=True)
            if record is None:
                raise NotFoundError(f"Payout {record_id} not found", "payout_not_found")
            if record.status != PayoutStatus.PENDING.value:
                raise ValidationError(f"Payout {record_id} is already {record.status}", "payout_not_pending")

            if action == "reject":
                reason = f"rejected_by_admin: {notes}" if notes else "rejected_by_admin"
                payouts.mark_failed(record.id, reason, reviewed_by=reviewer)
            else:
                account = AccountRepository(session).lock(record.account_id)
                if account.total_earnings < record.amount:
                    payouts.mark_failed(record.id, "insufficient_balance", reviewed_by=reviewer)
                    action = "insufficient_balance"
                else:
                    record.reviewed_by = reviewer

        logger.info("payout_reviewed", payout_id=record_id, action=action, reviewer=reviewer)

        if action == "reject":
            self._notify(record.account_email, "Payout rejected", f"Your payout of ${record.amount} was rejected.")
            return {"success": True, "payout_id": record_id, "status": PayoutStatus.FAILED.value}
        if action == "insufficient_balance":
            raise ValidationError("Account balance no longer covers this payout", "insufficient_balance")

        transfer = self.execute_transfer(record)
        return {
            "success": True,
            "payout_id": record_id,
            "status": PayoutStatus.COMPLETED.value,
            "transfer_id": transfer.id,
        }

    # ==================== DESTINATIONS ====================

    def sync_destination_status(self, email: str | None = None) -> dict[str, Any]:
        """Refresh payout destination status from the gateway.

        Args:
            email: One account, or every account with a destination
        """
        if self.gateway is None:
            raise ServiceUnavailable("Payment gateway not configured")

        with self.database.session() as session:
            accounts = AccountRepository(session)
            if email:
                account = accounts.get_by_email(email)
                if account is None:
                    raise AccountNotFound(email)
                targets = [account] if account.payout_destination_id else []
            else:
                targets = accounts.list_with_destination()
            targets = [(a.id, a.email, a.payout_destination_id) for a in targets]

        results = []
        for account_id, account_email, destination_id in targets:
            try:
                destination = self.gateway.retrieve_account(destination_id)
            except GatewayError as e:
                results.append({"account": account_email, "error": e.message})
                continue

            status = (
                DestinationStatus.VERIFIED.value
                if destination.can_receive_payouts
                else DestinationStatus.RESTRICTED.value
            )
            with self.database.session() as session:
                account = AccountRepository(session).lock(account_id)
                account.payout_destination_status = status

            logger.info("payout_destination_synced", account=account_email, status=status)
            results.append({"account": account_email, "status": status, "issues": destination.issues})

        return {"checked": len(results), "results": results}

    def list_payouts(self, email: str, limit: int = 50) -> list[dict[str, Any]]:
        with self.database.session() as session:
            account = AccountRepository(session).get_by_email(email)
            if account is None:
                raise AccountNotFound(email)
            return [record.to_dict() for record in PayoutRepository(session).list_for_account(account.id, limit)]

    def _notify(self, email: str, title: str, message: str) -> None:
        if self.notifier is not None:
            self.notifier.notify(email, "payout", title, message)
