"""Scheduled batch payouts."""

import uuid
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError

from refengine.errors import EngineError, ValidationError
from refengine.logging_config import get_logger
from refengine.payouts.service import PayoutService, check_destination
from refengine.referral.commission import money
from refengine.settings import settings
from refengine.storage.db import Database
from refengine.storage.models import PayoutRecord
from refengine.storage.repo import AccountRepository, PayoutRepository

logger = get_logger(__name__)

SKIPPED = "skipped"
REJECTED = "rejected"
PENDING_REVIEW = "pending_review"
TRANSFER = "transfer"


@dataclass
class BatchSummary:
    run_id: str
    processed: int = 0
    approved: int = 0
    transferred: int = 0
    rejected: int = 0
    skipped: int = 0
    failed: int = 0
    pending_review: int = 0
    total_transferred: Decimal = Decimal("0.00")
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_transferred"] = str(self.total_transferred)
        return data


@dataclass
class _Decision:
    outcome: str
    record: PayoutRecord | None = None
    reason: str | None = None


class PayoutBatcher:
    """Pay out every account over the threshold, one account at a time.

    A failure for one account is recorded in the summary and never stops
    the batch. Records are keyed by (run id, account), so re-running the
    same ``run_id`` cannot pay an account twice.
    """

    def __init__(self, database: Database, payouts: PayoutService):
        self.database = database
        self.payouts = payouts

    def run(
        self,
        threshold: Decimal | None = None,
        auto_approve: bool = True,
        run_id: str | None = None,
        auto_approve_minimum: Decimal | None = None,
    ) -> dict[str, Any]:
        """Run one batch.

        Args:
            threshold: Minimum balance to pay out
            auto_approve: Transfer immediately instead of queueing for review
            run_id: Batch id; generated when omitted
            auto_approve_minimum: Balances below this always go to review

        Returns:
            Batch summary dict
        """
        threshold = money(settings.payout_batch_threshold if threshold is None else threshold)
        minimum = money(settings.payout_auto_approve_minimum if auto_approve_minimum is None else auto_approve_minimum)
        summary = BatchSummary(run_id=run_id or uuid.uuid4().hex)
        log = logger.bind(run_id=summary.run_id)
        log.info("payout_batch_started", threshold=str(threshold), auto_approve=auto_approve)

        with self.database.session() as session:
            candidates = [(a.id, a.email) for a in AccountRepository(session).list_with_earnings()]

        for account_id, email in candidates:
            summary.processed += 1
            try:
                decision = self._decide(account_id, threshold, auto_approve, minimum, summary.run_id)
                if decision.outcome == SKIPPED:
                    summary.skipped += 1
                elif decision.outcome == REJECTED:
                    summary.rejected += 1
                    summary.errors.append({"account": email, "reason": decision.reason})
                elif decision.outcome == PENDING_REVIEW:
                    summary.pending_review += 1
                    log.info("payout_queued_for_review", account=email, payout_id=decision.record.id)
                else:
                    summary.approved += 1
                    self.payouts.execute_transfer(decision.record)
                    summary.transferred += 1
                    summary.total_transferred += decision.record.amount
            except EngineError as e:
                summary.failed += 1
                summary.errors.append({"account": email, "reason": e.message})
            except Exception as e:
                log.error("payout_batch_account_failed", account=email, error=str(e))
                summary.failed += 1
                summary.errors.append({"account": email, "reason": str(e)})

        log.info(
            "payout_batch_completed",
            processed=summary.processed,
            transferred=summary.transferred,
            failed=summary.failed,
            total_transferred=str(summary.total_transferred),
        )
        return {"success": True, **summary.to_dict()}

    def _decide(
        self,
        account_id: int,
        threshold: Decimal,
        auto_approve: bool,
        auto_approve_minimum: Decimal,
        run_id: str,
    ) -> _Decision:
        try:
            with self.database.session() as session:
                payouts = PayoutRepository(session)
                account = AccountRepository(session).lock(account_id)
                if account is None or account.total_earnings < threshold or account.total_earnings <= 0:
                    return _Decision(SKIPPED)
                try:
                    check_destination(account)
                except ValidationError as e:
                    return _Decision(REJECTED, reason=e.error_code)
                if payouts.has_pending(account.id):
                    return _Decision(SKIPPED, reason="payout_pending")

                record = payouts.create(account, account.total_earnings, source="batch", batch_run_id=run_id)
        except IntegrityError:
            # Already handled in this run, or a pending payout was queued concurrently
            return _Decision(SKIPPED, reason="already_in_run")

        if auto_approve and record.amount >= auto_approve_minimum:
            return _Decision(TRANSFER, record=record)
        return _Decision(PENDING_REVIEW, record=record)
