"""
Tests for payouts.

Tests cover:
- Batch isolation: one failing account never blocks the rest
- Threshold, destination and review routing
- Re-running a batch id
- Single payout validation and admin review
- Destination status sync
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from refengine.errors import InsufficientPlatformBalance, NotFoundError, ValidationError
from refengine.payments.gateway import DestinationAccount
from refengine.payouts import PayoutBatcher, PayoutService
from refengine.storage.models import DestinationStatus, PayoutRecord
from refengine.storage.repo import PayoutRepository


def payout_records(database, email=None):
    with database.session() as session:
        stmt = select(PayoutRecord).order_by(PayoutRecord.id)
        if email:
            stmt = stmt.where(PayoutRecord.account_email == email)
        return list(session.scalars(stmt))


@pytest.fixture
def payouts(database, gateway, notifier):
    return PayoutService(database, gateway, notifier)


@pytest.fixture
def batcher(database, payouts):
    return PayoutBatcher(database, payouts)


class TestBatch:
    """Test batch payouts."""

    def test_failing_account_does_not_block_others(self, batcher, payable_account, gateway, load_account):
        payable_account("a@x.io", "150.00")
        payable_account("b@x.io", "200.00", destination="acct_broken")
        payable_account("c@x.io", "120.00")
        gateway.failing_destinations.add("acct_broken")

        summary = batcher.run(threshold=Decimal("50"), auto_approve=True)

        assert summary["processed"] == 3
        assert summary["transferred"] == 2
        assert summary["failed"] == 1
        assert summary["total_transferred"] == "270.00"
        assert summary["errors"] == [
            {"account": "b@x.io", "reason": "Destination account cannot receive transfers"},
        ]
        assert load_account("a@x.io").total_earnings == Decimal("0.00")
        assert load_account("b@x.io").total_earnings == Decimal("200.00")
        assert load_account("c@x.io").total_earnings == Decimal("0.00")

    def test_failed_transfer_is_recorded(self, batcher, payable_account, gateway, database):
        payable_account("b@x.io", "200.00", destination="acct_broken")
        gateway.failing_destinations.add("acct_broken")

        batcher.run(threshold=Decimal("50"))

        [record] = payout_records(database)
        assert record.status == "failed"
        assert "cannot receive" in record.failure_reason

    def test_below_threshold_is_skipped(self, batcher, payable_account, gateway):
        payable_account("a@x.io", "20.00")

        summary = batcher.run(threshold=Decimal("50"))

        assert summary["skipped"] == 1
        assert gateway.transfers == []

    def test_missing_destination_is_rejected(self, batcher, make_account, gateway):
        make_account("a@x.io", total_earnings=Decimal("500"))
        make_account(
            "b@x.io",
            total_earnings=Decimal("500"),
            payout_destination_id="acct_b",
            payout_destination_status=DestinationStatus.RESTRICTED.value,
        )

        summary = batcher.run(threshold=Decimal("50"))

        assert summary["rejected"] == 2
        assert {e["reason"] for e in summary["errors"]} == {
            "no_payout_destination",
            "payout_destination_not_verified",
        }
        assert gateway.transfers == []

    def test_small_balances_wait_for_review(self, batcher, payable_account, gateway, database):
        payable_account("a@x.io", "60.00")

        summary = batcher.run(threshold=Decimal("50"), auto_approve=True)

        assert summary["pending_review"] == 1
        assert gateway.transfers == []
        [record] = payout_records(database)
        assert record.status == "pending"

    def test_review_mode_queues_everything(self, batcher, payable_account, gateway):
        payable_account("a@x.io", "500.00")

        summary = batcher.run(threshold=Decimal("50"), auto_approve=False)

        assert summary["pending_review"] == 1
        assert gateway.transfers == []

    def test_rerun_of_same_batch_pays_nothing_twice(self, batcher, payable_account, gateway, make_account):
        payable_account("a@x.io", "150.00")

        batcher.run(threshold=Decimal("50"), run_id="run-1")
        summary = batcher.run(threshold=Decimal("50"), run_id="run-1")

        assert len(gateway.transfers) == 1
        assert summary["transferred"] == 0

    def test_transfer_uses_record_idempotency_key(self, batcher, payable_account, gateway, database):
        payable_account("a@x.io", "150.00")

        batcher.run(threshold=Decimal("50"))

        [record] = payout_records(database)
        assert gateway.transfers[0]["idempotency_key"] == f"payout-{record.id}"
        assert record.destination_transfer_id is not None


class TestRequestPayout:
    """Test single payouts."""

    def test_successful_request(self, payouts, payable_account, gateway, load_account):
        payable_account("a@x.io", "30.00")

        result = payouts.request_payout("a@x.io", Decimal("25"))

        assert result["status"] == "completed"
        assert result["amount"] == "25.00"
        assert result["transfer_id"].startswith("tr_")
        assert result["estimated_arrival"]
        assert load_account("a@x.io").total_earnings == Decimal("5.00")

    def test_below_minimum(self, payouts, payable_account, gateway):
        payable_account("a@x.io", "30.00")

        with pytest.raises(ValidationError) as exc:
            payouts.request_payout("a@x.io", Decimal("4.99"))

        assert exc.value.error_code == "below_minimum_payout"
        assert gateway.transfers == []

    def test_missing_destination(self, payouts, make_account, gateway):
        make_account("a@x.io", total_earnings=Decimal("30"))

        with pytest.raises(ValidationError) as exc:
            payouts.request_payout("a@x.io", Decimal("10"))

        assert exc.value.error_code == "no_payout_destination"

    def test_more_than_balance(self, payouts, payable_account):
        payable_account("a@x.io", "30.00")

        with pytest.raises(ValidationError) as exc:
            payouts.request_payout("a@x.io", Decimal("31"))

        assert exc.value.error_code == "insufficient_balance"

    def test_platform_balance_too_low(self, payouts, payable_account, gateway, database):
        payable_account("a@x.io", "30.00")
        gateway.available = Decimal("10.00")

        with pytest.raises(InsufficientPlatformBalance):
            payouts.request_payout("a@x.io", Decimal("20"))

        assert payout_records(database) == []

    def test_one_pending_payout_at_a_time(self, payouts, batcher, payable_account):
        payable_account("a@x.io", "60.00")
        batcher.run(threshold=Decimal("50"), auto_approve=False)

        with pytest.raises(ValidationError) as exc:
            payouts.request_payout("a@x.io", Decimal("10"))

        assert exc.value.error_code == "payout_pending"

    def test_pending_payout_missed_by_check_is_still_refused(
        self, payouts, batcher, payable_account, gateway, database, monkeypatch
    ):
        """Two writers that both pass the pending check cannot both queue a payout."""
        payable_account("a@x.io", "60.00")
        batcher.run(threshold=Decimal("50"), auto_approve=False)
        monkeypatch.setattr(PayoutRepository, "has_pending", lambda self, account_id: False)

        with pytest.raises(ValidationError) as exc:
            payouts.request_payout("a@x.io", Decimal("10"))

        assert exc.value.error_code == "payout_pending"
        assert gateway.transfers == []
        assert [r.status for r in payout_records(database)] == ["pending"]

    def test_batch_skips_account_queued_behind_its_check(
        self, batcher, payable_account, gateway, database, load_account, monkeypatch
    ):
        payable_account("a@x.io", "60.00")
        batcher.run(threshold=Decimal("50"), auto_approve=False)
        monkeypatch.setattr(PayoutRepository, "has_pending", lambda self, account_id: False)

        summary = batcher.run(threshold=Decimal("50"), auto_approve=True)

        assert summary["skipped"] == 1
        assert summary["transferred"] == 0
        assert gateway.transfers == []
        assert len(payout_records(database)) == 1
        assert load_account("a@x.io").total_earnings == Decimal("60.00")


class TestReview:
    """Test admin review of queued payouts."""

    @pytest.fixture
    def queued(self, batcher, payable_account, database):
        payable_account("a@x.io", "60.00")
        batcher.run(threshold=Decimal("50"), auto_approve=False)
        [record] = payout_records(database)
        return record

    def test_approve_transfers(self, payouts, queued, gateway, load_account, database):
        result = payouts.review_payout(queued.id, "approve", reviewer="admin@x.io")

        assert result["status"] == "completed"
        assert len(gateway.transfers) == 1
        assert load_account("a@x.io").total_earnings == Decimal("0.00")
        [record] = payout_records(database)
        assert record.reviewed_by == "admin@x.io"

    def test_reject_keeps_balance(self, payouts, queued, gateway, load_account, database):
        result = payouts.review_payout(queued.id, "reject", reviewer="admin@x.io", notes="suspicious")

        assert result["status"] == "failed"
        assert gateway.transfers == []
        assert load_account("a@x.io").total_earnings == Decimal("60.00")
        [record] = payout_records(database)
        assert record.failure_reason == "rejected_by_admin: suspicious"

    def test_cannot_review_twice(self, payouts, queued):
        payouts.review_payout(queued.id, "reject", reviewer="admin@x.io")

        with pytest.raises(ValidationError) as exc:
            payouts.review_payout(queued.id, "approve", reviewer="admin@x.io")

        assert exc.value.error_code == "payout_not_pending"

    def test_unknown_payout(self, payouts):
        with pytest.raises(NotFoundError):
            payouts.review_payout(999, "approve", reviewer="admin@x.io")


class TestDestinationSync:
    """Test payout destination status refresh."""

    def test_sync_sets_status(self, payouts, make_account, gateway, load_account):
        make_account("a@x.io", payout_destination_id="acct_a")
        make_account("b@x.io", payout_destination_id="acct_b")
        gateway.destinations["acct_a"] = DestinationAccount("acct_a", payouts_enabled=True, details_submitted=True)
        gateway.destinations["acct_b"] = DestinationAccount(
            "acct_b", payouts_enabled=False, details_submitted=True, issues=["Requirements due: external_account"]
        )

        result = payouts.sync_destination_status()

        assert result["checked"] == 2
        assert load_account("a@x.io").payout_destination_status == "verified"
        assert load_account("b@x.io").payout_destination_status == "restricted"

    def test_gateway_error_is_reported(self, payouts, make_account, load_account):
        make_account("a@x.io", payout_destination_id="acct_missing")

        result = payouts.sync_destination_status("a@x.io")

        assert "error" in result["results"][0]
        assert load_account("a@x.io").payout_destination_status == "none"
