"""Shared fixtures: a fresh SQLite ledger per test and a recording gateway."""

import json
import os
from decimal import Decimal
from itertools import count
from typing import Any

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-long-enough-0123456789")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

import pytest

from refengine.errors import GatewayError, InvalidSignature
from refengine.notifications import Notifier
from refengine.payments.gateway import (
    BalanceCredit,
    DestinationAccount,
    GatewayEvent,
    PaymentGateway,
    Transfer,
)
from refengine.referral import ReferralService
from refengine.storage.db import Database
from refengine.storage.models import Account, DestinationStatus, ReferralConfig, TierDefinition
from refengine.storage.repo import AccountRepository
from refengine.tiers import TierService

VALID_SIGNATURE = "t=1,v1=valid"


class FakeGateway(PaymentGateway):
    """In-memory gateway that records every call.

    Calls with an idempotency key seen before return the first result, like
    the real provider.
    """

    def __init__(self):
        self.credits: list[dict[str, Any]] = []
        self.transfers: list[dict[str, Any]] = []
        self.available = Decimal("100000.00")
        self.destinations: dict[str, DestinationAccount] = {}
        self.failing_destinations: set[str] = set()
        self.fail_credits = 0
        self._results: dict[str, Any] = {}
        self._ids = count(1)

    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        if signature != VALID_SIGNATURE:
            raise InvalidSignature("Invalid signature")
        body = json.loads(payload)
        return GatewayEvent(id=body["id"], type=body["type"], data=body["data"]["object"])

    def credit_customer_balance(self, customer_id, amount, description, metadata, idempotency_key):
        if self.fail_credits:
            self.fail_credits -= 1
            raise GatewayError("Card network unavailable", gateway_code="api_error")
        if idempotency_key in self._results:
            return self._results[idempotency_key]
        self.credits.append({"customer_id": customer_id, "amount": amount, "idempotency_key": idempotency_key})
        result = BalanceCredit(id=f"cbtxn_{next(self._ids)}", customer_id=customer_id, amount=amount)
        self._results[idempotency_key] = result
        return result

    def create_transfer(self, destination, amount, description, metadata, idempotency_key):
        if destination in self.failing_destinations:
            raise GatewayError("Destination account cannot receive transfers", gateway_code="account_invalid")
        if idempotency_key in self._results:
            return self._results[idempotency_key]
        self.transfers.append({"destination": destination, "amount": amount, "idempotency_key": idempotency_key})
        result = Transfer(id=f"tr_{next(self._ids)}", amount=amount, destination=destination)
        self._results[idempotency_key] = result
        return result

    def get_available_balance(self) -> Decimal:
        return self.available

    def retrieve_account(self, account_id: str) -> DestinationAccount:
        if account_id not in self.destinations:
            raise GatewayError(f"No such account: {account_id}", gateway_code="resource_missing")
        return self.destinations[account_id]


@pytest.fixture
def database(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    database.create_tables()
    yield database
    database.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier(database):
    return Notifier(database)


@pytest.fixture
def tier_service(database, notifier):
    return TierService(database, notifier)


@pytest.fixture
def referral_service(database, gateway, notifier, tier_service):
    return ReferralService(database, gateway, notifier, tier_service=tier_service)


@pytest.fixture
def make_account(database):
    """Create an account and return a detached copy."""

    def _make(email: str, **fields: Any) -> Account:
        with database.session() as session:
            return AccountRepository(session).create(email, **fields)

    return _make


@pytest.fixture
def payable_account(make_account):
    """An account with a verified payout destination and a balance."""

    def _make(email: str, balance: str, destination: str | None = None) -> Account:
        return make_account(
            email,
            total_earnings=Decimal(balance),
            payout_destination_id=destination or f"acct_{email.split('@')[0]}",
            payout_destination_status=DestinationStatus.VERIFIED.value,
        )

    return _make


@pytest.fixture
def three_tiers(database):
    """Three-rung ladder: 0, 5 ($10) and 10 ($25) referrals."""
    with database.session() as session:
        for level, minimum, bonus in ((1, 0, "0"), (2, 5, "10"), (3, 10, "25")):
            session.add(TierDefinition(
                tier_name=f"Level {level}",
                tier_level=level,
                min_referrals=minimum,
                min_commission=Decimal("0"),
                bonus_amount=Decimal(bonus),
            ))


@pytest.fixture
def purchase_config(database):
    """Percentage reward of 10% with a $50 minimum purchase."""
    with database.session() as session:
        session.add(ReferralConfig(
            enabled=True,
            reward_type="percentage",
            reward_value=Decimal("10"),
            minimum_purchase_amount=Decimal("50"),
        ))


@pytest.fixture
def load_account(database):
    """Fresh detached copy of an account."""

    def _load(email: str) -> Account:
        with database.session() as session:
            return AccountRepository(session).get_by_email(email)

    return _load
