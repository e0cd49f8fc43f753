"""Payment gateway interface.

Components receive a ``PaymentGateway`` explicitly; there is no process-wide
client. ``StripeGateway`` is the production implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> int:
    """Dollars to integer cents."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int | None) -> Decimal:
    """Integer cents to dollars."""
    return (Decimal(cents or 0) / 100).quantize(CENT)


@dataclass
class GatewayEvent:
    """A verified webhook event."""
    id: str
    type: str
    data: dict[str, Any]


@dataclass
class Transfer:
    id: str
    amount: Decimal
    destination: str
    arrival_date: str | None = None


@dataclass
class BalanceCredit:
    id: str
    customer_id: str
    amount: Decimal


@dataclass
class DestinationAccount:
    id: str
    payouts_enabled: bool
    details_submitted: bool
    issues: list[str] = field(default_factory=list)

    @property
    def can_receive_payouts(self) -> bool:
        return self.payouts_enabled and self.details_submitted


class PaymentGateway(ABC):
    """Opaque interface to the external payment provider.

    All methods raise ``GatewayError`` (or ``GatewayTimeout``) on failure.
    """

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        """Verify a signed webhook payload. Raises ``InvalidSignature``."""

    @abstractmethod
    def credit_customer_balance(
        self,
        customer_id: str,
        amount: Decimal,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> BalanceCredit:
        """Issue a reward as a customer balance credit."""

    @abstractmethod
    def create_transfer(
        self,
        destination: str,
        amount: Decimal,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> Transfer:
        """Move funds to an external payout destination."""

    @abstractmethod
    def get_available_balance(self) -> Decimal:
        """Platform balance currently available for transfers."""

    @abstractmethod
    def retrieve_account(self, account_id: str) -> DestinationAccount:
        """Payout destination health."""
