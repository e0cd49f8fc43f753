"""Payment gateway integration."""

from refengine.payments.gateway import (
    BalanceCredit,
    DestinationAccount,
    GatewayEvent,
    PaymentGateway,
    Transfer,
)
from refengine.payments.stripe_gateway import StripeGateway

__all__ = [
    "BalanceCredit",
    "DestinationAccount",
    "GatewayEvent",
    "PaymentGateway",
    "StripeGateway",
    "Transfer",
]
