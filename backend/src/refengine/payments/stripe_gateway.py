"""Stripe implementation of the payment gateway."""

import json
from decimal import Decimal
from typing import Any, Callable

import stripe
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from refengine.errors import GatewayError, GatewayTimeout, InvalidSignature, ServiceUnavailable
from refengine.logging_config import get_logger
from refengine.payments.gateway import (
    BalanceCredit,
    DestinationAccount,
    GatewayEvent,
    PaymentGateway,
    Transfer,
    from_cents,
    to_cents,
)
from refengine.settings import settings

logger = get_logger(__name__)


class StripeGateway(PaymentGateway):
    """Payment gateway backed by a dedicated ``stripe.StripeClient``.

    Every call is bounded by ``timeout`` seconds and retried on connection
    errors only. Money-moving calls always carry an idempotency key, so a
    retry can never move money twice.
    """

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        currency: str | None = None,
    ):
        self.api_key = api_key or settings.stripe_secret_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.timeout = timeout or settings.gateway_timeout_seconds
        self.max_retries = settings.gateway_max_retries if max_retries is None else max_retries
        self.currency = currency or settings.payout_currency
        self._client: stripe.StripeClient | None = None

    @property
    def client(self) -> stripe.StripeClient:
        if not self.api_key:
            raise ServiceUnavailable("Stripe not configured")
        if self._client is None:
            self._client = stripe.StripeClient(
                self.api_key,
                http_client=stripe.RequestsClient(timeout=self.timeout),
                max_network_retries=0,
            )
        return self._client

    def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run one Stripe call with bounded retries and error translation."""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type(stripe.APIConnectionError),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    return fn(*args, **kwargs)
        except stripe.APIConnectionError as e:
            logger.error("stripe_connection_failed", operation=operation, error=str(e))
            raise GatewayTimeout(f"Payment gateway unreachable during {operation}")
        except stripe.StripeError as e:
            logger.error(
                "stripe_call_failed",
                operation=operation,
                code=e.code,
                error=e.user_message or str(e),
            )
            raise GatewayError(e.user_message or str(e), gateway_code=e.code)

    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        """Verify and parse a Stripe webhook event.

        Args:
            payload: Raw request body
            signature: Stripe-Signature header value

        Returns:
            Verified event

        Raises:
            ServiceUnavailable: If the webhook secret is not configured
            InvalidSignature: If the signature is invalid
        """
        if not self.webhook_secret:
            raise ServiceUnavailable("Webhooks not configured")
        if not signature:
            raise InvalidSignature("No signature")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (stripe.SignatureVerificationError, ValueError):
            raise InvalidSignature("Invalid signature")

        body = json.loads(payload)
        return GatewayEvent(
            id=body["id"],
            type=body["type"],
            data=body.get("data", {}).get("object", {}),
        )

    def credit_customer_balance(
        self,
        customer_id: str,
        amount: Decimal,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> BalanceCredit:
        txn = self._call(
            "credit_customer_balance",
            self.client.customers.balance_transactions.create,
            customer_id,
            params={
                "amount": -to_cents(amount),  # negative = credit
                "currency": self.currency,
                "description": description,
                "metadata": metadata,
            },
            options={"idempotency_key": idempotency_key},
        )
        logger.info("stripe_balance_credited", customer_id=customer_id, amount=str(amount), txn_id=txn.id)
        return BalanceCredit(id=txn.id, customer_id=customer_id, amount=amount)

    def create_transfer(
        self,
        destination: str,
        amount: Decimal,
        description: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> Transfer:
        transfer = self._call(
            "create_transfer",
            self.client.transfers.create,
            params={
                "amount": to_cents(amount),
                "currency": self.currency,
                "destination": destination,
                "description": description,
                "metadata": metadata,
            },
            options={"idempotency_key": idempotency_key},
        )
        logger.info("stripe_transfer_created", destination=destination, amount=str(amount), transfer_id=transfer.id)
        return Transfer(id=transfer.id, amount=amount, destination=destination)

    def get_available_balance(self) -> Decimal:
        balance = self._call("retrieve_balance", self.client.balance.retrieve)
        return sum(
            (from_cents(entry.amount) for entry in balance.available if entry.currency == self.currency),
            Decimal("0"),
        )

    def retrieve_account(self, account_id: str) -> DestinationAccount:
        account = self._call("retrieve_account", self.client.accounts.retrieve, account_id)

        issues = []
        requirements = getattr(account, "requirements", None)
        if requirements is not None:
            if requirements.disabled_reason:
                issues.append(f"Disabled: {requirements.disabled_reason}")
            if requirements.currently_due:
                issues.append(f"Requirements due: {', '.join(requirements.currently_due)}")

        return DestinationAccount(
            id=account.id,
            payouts_enabled=bool(account.payouts_enabled),
            details_submitted=bool(account.details_submitted),
            issues=issues,
        )
