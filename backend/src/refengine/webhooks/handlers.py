"""Normalize provider payment events into purchases.

Each supported event type carries the amount, the customer email and the
referral code in different fields; the purchase path only sees
``PurchaseEvent``.
"""

from typing import Any, Callable

from refengine.payments.gateway import from_cents
from refengine.referral.service import PurchaseEvent


def _referral_code(obj: dict[str, Any]) -> str | None:
    metadata = obj.get("metadata") or {}
    return metadata.get("referral_code") or None


def from_checkout_session(obj: dict[str, Any]) -> PurchaseEvent:
    details = obj.get("customer_details") or {}
    return PurchaseEvent(
        checkout_session_id=obj["id"],
        customer_email=obj.get("customer_email") or details.get("email"),
        amount_paid=from_cents(obj.get("amount_total")),
        referral_code=_referral_code(obj),
        customer_id=obj.get("customer"),
        payment_intent_id=obj.get("payment_intent"),
    )


def from_invoice(obj: dict[str, Any]) -> PurchaseEvent:
    return PurchaseEvent(
        checkout_session_id=obj["id"],
        customer_email=obj.get("customer_email"),
        amount_paid=from_cents(obj.get("amount_paid")),
        referral_code=_referral_code(obj),
        customer_id=obj.get("customer"),
        payment_intent_id=obj.get("payment_intent"),
    )


def from_payment_intent(obj: dict[str, Any]) -> PurchaseEvent:
    return PurchaseEvent(
        checkout_session_id=obj["id"],
        customer_email=obj.get("receipt_email"),
        amount_paid=from_cents(obj.get("amount")),
        referral_code=_referral_code(obj),
        customer_id=obj.get("customer"),
        payment_intent_id=obj["id"],
    )


PURCHASE_EVENT_TYPES: dict[str, Callable[[dict[str, Any]], PurchaseEvent]] = {
    "checkout.session.completed": from_checkout_session,
    "invoice.paid": from_invoice,
    "payment_intent.succeeded": from_payment_intent,
}
