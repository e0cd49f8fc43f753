"""Inbound payment-provider webhooks."""

from refengine.webhooks.handlers import PURCHASE_EVENT_TYPES
from refengine.webhooks.processor import WebhookProcessor

__all__ = ["PURCHASE_EVENT_TYPES", "WebhookProcessor"]
