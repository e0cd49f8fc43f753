"""Webhook processing with exactly-once effects.

Every event id is claimed before any side effect runs. A claim is a row in
``webhook_events`` with a lease; the lease expires so an event whose
delivery crashed mid-way is picked up again by the next redelivery, while a
delivery that is still running turns concurrent duplicates away.
"""

from datetime import timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError

from refengine.errors import EventInProgress
from refengine.logging_config import get_logger
from refengine.payments.gateway import GatewayEvent, PaymentGateway
from refengine.referral.service import ReferralService, load_program_config
from refengine.settings import settings
from refengine.storage.db import Database
from refengine.storage.models import utcnow
from refengine.storage.repo import WebhookEventRepository, lease_window
from refengine.webhooks.handlers import PURCHASE_EVENT_TYPES

logger = get_logger(__name__)

CLAIMED = "claimed"
DUPLICATE = "duplicate"


class WebhookProcessor:
    """Verify, deduplicate and dispatch payment-provider events."""

    def __init__(
        self,
        database: Database,
        gateway: PaymentGateway,
        referral_service: ReferralService,
        lease_seconds: int | None = None,
        source: str = "stripe",
    ):
        self.database = database
        self.gateway = gateway
        self.referral_service = referral_service
        self.lease_seconds = lease_seconds or settings.webhook_lease_seconds
        self.source = source

    def process(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Process one webhook delivery.

        Args:
            payload: Raw request body
            signature: Provider signature header

        Returns:
            Handler result, or ``{"duplicate": True}`` for an already
            processed event

        Raises:
            InvalidSignature: Signature did not verify
            EventInProgress: Another delivery holds the claim
        """
        event = self.gateway.construct_event(payload, signature)
        log = logger.bind(event_id=event.id, event_type=event.type)

        if self._claim(event) == DUPLICATE:
            log.info("webhook_duplicate_ignored")
            return {"duplicate": True, "event_id": event.id}

        try:
            result = self._dispatch(event)
        except Exception as e:
            log.error("webhook_processing_failed", error=str(e))
            self._release(event.id, e)
            raise

        with self.database.session() as session:
            WebhookEventRepository(session).mark_processed(event.id, result)

        log.info("webhook_processed", result=result)
        return result

    def _claim(self, event: GatewayEvent) -> str:
        now, lease_until = lease_window(self.lease_seconds)
        try:
            with self.database.session() as session:
                WebhookEventRepository(session).insert_claimed(event.id, event.type, self.source, lease_until)
            return CLAIMED
        except IntegrityError:
            pass

        with self.database.session() as session:
            repo = WebhookEventRepository(session)
            record = repo.get(event.id)
            if record is not None and record.processed:
                return DUPLICATE
            reclaimed = record is not None and repo.claim(event.id, now, lease_until)
            attempts = record.attempts if record is not None else None

        if not reclaimed:
            raise EventInProgress(event.id)

        logger.info("webhook_event_reclaimed", event_id=event.id, attempts=attempts)
        return CLAIMED

    def _dispatch(self, event: GatewayEvent) -> dict[str, Any]:
        config = load_program_config(self.database)
        if not config.enabled:
            return {"skipped": "referrals_disabled"}

        normalize = PURCHASE_EVENT_TYPES.get(event.type)
        if normalize is None:
            return {"unhandled": event.type}

        return self.referral_service.process_purchase(normalize(event.data), config)

    def _release(self, event_id: str, error: Exception) -> None:
        try:
            with self.database.session() as session:
                WebhookEventRepository(session).release(event_id, f"{type(error).__name__}: {error}")
        except Exception as e:
            logger.error("webhook_release_failed", event_id=event_id, error=str(e))

    def cleanup_old_events(self, days: int | None = None) -> int:
        """Delete processed events older than ``days``.

        Returns:
            Number of deleted records
        """
        days = settings.webhook_retention_days if days is None else days
        cutoff = utcnow() - timedelta(days=days)
        with self.database.session() as session:
            deleted = WebhookEventRepository(session).delete_processed_before(cutoff)
        logger.info("webhook_events_cleaned", deleted=deleted, days=days)
        return deleted
