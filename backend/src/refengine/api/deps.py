"""Service wiring for the API.

Every component gets its database, gateway and notifier from these
dependencies; tests swap them through ``app.dependency_overrides``.
"""

from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache

from fastapi import Depends

from refengine.notifications import Notifier
from refengine.payments import PaymentGateway, StripeGateway
from refengine.payouts import PayoutBatcher, PayoutService
from refengine.referral import ReferralService
from refengine.storage.db import Database, db
from refengine.tiers import TierService
from refengine.webhooks import WebhookProcessor

# Notifications run beside the request and are never awaited
notification_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify")


def get_database() -> Database:
    return db


@lru_cache
def get_gateway() -> PaymentGateway:
    return StripeGateway()


def get_notifier(database: Database = Depends(get_database)) -> Notifier:
    return Notifier(database, executor=notification_executor)


def get_tier_service(
    database: Database = Depends(get_database),
    notifier: Notifier = Depends(get_notifier),
) -> TierService:
    return TierService(database, notifier)


def get_referral_service(
    database: Database = Depends(get_database),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
    tier_service: TierService = Depends(get_tier_service),
) -> ReferralService:
    return ReferralService(database, gateway, notifier, tier_service=tier_service)


def get_webhook_processor(
    database: Database = Depends(get_database),
    gateway: PaymentGateway = Depends(get_gateway),
    referral_service: ReferralService = Depends(get_referral_service),
) -> WebhookProcessor:
    return WebhookProcessor(database, gateway, referral_service)


def get_payout_service(
    database: Database = Depends(get_database),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> PayoutService:
    return PayoutService(database, gateway, notifier)


def get_payout_batcher(
    database: Database = Depends(get_database),
    payouts: PayoutService = Depends(get_payout_service),
) -> PayoutBatcher:
    return PayoutBatcher(database, payouts)
