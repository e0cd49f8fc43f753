"""Webhook endpoints for the payment provider."""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from refengine.api.deps import get_webhook_processor
from refengine.logging_config import get_logger
from refengine.webhooks import WebhookProcessor

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """Handle Stripe webhook events.

    The signature is verified against the raw body before anything else
    runs. Duplicate deliveries of a processed event are acknowledged without
    side effects; a delivery racing an in-flight one gets 409 so Stripe
    retries it later.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    result = await run_in_threadpool(processor.process, payload, signature)
    return {"success": True, "result": result}
