"""Payout API v1 endpoints."""

from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from refengine.api.deps import get_payout_batcher, get_payout_service
from refengine.auth import Principal, require_admin, require_auth
from refengine.payouts import PayoutBatcher, PayoutService

router = APIRouter(prefix="/payouts", tags=["payouts"])


# ==================== MODELS ====================


class AutomatedPayoutRequest(BaseModel):
    """Batch payout parameters."""
    threshold: Decimal | None = Field(default=None, ge=0)
    auto_approve: bool = True
    run_id: str | None = Field(default=None, max_length=64)


class PayoutRequest(BaseModel):
    """Single payout request."""
    amount: Decimal = Field(gt=0, decimal_places=2)


class ReviewRequest(BaseModel):
    """Admin decision on a pending payout."""
    action: Literal["approve", "reject"]
    notes: str | None = Field(default=None, max_length=1000)


# ==================== ENDPOINTS ====================


@router.post("/automated")
def run_automated_payouts(
    body: AutomatedPayoutRequest,
    principal: Principal = Depends(require_admin),
    batcher: PayoutBatcher = Depends(get_payout_batcher),
):
    """Run a payout batch over every account above the threshold."""
    return batcher.run(threshold=body.threshold, auto_approve=body.auto_approve, run_id=body.run_id)


@router.post("/request")
def request_payout(
    body: PayoutRequest,
    principal: Principal = Depends(require_auth),
    payouts: PayoutService = Depends(get_payout_service),
):
    """Transfer part of the caller's earnings to their payout destination."""
    return payouts.request_payout(principal.email, body.amount)


@router.post("/{payout_id}/review")
def review_payout(
    payout_id: int,
    body: ReviewRequest,
    principal: Principal = Depends(require_admin),
    payouts: PayoutService = Depends(get_payout_service),
):
    """Approve or reject a payout waiting for review."""
    return payouts.review_payout(payout_id, body.action, reviewer=principal.email, notes=body.notes)


@router.get("")
def list_payouts(
    principal: Principal = Depends(require_auth),
    payouts: PayoutService = Depends(get_payout_service),
):
    """The caller's payout history, newest first."""
    return {"payouts": payouts.list_payouts(principal.email)}
