"""Tier API v1 endpoints."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from refengine.api.deps import get_tier_service
from refengine.auth import Principal, require_admin, require_auth, resolve_target
from refengine.tiers import TierService

router = APIRouter(prefix="/tiers", tags=["tiers"])


# ==================== MODELS ====================


class CalculateTierRequest(BaseModel):
    """Recompute a tier; defaults to the caller's own account."""
    user_email: str | None = None


# ==================== ENDPOINTS ====================


@router.post("/calculate")
def calculate_tier(
    body: CalculateTierRequest | None = None,
    principal: Principal = Depends(require_auth),
    tiers: TierService = Depends(get_tier_service),
):
    """Recalculate a referral tier.

    Owners recompute their own tier; admins and the service role may name
    any account.
    """
    email = resolve_target(principal, body.user_email if body else None)
    return tiers.recalculate(email)


@router.get("")
def list_tiers(tiers: TierService = Depends(get_tier_service)):
    """Active tiers, lowest first."""
    return {"tiers": tiers.list_tiers()}


@router.post("/defaults")
def install_default_tiers(
    principal: Principal = Depends(require_admin),
    tiers: TierService = Depends(get_tier_service),
):
    """Install the default tier ladder when none is configured."""
    return tiers.install_default_tiers()
