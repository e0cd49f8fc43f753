"""Referral API v1 endpoints."""

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from refengine.api.deps import get_referral_service
from refengine.api.rate_limit import VALIDATE_CODE_LIMIT, limiter
from refengine.auth import Principal, require_auth
from refengine.referral import ReferralService

router = APIRouter(prefix="/referral", tags=["referral"])


# ==================== MODELS ====================


class ReferralCodeResponse(BaseModel):
    """Response with the caller's referral code."""
    code: str
    link: str


class TrackSignupRequest(BaseModel):
    """Attribute the caller's signup to a referral code."""
    referral_code: str = Field(default="", max_length=20)


class ValidateCodeRequest(BaseModel):
    """Request to validate a referral code."""
    code: str = Field(default="", max_length=20)
    customer_email: str | None = None


class ValidateCodeResponse(BaseModel):
    """Response from code validation."""
    valid: bool
    referral_code: str | None = None
    referrer_name: str | None = None
    error: str | None = None


# ==================== ENDPOINTS ====================


@router.get("/code", response_model=ReferralCodeResponse)
def get_referral_code(
    principal: Principal = Depends(require_auth),
    referrals: ReferralService = Depends(get_referral_service),
):
    """Get the caller's referral code, creating one on first use."""
    code = referrals.get_or_create_code(principal.email)
    return ReferralCodeResponse(code=code, link=referrals.referral_link(code))


@router.get("/stats")
def get_referral_stats(
    principal: Principal = Depends(require_auth),
    referrals: ReferralService = Depends(get_referral_service),
):
    """Referral counts by status and level, plus earnings."""
    return referrals.get_referral_stats(principal.email)


@router.post("/track-signup")
def track_signup(
    body: TrackSignupRequest,
    principal: Principal = Depends(require_auth),
    referrals: ReferralService = Depends(get_referral_service),
):
    """Pay signup commissions up the caller's new referral chain.

    Safe to call more than once: a repeated call reports
    ``already_tracked`` and pays nothing.
    """
    return referrals.track_signup(principal.email, body.referral_code)


@router.post("/validate", response_model=ValidateCodeResponse)
@limiter.limit(VALIDATE_CODE_LIMIT)
def validate_referral_code(
    request: Request,
    body: ValidateCodeRequest,
    referrals: ReferralService = Depends(get_referral_service),
):
    """Validate a referral code.

    Used at signup and checkout to check a code and personalize the page
    with the referrer's first name.
    """
    return ValidateCodeResponse(**referrals.validate_code(body.code, body.customer_email))
