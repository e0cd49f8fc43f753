"""Application settings and configuration."""

import sys
from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_JWT_DEFAULTS = {"change-me-in-production", "secret", "your_jwt_secret_key_here_at_least_32_characters"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "refengine"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console | json
    allowed_origins: str = "http://localhost:3000"
    public_base_url: str = "https://encirclenet.net"

    # JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # Database
    database_url: str = "sqlite:///./refengine.db"

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    payout_currency: str = "usd"

    # Gateway calls
    gateway_timeout_seconds: float = 20.0
    gateway_max_retries: int = 2

    # Signup commissions (per level, plus the bonus for the new account)
    signup_commission_level1: Decimal = Decimal("5.00")
    signup_commission_level2: Decimal = Decimal("2.00")
    signup_commission_level3: Decimal = Decimal("1.00")
    referred_signup_bonus: Decimal = Decimal("1.00")

    # Purchase referral defaults (used when no ReferralConfig row exists)
    referral_enabled: bool = True
    referral_reward_type: str = "percentage"
    referral_reward_value: Decimal = Decimal("10")
    referral_minimum_purchase: Decimal = Decimal("0")

    # Payouts
    payout_batch_threshold: Decimal = Decimal("50.00")
    payout_auto_approve_minimum: Decimal = Decimal("100.00")
    payout_request_minimum: Decimal = Decimal("5.00")
    payout_settlement_days: int = 2

    # Webhooks
    webhook_lease_seconds: int = Field(default=120, description="Claim lease for in-flight webhook events")
    webhook_retention_days: int = 30


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.jwt_secret_key in _INSECURE_JWT_DEFAULTS or len(settings.jwt_secret_key) < 32:
        print(
            "\n❌  FATAL: JWT_SECRET_KEY is insecure or too short (min 32 chars).\n"
            "   Set a strong random value:  openssl rand -hex 32\n",
            file=sys.stderr,
        )
        sys.exit(1)
