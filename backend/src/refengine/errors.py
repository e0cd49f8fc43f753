"""Error taxonomy for the commission engine.

Every error carries a stable machine-readable ``error_code`` and the HTTP
status it maps to. The API layer turns them into
``{"success": false, "message": ..., "error_code": ...}`` responses.
"""

from typing import Any


class EngineError(Exception):
    """Base class for all expected engine failures."""

    status_code = 500
    error_code = "engine_error"

    def __init__(self, message: str, error_code: str | None = None, **details: Any):
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "message": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            body["details"] = self.details
        return body


# ==================== VALIDATION ====================


class ValidationError(EngineError):
    """Rejected input. Never retried automatically."""

    status_code = 400
    error_code = "validation_error"


class SelfReferral(ValidationError):
    """An account tried to use its own referral code."""

    error_code = "self_referral"

    def __init__(self, email: str):
        super().__init__("Cannot use your own referral code", email=email)


class InvalidSignature(ValidationError):
    """Webhook payload signature did not verify."""

    error_code = "invalid_signature"


# ==================== NOT FOUND ====================


class NotFoundError(EngineError):
    """A referenced entity does not exist."""

    status_code = 400
    error_code = "not_found"


class ReferrerNotFound(NotFoundError):
    """No account owns the given referral code."""

    error_code = "invalid_referral_code"

    def __init__(self, code: str):
        self.code = code
        super().__init__("Invalid referral code", code=code)


class AccountNotFound(NotFoundError):
    """Unknown account key."""

    error_code = "account_not_found"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"Account {email} not found")


class NoTiersConfigured(NotFoundError):
    """The tier ladder is empty."""

    error_code = "no_tiers_configured"

    def __init__(self):
        super().__init__("No tiers configured. Please configure referral tiers first")


# ==================== AUTH ====================


class AuthenticationError(EngineError):
    status_code = 401
    error_code = "unauthorized"


class AuthorizationError(EngineError):
    status_code = 403
    error_code = "forbidden"


# ==================== GATEWAY ====================


class GatewayError(EngineError):
    """The payment gateway refused or failed a call.

    ``gateway_code`` preserves the provider's own error code for diagnostics.
    """

    status_code = 402
    error_code = "gateway_error"

    def __init__(self, message: str, gateway_code: str | None = None, error_code: str | None = None):
        self.gateway_code = gateway_code
        if gateway_code:
            super().__init__(message, error_code, gateway_code=gateway_code)
        else:
            super().__init__(message, error_code)


class GatewayTimeout(GatewayError):
    error_code = "gateway_timeout"


class InsufficientPlatformBalance(GatewayError):
    """Live gateway balance cannot cover the requested transfer."""

    error_code = "insufficient_platform_balance"

    def __init__(self, required, available):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient platform balance: required {required}, available {available}")


# ==================== PROCESSING STATE ====================


class EventInProgress(EngineError):
    """Another delivery of the same webhook event holds the claim."""

    status_code = 409
    error_code = "event_in_progress"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} is being processed")


class ServiceUnavailable(EngineError):
    status_code = 503
    error_code = "service_unavailable"
