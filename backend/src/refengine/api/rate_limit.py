"""Rate limiting for the engine API."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from refengine.settings import settings

# Code validation is public and would otherwise allow code enumeration
VALIDATE_CODE_LIMIT = "30/minute"


def caller_key(request: Request) -> str:
    """Authenticated callers are limited per account, anonymous ones per IP."""
    principal = getattr(request.state, "principal", None)
    if principal is not None:
        return f"account:{principal.email}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=caller_key,
    default_limits=["120/minute"],
    storage_uri="memory://",
    enabled=settings.env == "production",
)
