"""Authentication."""

from refengine.auth.middleware import get_current_principal, require_admin, require_auth, resolve_target
from refengine.auth.tokens import Principal, create_access_token, decode_token

__all__ = [
    "Principal",
    "create_access_token",
    "decode_token",
    "get_current_principal",
    "require_admin",
    "require_auth",
    "resolve_target",
]
