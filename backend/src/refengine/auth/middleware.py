"""Authentication dependencies for FastAPI."""

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from refengine.auth.tokens import Principal, decode_token
from refengine.errors import AuthenticationError, AuthorizationError

# Security scheme
security = HTTPBearer(auto_error=False)


async def get_current_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal | None:
    """Get the authenticated caller, if any.

    Args:
        request: FastAPI request
        credentials: Bearer token

    Returns:
        Principal or None if not authenticated
    """
    if not credentials:
        return None

    principal = decode_token(credentials.credentials)
    if principal:
        request.state.principal = principal
    return principal


def require_auth(principal: Principal | None = Depends(get_current_principal)) -> Principal:
    """Require authentication.

    Raises:
        AuthenticationError: 401 if not authenticated
    """
    if not principal:
        raise AuthenticationError("Not authenticated")
    return principal


def require_admin(principal: Principal = Depends(require_auth)) -> Principal:
    """Require admin privileges.

    Raises:
        AuthorizationError: 403 if not admin
    """
    if not principal.is_admin:
        raise AuthorizationError("Admin access required")
    return principal


def resolve_target(principal: Principal, email: str | None) -> str:
    """Account a request acts on: the caller's own unless another is named.

    Raises:
        AuthorizationError: Caller may not act for the named account
    """
    if not email:
        return principal.email
    if not principal.can_act_for(email):
        raise AuthorizationError("Cannot act on another account")
    return email.lower().strip()
