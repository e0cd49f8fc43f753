"""Bearer token handling.

Tokens are issued by the platform's identity service; this module only
decodes them into a ``Principal``. ``create_access_token`` exists for
operators and tests.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from refengine.logging_config import get_logger
from refengine.settings import settings

logger = get_logger(__name__)

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLE_SERVICE = "service"
ROLES = (ROLE_USER, ROLE_ADMIN, ROLE_SERVICE)

TOKEN_EXPIRE_HOURS = 2


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""

    email: str
    role: str = ROLE_USER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_service(self) -> bool:
        return self.role == ROLE_SERVICE

    def can_act_for(self, email: str) -> bool:
        """Owners act for themselves; admins and the service role for anyone."""
        return self.is_admin or self.is_service or self.email == email.lower().strip()


def create_access_token(email: str, role: str = ROLE_USER, expires_delta: timedelta | None = None) -> str:
    """Create JWT access token.

    Args:
        email: Principal email
        role: user, admin or service
        expires_delta: Optional expiration time

    Returns:
        JWT token string
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    if expires_delta is None:
        expires_delta = timedelta(hours=TOKEN_EXPIRE_HOURS)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": email.lower().strip(),
        "role": role,
        "exp": now + expires_delta,
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Principal | None:
    """Verify and decode a bearer token.

    Returns:
        Principal, or None if the token is invalid or expired
    """
    try:
        payload: dict[str, Any] = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug("token_verification_failed", error=str(e))
        return None

    email = payload.get("sub")
    role = payload.get("role", ROLE_USER)
    if not email or role not in ROLES:
        logger.debug("token_claims_invalid", role=role)
        return None
    return Principal(email=email, role=role)
