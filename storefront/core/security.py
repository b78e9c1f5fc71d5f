"""
Access token handling and the principal model used for authorization.

Tokens are issued by the hosted auth platform; this service only decodes and
validates them and turns the claims into a ``Principal``. Order mutations are
authorized against the principal's role in the service layer, never in the
client.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Exception raised for token-related errors."""

    pass


class UserRole(str, enum.Enum):
    """Role of the acting principal."""

    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"

    @classmethod
    def from_claim(cls, value: Optional[str]) -> "UserRole":
        """Map a role claim to a role; unknown or missing values are plain users."""
        if value and value.lower() == cls.ADMIN.value:
            return cls.ADMIN
        return cls.USER


@dataclass(frozen=True)
class Principal:
    """Identity of whoever drives an operation: a customer, an admin or the system."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: UserRole = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == UserRole.SYSTEM

    @property
    def display_name(self) -> str:
        """Name recorded in audit entries."""
        return self.name or self.email or self.id


def system_principal(name: str) -> Principal:
    """Principal used for gateway-driven transitions (verification, webhook)."""
    return Principal(id="system", name=name, role=UserRole.SYSTEM)


def create_access_token(
    subject: str,
    email: Optional[str] = None,
    role: str = UserRole.USER.value,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create an access token shaped like the auth platform's tokens.

    Used by local tooling and the test suite; production tokens come from
    the hosted auth platform.

    Args:
        subject: User id placed in the ``sub`` claim
        email: Optional email claim
        role: Role stored under app_metadata
        name: Optional full name stored under user_metadata
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    claims: Dict[str, Any] = {
        "sub": subject,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": expire,
        "app_metadata": {settings.admin_role_claim: role},
        "user_metadata": {"full_name": name} if name else {},
    }
    if email:
        claims["email"] = email

    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token string to decode

    Returns:
        Dictionary of decoded token claims

    Raises:
        TokenError: If token is invalid, expired, or malformed
    """
    if not token:
        logger.warning("Attempted to decode empty token")
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except ExpiredSignatureError as e:
        logger.warning("Token has expired", error=str(e))
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError(
            "Invalid token",
            code="TOKEN_INVALID",
            original_error=str(e),
        ) from e

    logger.debug(
        "Token decoded successfully",
        subject=payload.get("sub"),
        expires_at=payload.get("exp"),
    )
    return payload


def principal_from_token(token: str) -> Principal:
    """
    Build the acting principal from an access token.

    Raises:
        TokenError: If the token is invalid or has no subject
    """
    payload = decode_token(token)
    subject = payload.get("sub")
    if not subject:
        raise TokenError("Token missing 'sub' claim", code="TOKEN_NO_SUBJECT")

    settings = get_settings()
    app_metadata = payload.get("app_metadata") or {}
    user_metadata = payload.get("user_metadata") or {}

    name = user_metadata.get("full_name")
    if not name:
        first = user_metadata.get("first_name") or ""
        last = user_metadata.get("last_name") or ""
        name = f"{first} {last}".strip() or None

    return Principal(
        id=str(subject),
        email=payload.get("email"),
        name=name,
        role=UserRole.from_claim(app_metadata.get(settings.admin_role_claim)),
    )
