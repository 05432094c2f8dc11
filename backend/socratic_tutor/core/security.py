"""Identity token utilities.

Users authenticate against an external identity provider. The backend only
verifies the bearer tokens it issues (HS256, shared secret) and turns them
into an :class:`Identity`.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import jwt, JWTError

from .config import get_settings
from .errors import Unauthenticated


@dataclass(frozen=True)
class Identity:
    """Authenticated caller as reported by the identity provider."""

    user_id: str
    email: Optional[str] = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create a signed token in the identity provider's format.

    Used by local tooling and tests; production tokens come from the provider.
    """
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    if settings.JWT_AUDIENCE and "aud" not in to_encode:
        to_encode["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """Verify and decode a JWT token."""
    settings = get_settings()
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE or None,
            options=options,
        )
    except JWTError:
        return None


def resolve_identity(token: Optional[str]) -> Identity:
    """Turn a bearer credential into an Identity or raise Unauthenticated."""
    if not token:
        raise Unauthenticated("Missing bearer token")

    payload = verify_access_token(token)
    if not payload:
        raise Unauthenticated("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token payload")

    role = payload.get("role")
    app_metadata = payload.get("app_metadata") or {}
    if isinstance(app_metadata, dict) and app_metadata.get("role"):
        role = app_metadata["role"]

    return Identity(
        user_id=str(user_id),
        email=payload.get("email"),
        role=role or "user",
    )
