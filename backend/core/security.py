"""
CaveClub Security Utilities

JWT handling and the authenticated caller passed into every service call.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from jose import JWTError, jwt

from core.config import get_settings
from core.errors import Unauthenticated


@dataclass(frozen=True)
class Caller:
    """Identity on whose behalf a service operation runs."""

    user_id: uuid.UUID | None
    is_admin: bool = False
    is_system: bool = False

    def is_user(self, user_id) -> bool:
        return self.user_id is not None and str(self.user_id) == str(user_id)

    def can_act_for(self, user_id) -> bool:
        """True for the user themself and for the scheduler."""
        return self.is_system or self.is_user(user_id)


# Scheduler / webhook identity: passes ownership checks, owns nothing.
SYSTEM_CALLER = Caller(user_id=None, is_admin=True, is_system=True)


def require_caller(caller: Caller | None) -> Caller:
    """Reject anonymous calls before any lookup happens."""
    if caller is None or (caller.user_id is None and not caller.is_system):
        raise Unauthenticated("Authentication required")
    return caller


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=runtime_settings.access_token_hours))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a locally issued access token."""
    runtime_settings = get_settings()
    try:
        return jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None


def caller_from_token(payload: dict) -> Caller:
    """Build a Caller from a decoded token payload (``sub`` = member id)."""
    sub = payload.get("sub")
    try:
        user_id = uuid.UUID(str(sub))
    except (TypeError, ValueError):
        raise Unauthenticated("Token subject is not a member id")
    return Caller(user_id=user_id, is_admin=bool(payload.get("is_admin", False)))
