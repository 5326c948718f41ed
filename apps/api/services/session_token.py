"""Bearer tokens that identify a requester and their moderation roles."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, Iterable, Optional

from jose import JWTError, jwt

from config import settings


SESSION_TOKEN_TYPE = "wis_session"


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)


def normalize_roles(roles: Optional[Iterable[str]]) -> FrozenSet[str]:
    if isinstance(roles, str):
        roles = [roles]
    return frozenset(str(role).strip().lower() for role in roles or () if str(role).strip())


def issue_session_token(user_id: str, roles: Optional[Iterable[str]] = None, now: Optional[datetime] = None) -> str:
    """Sign a token for ``user_id``; lifetime is JWT_EXPIRATION_HOURS."""
    now = now or datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=max(int(settings.JWT_EXPIRATION_HOURS or 24), 1))
    claims = {
        "sub": user_id,
        "type": SESSION_TOKEN_TYPE,
        "roles": sorted(normalize_roles(roles)),
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def read_session_token(token: str) -> SessionClaims:
    """Verify signature, expiry and token type. Raises ValueError on any failure."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    if str(payload.get("type", "")).strip() != SESSION_TOKEN_TYPE:
        raise ValueError("Invalid session token type.")
    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Session token missing subject.")
    return SessionClaims(user_id=subject, roles=normalize_roles(payload.get("roles")))
