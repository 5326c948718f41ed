"""Pure access evaluation for share links."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class AccessState(str, Enum):
    ACCESSIBLE = "accessible"
    EXPIRED = "expired"
    HIDDEN = "hidden"
    INACTIVE = "inactive"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (sqlite round-trips) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(link: Any, now: datetime) -> bool:
    """True once ``now`` has reached the link's ``expires_at``."""
    expires_at = as_utc(getattr(link, "expires_at", None))
    if expires_at is None:
        return False
    return expires_at <= as_utc(now)


def evaluate_access(link: Any, now: datetime) -> AccessState:
    """
    Decide whether a link is reachable right now.

    Hidden and inactive win over expiry so callers can report the more
    specific reason.
    """
    if link.is_hidden:
        return AccessState.HIDDEN
    if not link.is_active:
        return AccessState.INACTIVE
    if is_expired(link, now):
        return AccessState.EXPIRED
    return AccessState.ACCESSIBLE
