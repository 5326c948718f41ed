"""Authentication dependencies: bearer session tokens and moderation roles."""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.errors import PermissionDenied
from services.session_token import read_session_token


auth_scheme = HTTPBearer(auto_error=False)

ROLE_MODERATOR = "moderator"
ROLE_ADMIN = "admin"


@dataclass
class AuthContext:
    user_id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    @property
    def is_moderator(self) -> bool:
        return self.is_admin or ROLE_MODERATOR in self.roles


def _context_from_token(token: str) -> AuthContext:
    try:
        claims = read_session_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return AuthContext(user_id=claims.user_id, roles=claims.roles)


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated user from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing Bearer session token.")
    return _context_from_token(credentials.credentials)


async def get_optional_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> Optional[AuthContext]:
    """Like get_auth_context, but anonymous callers get None. A bad token is still a 401."""
    if not credentials or credentials.scheme.lower() != "bearer":
        return None
    return _context_from_token(credentials.credentials)


async def require_moderator(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not auth.is_moderator:
        raise PermissionDenied("Moderator role required.")
    return auth


async def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not auth.is_admin:
        raise PermissionDenied("Admin role required.")
    return auth
