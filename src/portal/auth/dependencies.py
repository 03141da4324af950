"""FastAPI authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass, field

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.jwt import verify_token
from portal.database import get_session
from portal.db.models import User
from portal.users.service import categories_of

ADMIN_ROLES = frozenset({"admin", "superadmin"})

_bearer = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    """The authenticated requester: identity, role and category memberships."""

    id: int
    name: str
    role: str
    category_ids: frozenset[int] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


async def load_principal(db: AsyncSession, user: User) -> Principal:
    """Build a Principal from a user row plus its category memberships."""
    category_ids = await categories_of(db, user.id)
    return Principal(id=user.id, name=user.name, role=user.role, category_ids=frozenset(category_ids))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Principal:
    """
    Extract and verify the JWT, return the requesting Principal.

    Raises 401 on an invalid token or unknown user, 403 on a deactivated account.
    """
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user = await db.get(User, int(payload["sub"]))
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive")
    return await load_principal(db, user)


async def require_admin(principal: Principal = Depends(get_current_user)) -> Principal:
    """Same as get_current_user but requires role admin or superadmin."""
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
