"""
Identity dependencies for FastAPI routes.

The frontend sends the caller's id in X-User-Id (plus optional X-User-Email
and X-User-Name).  Requests without the header are anonymous and get the
``public`` role, which can only read public content.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from barkly.database import get_db
from barkly.models.database_models import CulturalSensitivity, User, UserRole
from barkly.services.cultural_safety import allowed_levels

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Caller:
    """Who is making the request and what they may see."""

    user: Optional[User]
    role: UserRole

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user is not None else None

    @property
    def levels(self) -> List[CulturalSensitivity]:
        return allowed_levels(self.role)

    def can_read(self, level: CulturalSensitivity) -> bool:
        return level in self.levels


async def get_optional_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> Optional[str]:
    """Extract user ID if present, return None for anonymous requests."""
    return x_user_id or None


async def get_caller(
    user_id: Optional[str] = Depends(get_optional_user_id),
    x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
    db: AsyncSession = Depends(get_db),
) -> Caller:
    """Resolve the caller, creating a ``member`` user the first time an id is seen."""
    if user_id is None:
        return Caller(user=None, role=UserRole.PUBLIC)

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            id=user_id,
            email=x_user_email or f"{user_id}@barkly.local",
            name=x_user_name,
            role=UserRole.MEMBER,
        )
        db.add(user)
        await db.flush()
        logger.info("Created new user: id=%s email=%s", user_id, user.email)

    return Caller(user=user, role=user.role)


async def require_user(caller: Caller = Depends(get_caller)) -> Caller:
    """Like get_caller, but 401 for anonymous requests."""
    if caller.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    return caller


def require_role(*roles: UserRole):
    """Dependency factory: 403 unless the caller has one of *roles*."""

    async def _check(caller: Caller = Depends(require_user)) -> Caller:
        if caller.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(r.value for r in roles)}.",
            )
        return caller

    return _check
