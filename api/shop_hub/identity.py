# shop_hub/identity.py
"""
Caller identity from request headers.

X-User-Id    - a registered user (customer, staff or admin)
X-Session-Id - an anonymous guest session, used for guest carts

There is no login flow; the headers are trusted as given.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from shop_hub.database import get_session
from shop_hub.db_models import User, UserRole
from shop_hub.errors import UnauthorizedError, ForbiddenError


@dataclass
class Identity:
    user: Optional[User] = None
    session_id: Optional[str] = None

    @property
    def user_id(self) -> Optional[int]:
        return self.user.id if self.user is not None else None

    @property
    def is_staff(self) -> bool:
        return self.user is not None and self.user.is_staff

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.role == UserRole.admin


async def get_identity(
    x_user_id: Optional[int] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_session),
) -> Identity:
    user = None
    if x_user_id is not None:
        user = await db.get(User, x_user_id)
        if user is None or not user.is_active:
            raise UnauthorizedError("Unknown or inactive user")
    session_id = (x_session_id or "").strip() or None
    return Identity(user=user, session_id=session_id)


async def require_owner(identity: Identity = Depends(get_identity)) -> Identity:
    """A user or a guest session; carts and checkout need one of the two."""
    if identity.user is None and identity.session_id is None:
        raise UnauthorizedError("X-User-Id or X-Session-Id header is required", code="IDENTITY_REQUIRED")
    return identity


async def require_user(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.user is None:
        raise UnauthorizedError("Authentication required")
    return identity


async def require_staff(identity: Identity = Depends(require_user)) -> Identity:
    if not identity.is_staff:
        raise ForbiddenError("Staff access required")
    return identity


async def require_admin(identity: Identity = Depends(require_user)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity
