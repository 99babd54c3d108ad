"""
API dependencies
"""
from typing import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from kor_inventory.core.database import get_db
from kor_inventory.core.security import decode_token
from kor_inventory.models import User, UserRole
from kor_inventory.services.alert_engine import AlertEngine, alert_engine
from kor_inventory.services.inventory_repository import InventoryRepository

security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Get current authenticated user"""
    payload = decode_token(credentials.credentials)

    if not payload or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled"
        )

    return user


def require_role(*roles: UserRole) -> Callable:
    """Dependency factory: the current user's role must be one of `roles`."""
    allowed = {r.value for r in roles}

    async def checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions"
            )
        return user

    return checker


get_current_admin = require_role(UserRole.ADMIN)
get_current_viewer = require_role(UserRole.ADMIN, UserRole.EDITOR, UserRole.VIEWER)


def get_alert_engine() -> AlertEngine:
    return alert_engine


def get_inventory_repository() -> InventoryRepository:
    return alert_engine.inventory
