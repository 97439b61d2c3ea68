"""
Authentication dependencies for FastAPI.

This module provides dependencies for protecting routes with JWT authentication
and for handing the ride services their collaborators.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from campus_shuttle.app.core.jwt import decode_access_token
from campus_shuttle.app.core.token_revocation import is_token_revoked
from campus_shuttle.app.db.session import get_db
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.enums import UserRole
from campus_shuttle.app.models.user import User
from campus_shuttle.app.schemas.session import Session
from campus_shuttle.app.services.allocation import Allocator, build_allocator
from campus_shuttle.app.services.change_feed import ChangeFeed, get_change_feed
from campus_shuttle.app.services.lifecycle import RideLifecycleController

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Session:
    """
    FastAPI dependency for JWT authentication.

    Security checks:
    1. Validates JWT token signature and expiry
    2. Checks if token has been explicitly revoked (logout)
    3. Verifies user still exists and is active in database

    Returns:
        Session describing the acting user; drivers carry their driver id

    Raises:
        HTTPException: 401 if authentication fails, 403 if the account is inactive
    """
    token = credentials.credentials

    # 1. Decode and validate JWT
    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 2. Check if this specific token has been revoked
    if await is_token_revoked(token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # 3. Real-time database check: Verify user is still active
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    driver_id = None
    if user.role == UserRole.DRIVER:
        result = await db.execute(select(Driver.id).where(Driver.user_id == user.id))
        driver_id = result.scalar_one_or_none()

    return Session(
        user_id=user.id,
        email=user.email,
        role=user.role,
        driver_id=driver_id,
        token=token,
    )


def get_lifecycle(
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> RideLifecycleController:
    return RideLifecycleController(db, feed=feed)


def get_allocator(
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> Allocator:
    return build_allocator(db, feed)
