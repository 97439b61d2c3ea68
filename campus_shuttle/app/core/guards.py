"""
Security guards for role-based access control.

Ownership of individual rides is checked by the lifecycle controller,
which knows which passenger booked a ride and which driver holds it.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from campus_shuttle.app.models.enums import UserRole
from campus_shuttle.app.core.dependencies import get_current_session
from campus_shuttle.app.schemas.session import Session


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.get("/driver/rides/pending")
        async def pending(session: Session = Depends(require_role([UserRole.DRIVER]))):
            ...

    Raises:
        HTTPException 403 if the session's role is not in allowed_roles
    """
    async def role_checker(session: Session = Depends(get_current_session)) -> Session:
        if session.role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )
        return session

    return role_checker


require_passenger = require_role([UserRole.PASSENGER])
require_driver = require_role([UserRole.DRIVER])
require_admin = require_role([UserRole.ADMIN])


def require_driver_profile(session: Session = Depends(require_driver)) -> Session:
    """Driver endpoints also need the linked driver record."""
    if session.driver_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No driver profile linked to this account"
        )
    return session
