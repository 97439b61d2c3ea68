"""
Audit logging service for ride lifecycle and authentication events.

Lifecycle transitions write their audit row inside the transition's own
transaction (``commit=False``); standalone events commit immediately.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from campus_shuttle.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    USER_CREATED = "USER_CREATED"
    TOKEN_REVOKED = "TOKEN_REVOKED"

    # Ride lifecycle
    RIDE_REQUESTED = "RIDE_REQUESTED"
    RIDE_ACCEPTED = "RIDE_ACCEPTED"
    RIDE_ARRIVING = "RIDE_ARRIVING"
    RIDE_STARTED = "RIDE_STARTED"
    RIDE_COMPLETED = "RIDE_COMPLETED"
    RIDE_CANCELLED = "RIDE_CANCELLED"

    # Driver / fleet
    DRIVER_AVAILABILITY = "DRIVER_AVAILABILITY"
    DRIVER_RECONCILED = "DRIVER_RECONCILED"
    DRIVER_CREATED = "DRIVER_CREATED"
    VEHICLE_CREATED = "VEHICLE_CREATED"
    LOCATION_CREATED = "LOCATION_CREATED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    actor_email: Optional[str] = None,
    ride_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    commit: bool = True
) -> AuditLog:
    """
    Log an event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for system)
        actor_email: Email of actor
        ride_id: Ride the event relates to
        metadata: Additional context as JSON
        ip_address: IP address of the request
        commit: Commit immediately; pass False to join the caller's transaction

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_email=actor_email,
        action=action,
        ride_id=ride_id,
        meta_data=metadata,
        ip_address=ip_address
    )

    db.add(audit_log)
    if commit:
        await db.commit()
        await db.refresh(audit_log)
    else:
        await db.flush()

    return audit_log


async def log_auth_event(
    db: AsyncSession,
    action: str,
    user_id: Optional[int],
    email: Optional[str],
    ip_address: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """Log an authentication event (login success/failure, logout)."""
    return await log_event(
        db=db,
        action=action,
        actor_id=user_id,
        actor_email=email,
        ip_address=ip_address,
        metadata=metadata
    )


async def get_audit_trail(
    db: AsyncSession,
    ride_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering.

    Returns:
        List of AuditLog instances, most recent first
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if ride_id:
        query = query.where(AuditLog.ride_id == ride_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
