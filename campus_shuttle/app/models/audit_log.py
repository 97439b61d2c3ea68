"""
Audit Log Database Model.

Tracks ride lifecycle transitions and authentication events.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from campus_shuttle.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - RIDE_REQUESTED / RIDE_ACCEPTED / RIDE_ARRIVING / RIDE_STARTED
    - RIDE_COMPLETED / RIDE_CANCELLED
    - DRIVER_AVAILABILITY / DRIVER_RECONCILED
    - LOGIN_SUCCESS / LOGIN_FAILED / USER_CREATED / TOKEN_REVOKED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions such as auto-allocation)
    actor_id = Column(Integer, index=True, nullable=True)
    actor_email = Column(String(255), nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Ride the action relates to, if any
    ride_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    ip_address = Column(String(50), nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_email}, ride={self.ride_id})>"
