"""
Ride database model.

One passenger's transport request from a pickup stop to a dropoff stop.
Rides are never deleted; completed and cancelled rides are kept as history.
"""

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Enum, ForeignKey, Index, CheckConstraint, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from campus_shuttle.app.db.session import Base
from campus_shuttle.app.models.ride_enums import RideStatus, AllocationMethod

# Enum columns store member names
_ACTIVE_STATUS_SQL = "status IN ('ACCEPTED', 'ARRIVING', 'IN_PROGRESS')"


class Ride(Base):
    """
    Ride model.

    ``status`` is written only by the ride lifecycle controller.
    """
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Participants
    passenger_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey('drivers.id'), nullable=True, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=True, index=True)

    # Pickup
    pickup_location_id = Column(Integer, ForeignKey('campus_locations.id'), nullable=True)
    pickup_latitude = Column(Float, nullable=False)
    pickup_longitude = Column(Float, nullable=False)
    pickup_address = Column(String(255), nullable=True)

    # Dropoff
    dropoff_location_id = Column(Integer, ForeignKey('campus_locations.id'), nullable=True)
    dropoff_latitude = Column(Float, nullable=False)
    dropoff_longitude = Column(Float, nullable=False)
    dropoff_address = Column(String(255), nullable=True)

    # Status
    status = Column(Enum(RideStatus), default=RideStatus.PENDING, nullable=False, index=True)

    # Estimates (pickup -> dropoff) and allocation details
    distance_km = Column(Float, nullable=True)
    estimated_duration_minutes = Column(Integer, nullable=True)
    pickup_distance_km = Column(Float, nullable=True)  # driver's vehicle -> pickup, at acceptance
    actual_duration_minutes = Column(Integer, nullable=True)
    allocation_method = Column(Enum(AllocationMethod), nullable=True)
    allocation_score = Column(Float, nullable=True)
    cancellation_reason = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    passenger = relationship("User", lazy="selectin")
    driver = relationship("Driver", lazy="selectin")
    vehicle = relationship("Vehicle", lazy="selectin")
    pickup_location = relationship("CampusLocation", foreign_keys=[pickup_location_id], lazy="selectin")
    dropoff_location = relationship("CampusLocation", foreign_keys=[dropoff_location_id], lazy="selectin")

    __table_args__ = (
        # At most one active ride per driver
        Index(
            'ix_rides_one_active_per_driver', 'driver_id', unique=True,
            postgresql_where=text(_ACTIVE_STATUS_SQL),
            sqlite_where=text(_ACTIVE_STATUS_SQL),
        ),
        CheckConstraint(
            "status != 'PENDING' OR (driver_id IS NULL AND vehicle_id IS NULL)",
            name="ck_rides_pending_unassigned",
        ),
        CheckConstraint(
            "(status = 'COMPLETED' AND completed_at IS NOT NULL) "
            "OR (status != 'COMPLETED' AND completed_at IS NULL)",
            name="ck_rides_completed_at_iff_completed",
        ),
    )

    def __repr__(self):
        return f"<Ride(id={self.id}, passenger_id={self.passenger_id}, status='{self.status.value}')>"
