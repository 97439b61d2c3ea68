"""
Vehicle database model.

A shuttle with a fixed seat capacity and its last reported position.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, CheckConstraint
from sqlalchemy.sql import func
from campus_shuttle.app.db.session import Base
from campus_shuttle.app.models.ride_enums import VehicleStatus


class Vehicle(Base):
    """
    Vehicle model.

    Status is ``in_transit`` exactly while its driver has an active ride.
    """
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Identification
    vehicle_name = Column(String(100), nullable=False)
    vehicle_number = Column(String(50), unique=True, nullable=False, index=True)

    # Capacity
    capacity = Column(Integer, nullable=False, default=14)
    current_passengers = Column(Integer, nullable=False, default=0)

    status = Column(Enum(VehicleStatus), default=VehicleStatus.OFFLINE, nullable=False, index=True)

    # Last known position (None until the driver app reports one)
    current_latitude = Column(Float, nullable=True)
    current_longitude = Column(Float, nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_vehicles_capacity_positive"),
        CheckConstraint(
            "current_passengers >= 0 AND current_passengers <= capacity",
            name="ck_vehicles_passengers_within_capacity",
        ),
    )

    def __repr__(self):
        return f"<Vehicle(id={self.id}, number='{self.vehicle_number}', status='{self.status.value}')>"
