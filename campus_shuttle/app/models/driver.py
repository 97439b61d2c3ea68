"""
Driver database model.
"""

from sqlalchemy import Column, Integer, Float, DateTime, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from campus_shuttle.app.db.session import Base
from campus_shuttle.app.models.ride_enums import DriverStatus


class Driver(Base):
    """
    Driver model.

    Links a user with the DRIVER role to the vehicle they operate.
    """
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, unique=True, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=True, index=True)

    status = Column(Enum(DriverStatus), default=DriverStatus.OFFLINE, nullable=False, index=True)
    total_rides = Column(Integer, default=0, nullable=False)
    rating = Column(Float, default=5.0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", lazy="selectin")
    vehicle = relationship("Vehicle", lazy="selectin")

    __table_args__ = (
        CheckConstraint("rating >= 0 AND rating <= 5", name="ck_drivers_rating_range"),
    )

    def __repr__(self):
        return f"<Driver(id={self.id}, user_id={self.user_id}, status='{self.status.value}')>"
