"""
Campus location database model.

Named shuttle stops and points of interest with fixed coordinates.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float
from sqlalchemy.sql import func
from campus_shuttle.app.db.session import Base


class CampusLocation(Base):
    """
    Campus location model.

    Only locations flagged ``is_shuttle_stop`` can be used as pickup or dropoff.
    """
    __tablename__ = "campus_locations"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    is_shuttle_stop = Column(Boolean, default=True, nullable=False, index=True)
    location_type = Column(String(50), nullable=True)  # e.g. "hostel", "faculty", "gate"

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<CampusLocation(id={self.id}, name='{self.name}', stop={self.is_shuttle_stop})>"
