"""
Driver Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from campus_shuttle.app.models.ride_enums import DriverStatus, VehicleStatus


class VehicleResponse(BaseModel):
    id: int
    vehicle_name: str
    vehicle_number: str
    capacity: int
    current_passengers: int
    status: VehicleStatus
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    location_updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DriverResponse(BaseModel):
    id: int
    user_id: int
    vehicle_id: Optional[int] = None
    status: DriverStatus
    total_rides: int
    rating: float
    vehicle: Optional[VehicleResponse] = None

    class Config:
        from_attributes = True


class DriverStats(BaseModel):
    today_rides: int = Field(..., description="Rides completed since midnight UTC")
    total_rides: int
    rating: float


class DriverProfileResponse(BaseModel):
    """GET /driver/me: the driver, their vehicle and headline stats."""
    driver: DriverResponse
    full_name: str
    email: str
    stats: DriverStats


class AvailabilityUpdate(BaseModel):
    """Omit ``available`` to flip between online and offline."""
    available: Optional[bool] = Field(default=None, description="True to go online, False to go offline")


class VehicleLocationUpdate(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
