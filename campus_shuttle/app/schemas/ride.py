"""
Ride Pydantic schemas.

Responses carry the raw ride fields plus display strings (distance,
duration, status text) so every client shows the same wording.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional
from campus_shuttle.app.models.ride import Ride
from campus_shuttle.app.models.ride_enums import RideStatus, AllocationMethod
from campus_shuttle.app.services.geo import format_distance, format_duration
from campus_shuttle.app.services.ride_display import status_text, progress_steps


class RideRequest(BaseModel):
    """Schema for requesting a ride between two shuttle stops."""
    pickup_location_id: int = Field(..., gt=0, description="Pickup shuttle stop ID")
    dropoff_location_id: int = Field(..., gt=0, description="Dropoff shuttle stop ID")


class RideCancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255, description="Why the ride was cancelled")


class ProgressStep(BaseModel):
    id: str
    label: str
    description: str
    is_completed: bool
    is_current: bool
    is_pending: bool


class RideDriverInfo(BaseModel):
    driver_id: int
    full_name: Optional[str] = None
    phone: Optional[str] = None
    rating: Optional[float] = None
    vehicle_name: Optional[str] = None
    vehicle_number: Optional[str] = None


class RideResponse(BaseModel):
    """Schema for a ride as seen by passengers and drivers."""
    id: int
    passenger_id: int
    passenger_name: Optional[str] = None
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    driver: Optional[RideDriverInfo] = None

    pickup_location_id: Optional[int] = None
    pickup_address: Optional[str] = None
    pickup_latitude: float
    pickup_longitude: float
    dropoff_location_id: Optional[int] = None
    dropoff_address: Optional[str] = None
    dropoff_latitude: float
    dropoff_longitude: float

    status: RideStatus
    status_text: str
    distance_km: Optional[float] = None
    distance_text: str
    estimated_duration_minutes: Optional[int] = None
    duration_text: str
    pickup_distance_km: Optional[float] = None
    actual_duration_minutes: Optional[int] = None
    allocation_method: Optional[AllocationMethod] = None
    allocation_score: Optional[float] = None
    cancellation_reason: Optional[str] = None

    created_at: datetime
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_ride(cls, ride: Ride) -> "RideResponse":
        driver_info = None
        if ride.driver is not None:
            user = ride.driver.user
            vehicle = ride.vehicle or ride.driver.vehicle
            driver_info = RideDriverInfo(
                driver_id=ride.driver.id,
                full_name=user.full_name if user else None,
                phone=user.phone if user else None,
                rating=ride.driver.rating,
                vehicle_name=vehicle.vehicle_name if vehicle else None,
                vehicle_number=vehicle.vehicle_number if vehicle else None,
            )

        return cls(
            id=ride.id,
            passenger_id=ride.passenger_id,
            passenger_name=ride.passenger.full_name if ride.passenger else None,
            driver_id=ride.driver_id,
            vehicle_id=ride.vehicle_id,
            driver=driver_info,
            pickup_location_id=ride.pickup_location_id,
            pickup_address=ride.pickup_address,
            pickup_latitude=ride.pickup_latitude,
            pickup_longitude=ride.pickup_longitude,
            dropoff_location_id=ride.dropoff_location_id,
            dropoff_address=ride.dropoff_address,
            dropoff_latitude=ride.dropoff_latitude,
            dropoff_longitude=ride.dropoff_longitude,
            status=ride.status,
            status_text=status_text(ride.status),
            distance_km=ride.distance_km,
            distance_text=format_distance(ride.distance_km),
            estimated_duration_minutes=ride.estimated_duration_minutes,
            duration_text=format_duration(ride.estimated_duration_minutes),
            pickup_distance_km=ride.pickup_distance_km,
            actual_duration_minutes=ride.actual_duration_minutes,
            allocation_method=ride.allocation_method,
            allocation_score=ride.allocation_score,
            cancellation_reason=ride.cancellation_reason,
            created_at=ride.created_at,
            accepted_at=ride.accepted_at,
            started_at=ride.started_at,
            completed_at=ride.completed_at,
            cancelled_at=ride.cancelled_at,
        )


class RideDetailResponse(RideResponse):
    """Single ride with the progress tracker shown on the tracking screen."""
    progress_steps: List[ProgressStep]

    @classmethod
    def from_ride(cls, ride: Ride) -> "RideDetailResponse":
        base = RideResponse.from_ride(ride)
        return cls(**base.model_dump(), progress_steps=progress_steps(ride.status))


class RideRequestResponse(BaseModel):
    """Result of a ride request: the ride plus how allocation went."""
    ride: RideResponse
    allocated: bool
    message: str


class PendingRideResponse(RideResponse):
    """Pending ride as listed for a driver, with distance from their vehicle."""
    distance_to_pickup_km: float
    distance_to_pickup_text: str
    score: float


class RideListResponse(BaseModel):
    rides: List[RideResponse]
    total: int


class PendingRideListResponse(BaseModel):
    rides: List[PendingRideResponse]
    total: int
