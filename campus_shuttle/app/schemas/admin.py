"""
Admin API Schema Definitions.

Pydantic schemas for admin endpoints.
"""

from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List
from campus_shuttle.app.models.ride_enums import DriverStatus, VehicleStatus


class VehicleCreate(BaseModel):
    """Schema for registering a shuttle."""
    vehicle_name: str = Field(..., min_length=1, max_length=100)
    vehicle_number: str = Field(..., min_length=1, max_length=50, description="Plate number (unique)")
    capacity: int = Field(default=14, gt=0, le=100)


class DriverCreate(BaseModel):
    """Schema for creating a driver account and linking it to a vehicle."""
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=2, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=30)
    vehicle_id: Optional[int] = Field(default=None, description="Vehicle the driver operates")


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    is_shuttle_stop: bool = True
    location_type: Optional[str] = Field(default=None, max_length=50)


class ReconcileResponse(BaseModel):
    """Schema for a reconcile run on one driver."""
    driver_id: int
    changed: bool
    driver_status: DriverStatus
    vehicle_status: Optional[VehicleStatus] = None


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    id: int
    actor_id: Optional[int]
    actor_email: Optional[str]
    action: str
    ride_id: Optional[int]
    meta_data: Optional[dict]
    ip_address: Optional[str]
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    """Schema for audit trail list."""
    logs: List[AuditLogResponse]
    total: int
