"""
Ride-related enumerations.
"""

import enum


class RideStatus(str, enum.Enum):
    """Ride status enumeration."""
    PENDING = "pending"  # Requested, waiting for a driver
    ACCEPTED = "accepted"  # Driver and vehicle assigned
    ARRIVING = "arriving"  # Driver heading to pickup
    IN_PROGRESS = "in_progress"  # Passenger on board
    COMPLETED = "completed"  # Dropped off
    CANCELLED = "cancelled"  # Cancelled before pickup


ACTIVE_RIDE_STATUSES = (RideStatus.ACCEPTED, RideStatus.ARRIVING, RideStatus.IN_PROGRESS)
OPEN_RIDE_STATUSES = (RideStatus.PENDING,) + ACTIVE_RIDE_STATUSES
TERMINAL_RIDE_STATUSES = (RideStatus.COMPLETED, RideStatus.CANCELLED)


class AllocationMethod(str, enum.Enum):
    """How a ride got its driver."""
    SYSTEM_ALLOCATED = "system_allocated"
    DRIVER_ACCEPTED = "driver_accepted"


class DriverStatus(str, enum.Enum):
    """Driver availability."""
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


class VehicleStatus(str, enum.Enum):
    """Vehicle availability, mirrors the driver's."""
    AVAILABLE = "available"
    IN_TRANSIT = "in_transit"
    OFFLINE = "offline"
