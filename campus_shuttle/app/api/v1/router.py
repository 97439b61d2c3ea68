"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from campus_shuttle.app.api.v1.endpoints import (
    auth, admin, locations, passenger_rides, driver_rides, ride_feed
)

router = APIRouter()

# Include authentication endpoints
router.include_router(auth.router)

# Include admin endpoints
router.include_router(admin.router)

# Campus stops
router.include_router(locations.router)

# Ride lifecycle, per role
router.include_router(passenger_rides.router)
router.include_router(driver_rides.router)

# Live ride change notifications
router.include_router(ride_feed.router)
