"""
Driver endpoints.

Profile and stats, the pending ride list, ride progression through the
lifecycle, availability and vehicle position reporting.
"""

from datetime import datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from campus_shuttle.app.db.session import get_db
from campus_shuttle.app.core.dependencies import get_lifecycle
from campus_shuttle.app.core.exceptions import ResourceNotFoundError, RideUnavailableError
from campus_shuttle.app.core.guards import require_driver_profile
from campus_shuttle.app.schemas.driver import (
    DriverResponse, DriverProfileResponse, DriverStats, AvailabilityUpdate, VehicleLocationUpdate
)
from campus_shuttle.app.schemas.ride import (
    RideResponse, RideCancelRequest, RideListResponse, PendingRideResponse, PendingRideListResponse
)
from campus_shuttle.app.schemas.session import Session
from campus_shuttle.app.services.geo import format_distance
from campus_shuttle.app.services.lifecycle import RideLifecycleController
from campus_shuttle.app.services.matching import rank_pending_rides
from campus_shuttle.app.services.ride_store import RideStore, store_errors

router = APIRouter(prefix="/driver", tags=["Driver"])


async def pending_for_driver(db: AsyncSession, driver_id: int) -> PendingRideListResponse:
    store = RideStore(db)
    async with store_errors(db):
        driver = await store.get_driver(driver_id, refresh=True)
        if driver is None:
            raise ResourceNotFoundError("Driver", driver_id)
        ranked = await rank_pending_rides(db, driver)

    rides = [
        PendingRideResponse(
            **RideResponse.from_ride(option.ride).model_dump(),
            distance_to_pickup_km=round(option.distance_km, 3),
            distance_to_pickup_text=format_distance(option.distance_km),
            score=option.score,
        )
        for option in ranked
    ]
    return PendingRideListResponse(rides=rides, total=len(rides))


@router.get("/me", response_model=DriverProfileResponse)
async def get_driver_profile(
    session: Session = Depends(require_driver_profile),
    db: AsyncSession = Depends(get_db)
):
    """Driver record, vehicle and today's/total ride counts."""
    store = RideStore(db)
    midnight = datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)

    async with store_errors(db):
        driver = await store.get_driver(session.driver_id)
        if driver is None:
            raise ResourceNotFoundError("Driver", session.driver_id)
        today = await store.count_completed_since(driver.id, midnight)

    return DriverProfileResponse(
        driver=DriverResponse.model_validate(driver),
        full_name=driver.user.full_name,
        email=driver.user.email,
        stats=DriverStats(today_rides=today, total_rides=driver.total_rides, rating=driver.rating),
    )


@router.get("/rides/pending", response_model=PendingRideListResponse)
async def get_pending_rides(
    session: Session = Depends(require_driver_profile),
    db: AsyncSession = Depends(get_db)
):
    """Unassigned ride requests, nearest pickup first."""
    return await pending_for_driver(db, session.driver_id)


@router.get("/rides/active", response_model=RideListResponse)
async def get_active_ride(
    session: Session = Depends(require_driver_profile),
    db: AsyncSession = Depends(get_db)
):
    async with store_errors(db):
        ride = await RideStore(db).active_ride_for_driver(session.driver_id)

    rides = [RideResponse.from_ride(ride)] if ride else []
    return RideListResponse(rides=rides, total=len(rides))


@router.post("/rides/{ride_id}/accept", response_model=RideResponse)
async def accept_ride(
    ride_id: int,
    session: Session = Depends(require_driver_profile),
    lifecycle: RideLifecycleController = Depends(get_lifecycle),
    db: AsyncSession = Depends(get_db)
):
    """
    Claim a pending ride.

    When another driver got there first the 409 response lists the rides
    that are still pending, so the app can refresh without another call.
    """
    try:
        ride = await lifecycle.accept_ride(session, ride_id)
    except RideUnavailableError as e:
        pending = await pending_for_driver(db, session.driver_id)
        e.details["pending_ride_ids"] = [r.id for r in pending.rides]
        raise
    return RideResponse.from_ride(ride)


@router.post("/rides/{ride_id}/arriving", response_model=RideResponse)
async def mark_arriving(
    ride_id: int,
    session: Session = Depends(require_driver_profile),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    ride = await lifecycle.mark_arriving(session, ride_id)
    return RideResponse.from_ride(ride)


@router.post("/rides/{ride_id}/start", response_model=RideResponse)
async def start_ride(
    ride_id: int,
    session: Session = Depends(require_driver_profile),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    ride = await lifecycle.start_ride(session, ride_id)
    return RideResponse.from_ride(ride)


@router.post("/rides/{ride_id}/complete", response_model=RideResponse)
async def complete_ride(
    ride_id: int,
    session: Session = Depends(require_driver_profile),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    ride = await lifecycle.complete_ride(session, ride_id)
    return RideResponse.from_ride(ride)


@router.post("/rides/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: int,
    data: Optional[RideCancelRequest] = None,
    session: Session = Depends(require_driver_profile),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    """Give up an accepted ride; the driver and vehicle become available again."""
    reason = data.reason if data else None
    ride = await lifecycle.cancel_ride(session, ride_id, reason or "Cancelled by driver")
    return RideResponse.from_ride(ride)


@router.patch("/availability", response_model=DriverResponse)
async def update_availability(
    data: Optional[AvailabilityUpdate] = None,
    session: Session = Depends(require_driver_profile),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    """Go online or offline. Refused while a ride is active."""
    driver = await lifecycle.toggle_availability(session, data.available if data else None)
    return DriverResponse.model_validate(driver)


@router.put("/vehicle/location", response_model=DriverResponse)
async def update_vehicle_location(
    data: VehicleLocationUpdate,
    session: Session = Depends(require_driver_profile),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    driver = await lifecycle.update_vehicle_position(session, data.latitude, data.longitude)
    return DriverResponse.model_validate(driver)
