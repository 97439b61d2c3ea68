"""
Passenger ride endpoints.

Request a ride, follow it, look back at recent rides and cancel.
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from campus_shuttle.app.db.session import get_db
from campus_shuttle.app.core.dependencies import get_lifecycle, get_allocator
from campus_shuttle.app.core.exceptions import ResourceNotFoundError, InsufficientPermissionsError
from campus_shuttle.app.core.guards import require_passenger
from campus_shuttle.app.models.ride_enums import TERMINAL_RIDE_STATUSES
from campus_shuttle.app.schemas.ride import (
    RideRequest, RideCancelRequest, RideResponse, RideDetailResponse,
    RideRequestResponse, RideListResponse
)
from campus_shuttle.app.schemas.session import Session
from campus_shuttle.app.services.allocation import Allocator, allocate_best_effort, allocation_message
from campus_shuttle.app.services.lifecycle import RideLifecycleController
from campus_shuttle.app.services.ride_store import RideStore, store_errors

router = APIRouter(prefix="/passenger/rides", tags=["Passenger Rides"])

HISTORY_LIMIT = 5


@router.post("", response_model=RideRequestResponse, status_code=status.HTTP_201_CREATED)
async def request_ride(
    data: RideRequest,
    session: Session = Depends(require_passenger),
    lifecycle: RideLifecycleController = Depends(get_lifecycle),
    allocator: Allocator = Depends(get_allocator),
    db: AsyncSession = Depends(get_db)
):
    """
    Request a ride between two shuttle stops.

    The ride is created as pending first; a driver is then allocated on a
    best-effort basis. A failed allocation leaves the ride pending for
    drivers to pick up.
    """
    ride = await lifecycle.request_ride(session, data.pickup_location_id, data.dropoff_location_id)
    result = await allocate_best_effort(allocator, ride.id)

    async with store_errors(db):
        ride = await RideStore(db).get_ride(ride.id, refresh=True)

    return RideRequestResponse(
        ride=RideResponse.from_ride(ride),
        allocated=result.success,
        message=allocation_message(result),
    )


@router.get("/active", response_model=RideListResponse)
async def get_active_rides(
    session: Session = Depends(require_passenger),
    db: AsyncSession = Depends(get_db)
):
    """The passenger's open ride, if any (pending or on its way)."""
    async with store_errors(db):
        ride = await RideStore(db).open_ride_for_passenger(session.user_id)

    rides = [RideResponse.from_ride(ride)] if ride else []
    return RideListResponse(rides=rides, total=len(rides))


@router.get("/history", response_model=RideListResponse)
async def get_ride_history(
    session: Session = Depends(require_passenger),
    db: AsyncSession = Depends(get_db)
):
    """Most recent finished rides, newest first."""
    async with store_errors(db):
        rides = await RideStore(db).list_rides(
            statuses=TERMINAL_RIDE_STATUSES,
            passenger_id=session.user_id,
            newest_first=True,
            limit=HISTORY_LIMIT,
        )

    return RideListResponse(rides=[RideResponse.from_ride(r) for r in rides], total=len(rides))


@router.get("/{ride_id}", response_model=RideDetailResponse)
async def get_ride(
    ride_id: int,
    session: Session = Depends(require_passenger),
    db: AsyncSession = Depends(get_db)
):
    """One of the passenger's rides, with its progress tracker."""
    async with store_errors(db):
        ride = await RideStore(db).get_ride(ride_id)

    if ride is None:
        raise ResourceNotFoundError("Ride", ride_id)
    if ride.passenger_id != session.user_id:
        raise InsufficientPermissionsError("This is not your ride")

    return RideDetailResponse.from_ride(ride)


@router.post("/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: int,
    data: Optional[RideCancelRequest] = None,
    session: Session = Depends(require_passenger),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    """Cancel a ride that has not started yet."""
    reason = data.reason if data else None
    ride = await lifecycle.cancel_ride(session, ride_id, reason or "Cancelled by passenger")
    return RideResponse.from_ride(ride)
