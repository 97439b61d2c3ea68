"""
Admin API Endpoints.

Fleet and campus setup (vehicles, drivers, stops), driver state repair
and the audit trail.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from campus_shuttle.app.db.session import get_db
from campus_shuttle.app.core.dependencies import get_lifecycle
from campus_shuttle.app.core.exceptions import ResourceNotFoundError
from campus_shuttle.app.core.guards import require_admin
from campus_shuttle.app.core.security import get_password_hash
from campus_shuttle.app.models.campus_location import CampusLocation
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.enums import UserRole
from campus_shuttle.app.models.ride_enums import DriverStatus, VehicleStatus
from campus_shuttle.app.models.user import User
from campus_shuttle.app.models.vehicle import Vehicle
from campus_shuttle.app.schemas.admin import (
    VehicleCreate, DriverCreate, LocationCreate, ReconcileResponse,
    AuditTrailResponse, AuditLogResponse
)
from campus_shuttle.app.schemas.driver import DriverResponse, VehicleResponse
from campus_shuttle.app.schemas.location import LocationResponse
from campus_shuttle.app.schemas.ride import RideCancelRequest, RideResponse
from campus_shuttle.app.schemas.session import Session
from campus_shuttle.app.services.audit import log_event, AuditAction, get_audit_trail
from campus_shuttle.app.services.lifecycle import RideLifecycleController

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post("/vehicles", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
async def create_vehicle(
    data: VehicleCreate,
    request: Request,
    admin: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Register a shuttle. New vehicles start offline until their driver goes online."""
    result = await db.execute(select(Vehicle).where(Vehicle.vehicle_number == data.vehicle_number))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Vehicle number already registered"
        )

    vehicle = Vehicle(
        vehicle_name=data.vehicle_name,
        vehicle_number=data.vehicle_number,
        capacity=data.capacity,
        current_passengers=0,
        status=VehicleStatus.OFFLINE,
    )
    db.add(vehicle)
    await db.flush()

    await log_event(
        db=db,
        action=AuditAction.VEHICLE_CREATED,
        actor_id=admin.user_id,
        actor_email=admin.email,
        metadata={"vehicle_id": vehicle.id, "vehicle_number": vehicle.vehicle_number},
        ip_address=request.client.host if request.client else None,
    )
    await db.refresh(vehicle)

    return VehicleResponse.model_validate(vehicle)


@router.post("/drivers", response_model=DriverResponse, status_code=status.HTTP_201_CREATED)
async def create_driver(
    data: DriverCreate,
    request: Request,
    admin: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a driver login and its driver record.

    A vehicle may be operated by one driver at a time.
    """
    result = await db.execute(select(User).where(User.email == data.email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    if data.vehicle_id is not None:
        vehicle = await db.get(Vehicle, data.vehicle_id)
        if vehicle is None:
            raise ResourceNotFoundError("Vehicle", data.vehicle_id)
        taken = await db.execute(select(Driver.id).where(Driver.vehicle_id == data.vehicle_id))
        if taken.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Vehicle already has a driver"
            )

    user = User(
        email=data.email,
        full_name=data.full_name,
        phone=data.phone,
        hashed_password=get_password_hash(data.password),
        role=UserRole.DRIVER,
        is_active=True,
    )
    db.add(user)
    await db.flush()

    driver = Driver(
        user_id=user.id,
        vehicle_id=data.vehicle_id,
        status=DriverStatus.OFFLINE,
        total_rides=0,
        rating=5.0,
    )
    db.add(driver)
    await db.flush()

    await log_event(
        db=db,
        action=AuditAction.DRIVER_CREATED,
        actor_id=admin.user_id,
        actor_email=admin.email,
        metadata={"driver_id": driver.id, "user_id": user.id, "vehicle_id": data.vehicle_id},
        ip_address=request.client.host if request.client else None,
    )

    result = await db.execute(
        select(Driver).where(Driver.id == driver.id).execution_options(populate_existing=True)
    )
    return DriverResponse.model_validate(result.scalar_one())


@router.post("/locations", response_model=LocationResponse, status_code=status.HTTP_201_CREATED)
async def create_location(
    data: LocationCreate,
    admin: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    location = CampusLocation(
        name=data.name,
        latitude=data.latitude,
        longitude=data.longitude,
        is_shuttle_stop=data.is_shuttle_stop,
        location_type=data.location_type,
    )
    db.add(location)
    await db.flush()

    await log_event(
        db=db,
        action=AuditAction.LOCATION_CREATED,
        actor_id=admin.user_id,
        actor_email=admin.email,
        metadata={"location_id": location.id, "name": location.name},
    )
    await db.refresh(location)

    return LocationResponse.model_validate(location)


@router.post("/drivers/{driver_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_driver(
    driver_id: int,
    admin: Session = Depends(require_admin),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    """Re-derive a driver's status (and their vehicle's) from their rides."""
    result = await lifecycle.reconcile_driver(driver_id, actor=admin)
    return ReconcileResponse(
        driver_id=result.driver_id,
        changed=result.changed,
        driver_status=result.driver_status,
        vehicle_status=result.vehicle_status,
    )


@router.post("/rides/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: int,
    data: Optional[RideCancelRequest] = None,
    admin: Session = Depends(require_admin),
    lifecycle: RideLifecycleController = Depends(get_lifecycle)
):
    """Cancel any ride that has not started, e.g. one left pending with no driver."""
    reason = data.reason if data else None
    ride = await lifecycle.cancel_ride(admin, ride_id, reason or "Cancelled by transport office")
    return RideResponse.from_ride(ride)


@router.get("/audit-logs", response_model=AuditTrailResponse)
async def get_audit_logs(
    ride_id: Optional[int] = Query(None, description="Filter by ride ID"),
    action: Optional[str] = Query(None, description="Filter by action type"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of logs"),
    admin: Session = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Audit trail, newest first."""
    logs = await get_audit_trail(db=db, ride_id=ride_id, action=action, limit=limit)

    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs)
    )
