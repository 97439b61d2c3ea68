"""
Ride lifecycle controller.

The only writer of ``rides.status``. Enforces the state machine

    pending -> accepted -> arriving -> in_progress -> completed
    pending | accepted -> cancelled

and moves the driver and vehicle in lockstep with each transition. The
ride, driver, vehicle and audit writes of one transition share a single
database transaction. Every ride write is conditional on the status the
controller last read, so a concurrent writer produces a conflict instead
of a lost update.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Set

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_shuttle.app.core.exceptions import (
    ActiveRideError,
    AppException,
    DriverUnavailableError,
    InsufficientPermissionsError,
    InvalidTransitionError,
    RequestInFlightError,
    ResourceNotFoundError,
    RideRequestError,
    RideUnavailableError,
    StaleRideStateError,
)
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.ride import Ride
from campus_shuttle.app.models.ride_enums import (
    RideStatus, AllocationMethod, DriverStatus, VehicleStatus
)
from campus_shuttle.app.schemas.session import Session
from campus_shuttle.app.services.audit import log_event, AuditAction
from campus_shuttle.app.services.change_feed import (
    ChangeFeed, ChangeType, RideChangeEvent, get_change_feed
)
from campus_shuttle.app.services.geo import (
    distance_km, estimate_duration_minutes, coordinate_or_campus_center
)
from campus_shuttle.app.services.matching import allocation_score
from campus_shuttle.app.services.ride_store import RideStore, store_errors, violates_one_active_ride

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[RideStatus, Set[RideStatus]] = {
    RideStatus.PENDING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.ARRIVING, RideStatus.CANCELLED},
    RideStatus.ARRIVING: {RideStatus.IN_PROGRESS},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TRANSITION_AUDIT_ACTIONS = {
    RideStatus.ACCEPTED: AuditAction.RIDE_ACCEPTED,
    RideStatus.ARRIVING: AuditAction.RIDE_ARRIVING,
    RideStatus.IN_PROGRESS: AuditAction.RIDE_STARTED,
    RideStatus.COMPLETED: AuditAction.RIDE_COMPLETED,
    RideStatus.CANCELLED: AuditAction.RIDE_CANCELLED,
}


def can_transition(current: RideStatus, target: RideStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(ride: Ride, target: RideStatus) -> None:
    if not can_transition(ride.status, target):
        raise InvalidTransitionError(ride.id, ride.status.value, target.value)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InFlightGuard:
    """
    Rejects a second submission of the same action while the first is running.

    Keys are built from the acting user and the ride, so two drivers racing
    for one ride are both let through to the conditional write, while a
    double-tap by one driver is refused here.
    """

    def __init__(self):
        self._keys: Set[str] = set()

    def is_held(self, *parts) -> bool:
        return self._key(parts) in self._keys

    @staticmethod
    def _key(parts) -> str:
        return ":".join(str(part) for part in parts)

    @asynccontextmanager
    async def hold(self, *parts):
        key = self._key(parts)
        if key in self._keys:
            raise RequestInFlightError(key)
        self._keys.add(key)
        try:
            yield
        finally:
            self._keys.discard(key)


in_flight_guard = InFlightGuard()


@dataclass(frozen=True)
class ReconcileResult:
    driver_id: int
    changed: bool
    driver_status: DriverStatus
    vehicle_status: Optional[VehicleStatus]


class RideLifecycleController:
    """Ride state transitions with their driver/vehicle side effects."""

    def __init__(
        self,
        db: AsyncSession,
        feed: Optional[ChangeFeed] = None,
        guard: Optional[InFlightGuard] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.store = RideStore(db)
        self.feed = feed or get_change_feed()
        self.guard = guard or in_flight_guard
        self.clock = clock

    @asynccontextmanager
    async def _unit_of_work(
        self,
        conflict: Optional[AppException] = None,
        active_ride_conflict: Optional[AppException] = None,
    ):
        """
        Commit on success, roll back on any error.

        Constraint violations become ``conflict``, or ``active_ride_conflict``
        when the driver already holds another active ride.
        """
        try:
            async with store_errors(self.db):
                yield
                await self.db.commit()
        except IntegrityError as e:
            if active_ride_conflict is not None and violates_one_active_ride(e):
                raise active_ride_conflict from e
            if conflict is None:
                raise
            raise conflict from e
        except Exception:
            await self.db.rollback()
            raise

    async def _notify(self, event_type: str, ride: Ride) -> None:
        await self.feed.notify(RideChangeEvent(
            event=event_type,
            ride_id=ride.id,
            passenger_id=ride.passenger_id,
            driver_id=ride.driver_id,
        ))

    async def _require_ride(self, ride_id: int) -> Ride:
        ride = await self.store.get_ride(ride_id, refresh=True)
        if ride is None:
            raise ResourceNotFoundError("Ride", ride_id)
        return ride

    async def _require_driver(self, driver_id: Optional[int]) -> Driver:
        driver = await self.store.get_driver(driver_id, refresh=True) if driver_id else None
        if driver is None:
            raise ResourceNotFoundError("Driver", driver_id)
        return driver

    @staticmethod
    def _require_role(session: Session, allowed: bool, message: str) -> None:
        if not (allowed or session.is_admin):
            raise InsufficientPermissionsError(message)

    # Creation

    async def request_ride(
        self,
        session: Session,
        pickup_location_id: int,
        dropoff_location_id: int,
    ) -> Ride:
        """
        Create a pending ride for a passenger.

        The passenger may not already have an open ride. Driver allocation
        is attempted separately, after this ride is committed.
        """
        if not session.is_passenger:
            raise InsufficientPermissionsError("Only passengers can request rides")
        if pickup_location_id == dropoff_location_id:
            raise RideRequestError("Pickup and dropoff locations must be different")

        async with self.guard.hold(session.user_id, "request"):
            async with self._unit_of_work():
                pickup = await self.store.get_location(pickup_location_id)
                if pickup is None or not pickup.is_shuttle_stop:
                    raise ResourceNotFoundError("Pickup location", pickup_location_id)
                dropoff = await self.store.get_location(dropoff_location_id)
                if dropoff is None or not dropoff.is_shuttle_stop:
                    raise ResourceNotFoundError("Dropoff location", dropoff_location_id)

                open_ride = await self.store.open_ride_for_passenger(session.user_id)
                if open_ride is not None:
                    raise ActiveRideError(
                        "You already have a ride in progress",
                        details={"ride_id": open_ride.id},
                    )

                km = distance_km(pickup.latitude, pickup.longitude, dropoff.latitude, dropoff.longitude)
                ride = await self.store.insert_ride(Ride(
                    passenger_id=session.user_id,
                    pickup_location_id=pickup.id,
                    pickup_latitude=pickup.latitude,
                    pickup_longitude=pickup.longitude,
                    pickup_address=pickup.name,
                    dropoff_location_id=dropoff.id,
                    dropoff_latitude=dropoff.latitude,
                    dropoff_longitude=dropoff.longitude,
                    dropoff_address=dropoff.name,
                    status=RideStatus.PENDING,
                    distance_km=round(km, 3),
                    estimated_duration_minutes=estimate_duration_minutes(km),
                ))

                await log_event(
                    db=self.db,
                    action=AuditAction.RIDE_REQUESTED,
                    actor_id=session.user_id,
                    actor_email=session.email,
                    ride_id=ride.id,
                    metadata={"pickup": pickup.name, "dropoff": dropoff.name},
                    commit=False,
                )

        logger.info("Ride %s requested by passenger %s", ride.id, session.user_id)
        await self._notify(ChangeType.INSERT, ride)
        return ride

    # Transitions

    async def transition(
        self,
        session: Session,
        ride_id: int,
        target: RideStatus,
        reason: Optional[str] = None,
    ) -> Ride:
        """Move a ride to ``target`` on behalf of ``session``."""
        if target == RideStatus.ACCEPTED:
            return await self.accept_ride(session, ride_id)
        if target == RideStatus.ARRIVING:
            return await self.mark_arriving(session, ride_id)
        if target == RideStatus.IN_PROGRESS:
            return await self.start_ride(session, ride_id)
        if target == RideStatus.COMPLETED:
            return await self.complete_ride(session, ride_id)
        if target == RideStatus.CANCELLED:
            return await self.cancel_ride(session, ride_id, reason)
        raise RideRequestError(f"Cannot move a ride to {target.value}")

    async def accept_ride(self, session: Session, ride_id: int) -> Ride:
        """A driver claims a pending ride. First committed accept wins."""
        self._require_role(session, session.is_driver, "Only drivers can accept rides")
        if session.driver_id is None:
            raise DriverUnavailableError("No driver profile linked to this account")

        async with self.guard.hold(session.user_id, ride_id):
            return await self.assign_ride(
                ride_id, session.driver_id, AllocationMethod.DRIVER_ACCEPTED, actor=session
            )

    async def assign_ride(
        self,
        ride_id: int,
        driver_id: int,
        method: AllocationMethod,
        actor: Optional[Session] = None,
    ) -> Ride:
        """
        ``pending -> accepted`` with a driver/vehicle assignment.

        Raises RideUnavailableError when the ride is no longer pending or
        the conditional write loses a race with another accept, and
        ActiveRideError when the driver committed another ride meanwhile.
        """
        async with self._unit_of_work(
            conflict=RideUnavailableError(ride_id),
            active_ride_conflict=ActiveRideError(),
        ):
            ride = await self._require_ride(ride_id)
            if ride.status != RideStatus.PENDING or ride.driver_id is not None:
                raise RideUnavailableError(ride_id)

            driver = await self._require_driver(driver_id)
            vehicle = driver.vehicle
            if vehicle is None:
                raise DriverUnavailableError("Driver has no vehicle assigned")
            if driver.status != DriverStatus.AVAILABLE:
                raise DriverUnavailableError(
                    "Go online before accepting rides",
                    details={"driver_status": driver.status.value},
                )
            active = await self.store.active_ride_for_driver(driver.id)
            if active is not None:
                raise ActiveRideError(details={"ride_id": active.id})

            lat, lon = coordinate_or_campus_center(vehicle.current_latitude, vehicle.current_longitude)
            pickup_km = distance_km(lat, lon, ride.pickup_latitude, ride.pickup_longitude)

            updated = await self.store.conditional_update_ride(
                ride_id,
                expected_status=RideStatus.PENDING,
                require_unassigned=True,
                values={
                    "status": RideStatus.ACCEPTED,
                    "driver_id": driver.id,
                    "vehicle_id": vehicle.id,
                    "accepted_at": self.clock(),
                    "pickup_distance_km": round(pickup_km, 3),
                    "allocation_method": method,
                    "allocation_score": allocation_score(pickup_km),
                },
            )
            if updated is None:
                logger.warning("Driver %s lost the race for ride %s", driver.id, ride_id)
                raise RideUnavailableError(ride_id)

            driver.status = DriverStatus.BUSY
            vehicle.status = VehicleStatus.IN_TRANSIT
            vehicle.current_passengers = 1

            await log_event(
                db=self.db,
                action=AuditAction.RIDE_ACCEPTED,
                actor_id=actor.user_id if actor else None,
                actor_email=actor.email if actor else None,
                ride_id=ride_id,
                metadata={
                    "driver_id": driver.id,
                    "vehicle_id": vehicle.id,
                    "allocation_method": method.value,
                    "pickup_distance_km": round(pickup_km, 3),
                },
                commit=False,
            )

        logger.info("Ride %s accepted by driver %s (%s)", ride_id, driver_id, method.value)
        await self._notify(ChangeType.UPDATE, updated)
        return updated

    async def mark_arriving(self, session: Session, ride_id: int) -> Ride:
        """``accepted -> arriving``: the driver is on the way to the pickup."""
        return await self._advance(session, ride_id, RideStatus.ARRIVING)

    async def start_ride(self, session: Session, ride_id: int) -> Ride:
        """``arriving -> in_progress``: passenger on board."""
        return await self._advance(session, ride_id, RideStatus.IN_PROGRESS)

    async def complete_ride(self, session: Session, ride_id: int) -> Ride:
        """``in_progress -> completed``: releases the driver and vehicle."""
        return await self._advance(session, ride_id, RideStatus.COMPLETED)

    async def _advance(self, session: Session, ride_id: int, target: RideStatus) -> Ride:
        async with self.guard.hold(session.user_id, ride_id):
            async with self._unit_of_work(conflict=StaleRideStateError(ride_id, target.value)):
                ride = await self._require_ride(ride_id)
                check_transition(ride, target)
                self._require_role(
                    session,
                    session.is_driver and ride.driver_id == session.driver_id,
                    "This ride is not assigned to you",
                )

                now = self.clock()
                values = {"status": target}
                if target == RideStatus.IN_PROGRESS:
                    values["started_at"] = now
                elif target == RideStatus.COMPLETED:
                    values["completed_at"] = now
                    if ride.started_at is not None:
                        elapsed = now - as_utc(ride.started_at)
                        values["actual_duration_minutes"] = round(elapsed.total_seconds() / 60)

                expected = ride.status
                updated = await self.store.conditional_update_ride(
                    ride_id,
                    expected_status=expected,
                    expected_driver_id=ride.driver_id,
                    values=values,
                )
                if updated is None:
                    raise StaleRideStateError(ride_id, expected.value)

                if target == RideStatus.COMPLETED:
                    driver = await self._require_driver(updated.driver_id)
                    driver.total_rides = (driver.total_rides or 0) + 1
                    self._release(driver)

                await log_event(
                    db=self.db,
                    action=TRANSITION_AUDIT_ACTIONS[target],
                    actor_id=session.user_id,
                    actor_email=session.email,
                    ride_id=ride_id,
                    metadata={"from": expected.value, "to": target.value},
                    commit=False,
                )

        logger.info("Ride %s moved %s -> %s", ride_id, expected.value, target.value)
        await self._notify(ChangeType.UPDATE, updated)
        return updated

    async def cancel_ride(self, session: Session, ride_id: int, reason: Optional[str] = None) -> Ride:
        """
        Cancel a pending or accepted ride.

        The passenger who booked it, its assigned driver or an admin may
        cancel. An accepted ride hands its driver and vehicle back to the
        available pool.
        """
        async with self.guard.hold(session.user_id, ride_id):
            async with self._unit_of_work(conflict=StaleRideStateError(ride_id, RideStatus.CANCELLED.value)):
                ride = await self._require_ride(ride_id)
                check_transition(ride, RideStatus.CANCELLED)
                is_owner = session.is_passenger and ride.passenger_id == session.user_id
                is_assigned_driver = (
                    session.is_driver
                    and ride.driver_id is not None
                    and ride.driver_id == session.driver_id
                )
                self._require_role(session, is_owner or is_assigned_driver, "You cannot cancel this ride")

                expected = ride.status
                updated = await self.store.conditional_update_ride(
                    ride_id,
                    expected_status=expected,
                    values={
                        "status": RideStatus.CANCELLED,
                        "cancelled_at": self.clock(),
                        "cancellation_reason": reason,
                    },
                )
                if updated is None:
                    raise StaleRideStateError(ride_id, expected.value)

                released = False
                if updated.driver_id is not None:
                    driver = await self._require_driver(updated.driver_id)
                    self._release(driver)
                    released = True

                await log_event(
                    db=self.db,
                    action=AuditAction.RIDE_CANCELLED,
                    actor_id=session.user_id,
                    actor_email=session.email,
                    ride_id=ride_id,
                    metadata={"from": expected.value, "reason": reason, "driver_released": released},
                    commit=False,
                )

        logger.info("Ride %s cancelled from %s by user %s", ride_id, expected.value, session.user_id)
        await self._notify(ChangeType.UPDATE, updated)
        return updated

    @staticmethod
    def _release(driver: Driver) -> None:
        driver.status = DriverStatus.AVAILABLE
        if driver.vehicle is not None:
            driver.vehicle.status = VehicleStatus.AVAILABLE
            driver.vehicle.current_passengers = 0

    # Driver availability

    async def toggle_availability(self, session: Session, available: Optional[bool] = None) -> Driver:
        """
        Switch a driver between ``available`` and ``offline``.

        Refused while the driver has an active ride. ``available`` forces
        a direction; without it the current status is flipped.
        """
        self._require_role(session, session.is_driver, "Only drivers can change availability")

        async with self.guard.hold(session.user_id, "availability"):
            async with self._unit_of_work():
                driver = await self._require_driver(session.driver_id)
                active = await self.store.active_ride_for_driver(driver.id)
                if active is not None:
                    raise ActiveRideError(details={"ride_id": active.id})

                if driver.status == DriverStatus.BUSY:
                    logger.warning("Driver %s marked busy without an active ride", driver.id)

                if available is None:
                    available = driver.status == DriverStatus.OFFLINE
                if available and driver.vehicle is None:
                    raise DriverUnavailableError("Driver has no vehicle assigned")

                previous = driver.status
                driver.status = DriverStatus.AVAILABLE if available else DriverStatus.OFFLINE
                if driver.vehicle is not None:
                    driver.vehicle.status = VehicleStatus.AVAILABLE if available else VehicleStatus.OFFLINE
                    driver.vehicle.current_passengers = 0

                await log_event(
                    db=self.db,
                    action=AuditAction.DRIVER_AVAILABILITY,
                    actor_id=session.user_id,
                    actor_email=session.email,
                    metadata={"driver_id": driver.id, "from": previous.value, "to": driver.status.value},
                    commit=False,
                )

        logger.info("Driver %s is now %s", driver.id, driver.status.value)
        return driver

    async def update_vehicle_position(self, session: Session, latitude: float, longitude: float) -> Driver:
        """Record where the driver's vehicle is; used when ranking drivers."""
        self._require_role(session, session.is_driver, "Only drivers can report a position")

        async with self._unit_of_work():
            driver = await self._require_driver(session.driver_id)
            if driver.vehicle is None:
                raise DriverUnavailableError("Driver has no vehicle assigned")
            driver.vehicle.current_latitude = latitude
            driver.vehicle.current_longitude = longitude
            driver.vehicle.location_updated_at = self.clock()

        return driver

    async def reconcile_driver(self, driver_id: int, actor: Optional[Session] = None) -> ReconcileResult:
        """
        Re-derive driver and vehicle status from the driver's rides.

        Repairs state left behind by writes made outside this controller.
        """
        async with self._unit_of_work():
            driver = await self._require_driver(driver_id)
            vehicle = driver.vehicle
            active = await self.store.active_ride_for_driver(driver.id)
            before = (driver.status, vehicle.status if vehicle else None)

            if active is not None:
                driver.status = DriverStatus.BUSY
                if vehicle is not None:
                    vehicle.status = VehicleStatus.IN_TRANSIT
                    vehicle.current_passengers = max(vehicle.current_passengers or 0, 1)
            else:
                if driver.status == DriverStatus.BUSY:
                    driver.status = DriverStatus.AVAILABLE
                if vehicle is not None:
                    vehicle.current_passengers = 0
                    vehicle.status = (
                        VehicleStatus.AVAILABLE
                        if driver.status == DriverStatus.AVAILABLE
                        else VehicleStatus.OFFLINE
                    )

            after = (driver.status, vehicle.status if vehicle else None)
            changed = before != after
            if changed:
                await log_event(
                    db=self.db,
                    action=AuditAction.DRIVER_RECONCILED,
                    actor_id=actor.user_id if actor else None,
                    actor_email=actor.email if actor else None,
                    ride_id=active.id if active else None,
                    metadata={
                        "driver_id": driver.id,
                        "before": [s.value if s else None for s in before],
                        "after": [s.value if s else None for s in after],
                    },
                    commit=False,
                )

        if changed:
            logger.warning("Reconciled driver %s: %s -> %s", driver_id, before, after)
        return ReconcileResult(
            driver_id=driver_id,
            changed=changed,
            driver_status=after[0],
            vehicle_status=after[1],
        )
