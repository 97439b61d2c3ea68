"""
Ride store.

Thin repository over the rides, drivers, vehicles and campus_locations
tables: point lookups, filtered lists, insert-returning and conditional
update-returning. Commit/rollback is left to the caller so a lifecycle
transition can group its writes into one transaction.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_shuttle.app.core.exceptions import StoreUnavailableError
from campus_shuttle.app.models.campus_location import CampusLocation
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.ride import Ride
from campus_shuttle.app.models.ride_enums import (
    RideStatus, ACTIVE_RIDE_STATUSES, OPEN_RIDE_STATUSES
)
from campus_shuttle.app.models.vehicle import Vehicle


@asynccontextmanager
async def store_errors(db: AsyncSession):
    """
    Roll back and translate backend failures into StoreUnavailableError.

    IntegrityError is re-raised untouched; callers decide whether a
    constraint violation means a conflict.
    """
    try:
        yield
    except IntegrityError:
        await db.rollback()
        raise
    except SQLAlchemyError as e:
        await db.rollback()
        raise StoreUnavailableError() from e


ACTIVE_RIDE_INDEX = "ix_rides_one_active_per_driver"


def violates_one_active_ride(error: IntegrityError) -> bool:
    """True when the write gave a driver a second active ride."""
    message = str(error.orig)
    # PostgreSQL names the index, SQLite names the column
    return ACTIVE_RIDE_INDEX in message or "rides.driver_id" in message


class RideStore:
    """Data access for rides and the entities they reference."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Rides

    async def get_ride(self, ride_id: int, refresh: bool = False) -> Optional[Ride]:
        return await self.db.get(Ride, ride_id, populate_existing=refresh)

    async def list_rides(
        self,
        statuses: Optional[Iterable[RideStatus]] = None,
        passenger_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        unassigned_only: bool = False,
        newest_first: bool = False,
        limit: Optional[int] = None,
    ) -> List[Ride]:
        query = select(Ride)
        if statuses is not None:
            query = query.where(Ride.status.in_(list(statuses)))
        if passenger_id is not None:
            query = query.where(Ride.passenger_id == passenger_id)
        if driver_id is not None:
            query = query.where(Ride.driver_id == driver_id)
        if unassigned_only:
            query = query.where(Ride.driver_id.is_(None))

        if newest_first:
            query = query.order_by(Ride.created_at.desc(), Ride.id.desc())
        else:
            query = query.order_by(Ride.created_at.asc(), Ride.id.asc())

        if limit:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def active_ride_for_driver(self, driver_id: int) -> Optional[Ride]:
        rides = await self.list_rides(statuses=ACTIVE_RIDE_STATUSES, driver_id=driver_id, limit=1)
        return rides[0] if rides else None

    async def open_ride_for_passenger(self, passenger_id: int) -> Optional[Ride]:
        rides = await self.list_rides(
            statuses=OPEN_RIDE_STATUSES, passenger_id=passenger_id, newest_first=True, limit=1
        )
        return rides[0] if rides else None

    async def insert_ride(self, ride: Ride) -> Ride:
        self.db.add(ride)
        await self.db.flush()
        await self.db.refresh(ride)
        return ride

    async def conditional_update_ride(
        self,
        ride_id: int,
        expected_status: RideStatus,
        values: Dict[str, Any],
        require_unassigned: bool = False,
        expected_driver_id: Optional[int] = None,
    ) -> Optional[Ride]:
        """
        Update a ride only if it is still in ``expected_status``.

        Returns the refreshed ride, or None when the predicate no longer
        holds (someone else changed the ride first).
        """
        stmt = (
            update(Ride)
            .where(Ride.id == ride_id, Ride.status == expected_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if require_unassigned:
            stmt = stmt.where(Ride.driver_id.is_(None))
        if expected_driver_id is not None:
            stmt = stmt.where(Ride.driver_id == expected_driver_id)

        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_ride(ride_id, refresh=True)

    async def count_completed_since(self, driver_id: int, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count(Ride.id)).where(
                Ride.driver_id == driver_id,
                Ride.status == RideStatus.COMPLETED,
                Ride.completed_at >= since,
            )
        )
        return result.scalar() or 0

    # Drivers & vehicles

    async def get_driver(self, driver_id: int, refresh: bool = False) -> Optional[Driver]:
        return await self.db.get(Driver, driver_id, populate_existing=refresh)

    async def get_driver_by_user(self, user_id: int) -> Optional[Driver]:
        result = await self.db.execute(select(Driver).where(Driver.user_id == user_id))
        return result.scalar_one_or_none()

    async def get_vehicle(self, vehicle_id: int, refresh: bool = False) -> Optional[Vehicle]:
        return await self.db.get(Vehicle, vehicle_id, populate_existing=refresh)

    # Locations

    async def get_location(self, location_id: int) -> Optional[CampusLocation]:
        return await self.db.get(CampusLocation, location_id)

    async def list_shuttle_stops(self) -> List[CampusLocation]:
        result = await self.db.execute(
            select(CampusLocation)
            .where(CampusLocation.is_shuttle_stop.is_(True))
            .order_by(CampusLocation.name)
        )
        return list(result.scalars().all())
