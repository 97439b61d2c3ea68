"""
Matching policy.

Ranks available drivers for a pending ride by the distance from their
vehicle's last known position to the pickup, and ranks pending rides for
a driver the same way. Closer is better; the allocation score is
``100 - 10 * km`` floored at zero.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession

from campus_shuttle.app.core.config import settings
from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.ride import Ride
from campus_shuttle.app.models.ride_enums import (
    RideStatus, DriverStatus, VehicleStatus, ACTIVE_RIDE_STATUSES
)
from campus_shuttle.app.models.vehicle import Vehicle
from campus_shuttle.app.services.geo import distance_km, coordinate_or_campus_center

DistanceFn = Callable[[float, float, float, float], float]


@dataclass(frozen=True)
class Candidate:
    """An available driver and where their vehicle was last seen."""
    driver_id: int
    vehicle_id: int
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    driver_name: Optional[str] = None


@dataclass(frozen=True)
class RankedCandidate:
    candidate: Candidate
    distance_km: float
    score: float

    @property
    def driver_id(self) -> int:
        return self.candidate.driver_id


@dataclass(frozen=True)
class RankedRide:
    ride: Ride
    distance_km: float
    score: float


def allocation_score(km: float) -> float:
    """Score in [0, 100]: 100 at the pickup, 0 from 10 km out."""
    return round(max(0.0, 100 - km * 10), 2)


def rank_candidates(
    pickup_latitude: float,
    pickup_longitude: float,
    candidates: Iterable[Candidate],
    distance_fn: DistanceFn = distance_km,
) -> List[RankedCandidate]:
    """
    Order candidates by distance to the pickup, nearest first.

    Vehicles without a known position are measured from the campus
    center. Ties are broken by driver id so the order is deterministic.
    """
    ranked = []
    for candidate in candidates:
        lat, lon = coordinate_or_campus_center(candidate.latitude, candidate.longitude)
        km = distance_fn(lat, lon, pickup_latitude, pickup_longitude)
        ranked.append(RankedCandidate(candidate=candidate, distance_km=km, score=allocation_score(km)))

    ranked.sort(key=lambda r: (r.distance_km, r.candidate.driver_id))
    return ranked


def rank_rides_for_vehicle(
    vehicle: Optional[Vehicle],
    rides: Iterable[Ride],
    distance_fn: DistanceFn = distance_km,
) -> List[RankedRide]:
    """Order pending rides by distance from a vehicle to each pickup, nearest first."""
    lat, lon = coordinate_or_campus_center(
        vehicle.current_latitude if vehicle else None,
        vehicle.current_longitude if vehicle else None,
    )
    ranked = []
    for ride in rides:
        km = distance_fn(lat, lon, ride.pickup_latitude, ride.pickup_longitude)
        ranked.append(RankedRide(ride=ride, distance_km=km, score=allocation_score(km)))

    ranked.sort(key=lambda r: (r.distance_km, r.ride.id))
    return ranked


async def load_candidates(db: AsyncSession) -> List[Candidate]:
    """
    Drivers who can take a ride right now.

    Status ``available``, an ``available`` vehicle, and no active ride.
    """
    has_active_ride = exists().where(
        Ride.driver_id == Driver.id,
        Ride.status.in_(ACTIVE_RIDE_STATUSES),
    )
    result = await db.execute(
        select(Driver, Vehicle)
        .join(Vehicle, Vehicle.id == Driver.vehicle_id)
        .where(
            Driver.status == DriverStatus.AVAILABLE,
            Vehicle.status == VehicleStatus.AVAILABLE,
            ~has_active_ride,
        )
        .order_by(Driver.id)
    )

    return [
        Candidate(
            driver_id=driver.id,
            vehicle_id=vehicle.id,
            latitude=vehicle.current_latitude,
            longitude=vehicle.current_longitude,
            driver_name=driver.user.full_name if driver.user else None,
        )
        for driver, vehicle in result.all()
    ]


async def rank_candidates_for_ride(db: AsyncSession, ride: Ride) -> List[RankedCandidate]:
    candidates = await load_candidates(db)
    return rank_candidates(ride.pickup_latitude, ride.pickup_longitude, candidates)


async def rank_pending_rides(
    db: AsyncSession,
    driver: Driver,
    limit: Optional[int] = None,
) -> List[RankedRide]:
    """
    Pending, unassigned rides a driver could accept, nearest pickup first.

    Only the oldest ``limit`` requests are considered, matching what the
    driver screen lists.
    """
    result = await db.execute(
        select(Ride)
        .where(Ride.status == RideStatus.PENDING, Ride.driver_id.is_(None))
        .order_by(Ride.created_at.asc(), Ride.id.asc())
        .limit(limit or settings.pending_rides_limit)
    )
    rides = result.scalars().all()
    return rank_rides_for_vehicle(driver.vehicle, rides)
