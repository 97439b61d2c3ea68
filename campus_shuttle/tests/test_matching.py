"""
Matching policy: ranking drivers for a ride and rides for a driver.
"""

import pytest
from sqlalchemy import update

from campus_shuttle.app.models.driver import Driver
from campus_shuttle.app.models.ride_enums import DriverStatus, VehicleStatus
from campus_shuttle.app.services.allocation import NearestDriverAllocator
from campus_shuttle.app.services.geo import CAMPUS_CENTER
from campus_shuttle.app.services.lifecycle import RideLifecycleController
from campus_shuttle.app.services.matching import (
    Candidate,
    allocation_score,
    load_candidates,
    rank_candidates,
    rank_candidates_for_ride,
    rank_pending_rides,
)


def by_latitude(distances):
    """Distance function that looks the answer up by the candidate's latitude."""
    def distance_fn(lat, lon, pickup_lat, pickup_lon):
        return distances[lat]
    return distance_fn


def test_candidates_ranked_nearest_first_with_scores():
    candidates = [
        Candidate(driver_id=1, vehicle_id=11, latitude=1.0, longitude=0.0),
        Candidate(driver_id=2, vehicle_id=12, latitude=2.0, longitude=0.0),
        Candidate(driver_id=3, vehicle_id=13, latitude=3.0, longitude=0.0),
    ]
    ranked = rank_candidates(0.0, 0.0, candidates, by_latitude({1.0: 3.0, 2.0: 0.5, 3.0: 1.2}))

    assert [r.distance_km for r in ranked] == [0.5, 1.2, 3.0]
    assert [r.score for r in ranked] == [95, 88, 70]
    assert [r.driver_id for r in ranked] == [2, 3, 1]


def test_ties_broken_by_driver_id():
    candidates = [
        Candidate(driver_id=9, vehicle_id=1, latitude=1.0, longitude=0.0),
        Candidate(driver_id=4, vehicle_id=2, latitude=1.0, longitude=0.0),
    ]
    ranked = rank_candidates(0.0, 0.0, candidates, by_latitude({1.0: 2.0}))
    assert [r.driver_id for r in ranked] == [4, 9]


def test_score_is_clamped_at_zero():
    assert allocation_score(0) == 100
    assert allocation_score(10) == 0
    assert allocation_score(25.5) == 0
    assert allocation_score(0.123) == 98.77


def test_vehicle_without_position_is_measured_from_campus_center():
    seen = []

    def distance_fn(lat, lon, pickup_lat, pickup_lon):
        seen.append((lat, lon))
        return 1.0

    rank_candidates(7.0, 9.0, [Candidate(driver_id=1, vehicle_id=1)], distance_fn)
    assert seen == [CAMPUS_CENTER]


def test_no_candidates():
    assert rank_candidates(7.0, 9.0, []) == []


@pytest.mark.asyncio
async def test_load_candidates_skips_offline_and_busy_drivers(db_session, campus):
    campus.driver_two.status = DriverStatus.OFFLINE
    campus.vehicle_two.status = VehicleStatus.OFFLINE
    await db_session.commit()

    candidates = await load_candidates(db_session)
    assert [c.driver_id for c in candidates] == [campus.driver_one.id]
    assert candidates[0].driver_name == "Emeka Eze"


@pytest.mark.asyncio
async def test_driver_with_active_ride_is_not_a_candidate(db_session, campus, feed):
    controller = RideLifecycleController(db_session, feed=feed)
    ride = await controller.request_ride(campus.passenger_session, campus.library.id, campus.hostel.id)
    await controller.accept_ride(campus.driver_one_session, ride.id)

    # Simulate stale driver status left behind by an outside write
    campus.driver_one.status = DriverStatus.AVAILABLE
    campus.vehicle_one.status = VehicleStatus.AVAILABLE
    await db_session.commit()

    candidates = await load_candidates(db_session)
    assert [c.driver_id for c in candidates] == [campus.driver_two.id]


@pytest.mark.asyncio
async def test_nearest_driver_ranked_first_for_ride(db_session, campus, feed):
    controller = RideLifecycleController(db_session, feed=feed)
    ride = await controller.request_ride(campus.passenger_session, campus.main_gate.id, campus.hostel.id)

    ranked = await rank_candidates_for_ride(db_session, ride)
    # Shuttle B is parked at the Main Gate
    assert ranked[0].driver_id == campus.driver_two.id
    assert ranked[0].distance_km == pytest.approx(0, abs=1e-6)
    assert ranked[0].score == 100


@pytest.mark.asyncio
async def test_pending_rides_ranked_by_pickup_distance(db_session, campus, feed):
    controller = RideLifecycleController(db_session, feed=feed)
    far = await controller.request_ride(campus.passenger_session, campus.hostel.id, campus.main_gate.id)
    near = await controller.request_ride(campus.other_passenger_session, campus.library.id, campus.main_gate.id)

    ranked = await rank_pending_rides(db_session, campus.driver_one)
    # Shuttle A is parked at the Library
    assert [r.ride.id for r in ranked] == [near.id, far.id]
    assert ranked[0].distance_km < ranked[1].distance_km


@pytest.mark.asyncio
async def test_allocator_assigns_nearest_driver(db_session, campus, feed):
    controller = RideLifecycleController(db_session, feed=feed)
    ride = await controller.request_ride(campus.passenger_session, campus.main_gate.id, campus.hostel.id)

    result = await NearestDriverAllocator(db_session, feed=feed).allocate(ride.id)

    assert result.success
    assert result.driver_id == campus.driver_two.id
    assert result.driver_name == "Tunde Ade"


@pytest.mark.asyncio
async def test_allocator_moves_on_when_nearest_driver_took_another_ride(db_session, campus, feed, mocker):
    controller = RideLifecycleController(db_session, feed=feed)
    ride = await controller.request_ride(campus.passenger_session, campus.main_gate.id, campus.hostel.id)
    ranked = await rank_candidates_for_ride(db_session, ride)
    assert ranked[0].driver_id == campus.driver_two.id

    # Driver two commits another ride after the ranking was taken
    other = await controller.request_ride(
        campus.other_passenger_session, campus.library.id, campus.hostel.id
    )
    await controller.accept_ride(campus.driver_two_session, other.id)
    await db_session.execute(
        update(Driver).where(Driver.id == campus.driver_two.id).values(status=DriverStatus.AVAILABLE)
    )
    await db_session.commit()

    ride_id, driver_one_id = ride.id, campus.driver_one.id
    allocator = NearestDriverAllocator(db_session, feed=feed)
    mocker.patch(
        "campus_shuttle.app.services.allocation.rank_candidates_for_ride", return_value=ranked
    )
    mocker.patch.object(allocator.controller.store, "active_ride_for_driver", return_value=None)

    result = await allocator.allocate(ride_id)

    assert result.success
    assert result.driver_id == driver_one_id
