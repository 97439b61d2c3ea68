"""
Ride API tests: passenger, driver and admin flows over HTTP.
"""

import pytest

from campus_shuttle.app.core.dependencies import get_allocator
from campus_shuttle.app.main import app
from campus_shuttle.app.services.allocation import AllocationResult

from conftest import auth, login


async def request_ride(client, token, pickup_id, dropoff_id):
    return await client.post(
        "/v1/passenger/rides",
        json={"pickup_location_id": pickup_id, "dropoff_location_id": dropoff_id},
        headers=auth(token),
    )


@pytest.fixture
async def pending_ride(client, campus, passenger_token):
    response = await request_ride(client, passenger_token, campus.library.id, campus.hostel.id)
    assert response.status_code == 201, response.text
    return response.json()["ride"]


# Passenger

@pytest.mark.asyncio
async def test_request_ride_without_allocation(client, campus, passenger_token):
    response = await request_ride(client, passenger_token, campus.library.id, campus.hostel.id)

    assert response.status_code == 201
    data = response.json()
    assert data["allocated"] is False
    assert data["message"] == "Looking for available drivers..."

    ride = data["ride"]
    assert ride["status"] == "pending"
    assert ride["status_text"] == "Finding Driver..."
    assert ride["pickup_address"] == "Library"
    assert ride["dropoff_address"] == "Male Hostel"
    assert ride["passenger_name"] == "Ada Obi"
    assert ride["driver"] is None
    assert ride["distance_km"] > 0
    assert ride["distance_text"].endswith(" m")


@pytest.mark.asyncio
async def test_request_ride_reports_allocated_driver(client, campus, passenger_token, allocator):
    allocator.result = AllocationResult(success=True, driver_name="Tunde Ade", driver_id=campus.driver_two.id)

    response = await request_ride(client, passenger_token, campus.library.id, campus.hostel.id)

    assert response.json()["allocated"] is True
    assert response.json()["message"] == "Your ride has been assigned to Tunde Ade"


@pytest.mark.asyncio
async def test_nearest_driver_allocated_on_request(client, campus, passenger_token):
    app.dependency_overrides.pop(get_allocator)

    response = await request_ride(client, passenger_token, campus.library.id, campus.hostel.id)

    data = response.json()
    assert data["allocated"] is True
    assert data["message"] == "Your ride has been assigned to Emeka Eze"
    assert data["ride"]["status"] == "accepted"
    assert data["ride"]["allocation_method"] == "system_allocated"
    assert data["ride"]["allocation_score"] == 100
    assert data["ride"]["driver"]["vehicle_number"] == "FUW-001"


@pytest.mark.asyncio
async def test_same_pickup_and_dropoff_rejected(client, campus, passenger_token):
    response = await request_ride(client, passenger_token, campus.library.id, campus.library.id)

    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_RIDE_001"


@pytest.mark.asyncio
async def test_pickup_must_be_a_shuttle_stop(client, campus, passenger_token):
    response = await request_ride(client, passenger_token, campus.annex.id, campus.library.id)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_one_open_ride_per_passenger(client, campus, passenger_token, pending_ride):
    response = await request_ride(client, passenger_token, campus.main_gate.id, campus.hostel.id)

    assert response.status_code == 409
    assert response.json()["details"]["ride_id"] == pending_ride["id"]


@pytest.mark.asyncio
async def test_active_ride_and_detail(client, passenger_token, pending_ride):
    response = await client.get("/v1/passenger/rides/active", headers=auth(passenger_token))
    assert [r["id"] for r in response.json()["rides"]] == [pending_ride["id"]]

    response = await client.get(f"/v1/passenger/rides/{pending_ride['id']}", headers=auth(passenger_token))
    assert response.status_code == 200
    steps = response.json()["progress_steps"]
    assert [s["id"] for s in steps] == ["pending", "accepted", "arriving", "in_progress", "completed"]
    assert steps[0]["is_current"] is True
    assert all(s["is_pending"] for s in steps[1:])


@pytest.mark.asyncio
async def test_other_passenger_cannot_view_ride(client, campus, pending_ride):
    token = await login(client, campus.other_passenger.email)

    response = await client.get(f"/v1/passenger/rides/{pending_ride['id']}", headers=auth(token))
    assert response.status_code == 403

    response = await client.post(f"/v1/passenger/rides/{pending_ride['id']}/cancel", headers=auth(token))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_ride_is_404(client, passenger_token):
    response = await client.get("/v1/passenger/rides/999", headers=auth(passenger_token))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_passenger_cancels_and_sees_history(client, passenger_token, pending_ride):
    response = await client.post(
        f"/v1/passenger/rides/{pending_ride['id']}/cancel", headers=auth(passenger_token)
    )

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    assert response.json()["cancellation_reason"] == "Cancelled by passenger"

    response = await client.get("/v1/passenger/rides/active", headers=auth(passenger_token))
    assert response.json()["total"] == 0

    response = await client.get("/v1/passenger/rides/history", headers=auth(passenger_token))
    assert [r["id"] for r in response.json()["rides"]] == [pending_ride["id"]]


@pytest.mark.asyncio
async def test_cancel_with_reason(client, passenger_token, pending_ride):
    response = await client.post(
        f"/v1/passenger/rides/{pending_ride['id']}/cancel",
        json={"reason": "Found a lift"},
        headers=auth(passenger_token),
    )
    assert response.json()["cancellation_reason"] == "Found a lift"


@pytest.mark.asyncio
async def test_history_keeps_five_newest(client, campus, passenger_token):
    ids = []
    for _ in range(6):
        response = await request_ride(client, passenger_token, campus.library.id, campus.hostel.id)
        ride_id = response.json()["ride"]["id"]
        ids.append(ride_id)
        await client.post(f"/v1/passenger/rides/{ride_id}/cancel", headers=auth(passenger_token))

    response = await client.get("/v1/passenger/rides/history", headers=auth(passenger_token))
    assert [r["id"] for r in response.json()["rides"]] == list(reversed(ids))[:5]


# Driver

@pytest.mark.asyncio
async def test_driver_profile(client, campus, driver_one_token):
    response = await client.get("/v1/driver/me", headers=auth(driver_one_token))

    assert response.status_code == 200
    data = response.json()
    assert data["full_name"] == "Emeka Eze"
    assert data["driver"]["status"] == "available"
    assert data["driver"]["vehicle"]["vehicle_name"] == "Shuttle A"
    assert data["stats"]["today_rides"] == 0


@pytest.mark.asyncio
async def test_pending_rides_nearest_pickup_first(client, campus, passenger_token, driver_one_token):
    far = await request_ride(client, passenger_token, campus.hostel.id, campus.main_gate.id)
    other_token = await login(client, campus.other_passenger.email)
    near = await request_ride(client, other_token, campus.library.id, campus.main_gate.id)

    response = await client.get("/v1/driver/rides/pending", headers=auth(driver_one_token))

    rides = response.json()["rides"]
    assert [r["id"] for r in rides] == [near.json()["ride"]["id"], far.json()["ride"]["id"]]
    assert rides[0]["distance_to_pickup_km"] == 0
    assert rides[0]["score"] == 100
    assert rides[0]["distance_to_pickup_text"] == "0 m"


@pytest.mark.asyncio
async def test_full_ride_over_http(client, campus, passenger_token, driver_one_token, pending_ride):
    ride_id = pending_ride["id"]
    headers = auth(driver_one_token)

    response = await client.post(f"/v1/driver/rides/{ride_id}/accept", headers=headers)
    assert response.status_code == 200
    assert response.json()["status_text"] == "Driver Assigned"
    assert response.json()["allocation_method"] == "driver_accepted"
    assert response.json()["driver"]["full_name"] == "Emeka Eze"

    response = await client.get("/v1/driver/rides/active", headers=headers)
    assert [r["id"] for r in response.json()["rides"]] == [ride_id]

    profile = await client.get("/v1/driver/me", headers=headers)
    assert profile.json()["driver"]["status"] == "busy"
    assert profile.json()["driver"]["vehicle"]["status"] == "in_transit"

    for action, status in (("arriving", "arriving"), ("start", "in_progress"), ("complete", "completed")):
        response = await client.post(f"/v1/driver/rides/{ride_id}/{action}", headers=headers)
        assert response.status_code == 200, response.text
        assert response.json()["status"] == status

    profile = await client.get("/v1/driver/me", headers=headers)
    assert profile.json()["driver"]["status"] == "available"
    assert profile.json()["stats"]["today_rides"] == 1
    assert profile.json()["stats"]["total_rides"] == 1

    detail = await client.get(f"/v1/passenger/rides/{ride_id}", headers=auth(passenger_token))
    steps = detail.json()["progress_steps"]
    assert all(s["is_completed"] for s in steps[:4])
    assert steps[4]["is_current"] is True


@pytest.mark.asyncio
async def test_skipping_a_step_is_rejected(client, driver_one_token, pending_ride):
    headers = auth(driver_one_token)
    await client.post(f"/v1/driver/rides/{pending_ride['id']}/accept", headers=headers)

    response = await client.post(f"/v1/driver/rides/{pending_ride['id']}/complete", headers=headers)

    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_RIDE_002"


@pytest.mark.asyncio
async def test_other_driver_cannot_progress_ride(client, driver_one_token, driver_two_token, pending_ride):
    await client.post(f"/v1/driver/rides/{pending_ride['id']}/accept", headers=auth(driver_one_token))

    response = await client.post(
        f"/v1/driver/rides/{pending_ride['id']}/arriving", headers=auth(driver_two_token)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_driver_cancel_releases_driver(client, driver_one_token, pending_ride):
    headers = auth(driver_one_token)
    await client.post(f"/v1/driver/rides/{pending_ride['id']}/accept", headers=headers)

    response = await client.post(f"/v1/driver/rides/{pending_ride['id']}/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["cancellation_reason"] == "Cancelled by driver"

    profile = await client.get("/v1/driver/me", headers=headers)
    assert profile.json()["driver"]["status"] == "available"


@pytest.mark.asyncio
async def test_availability_toggle(client, driver_one_token):
    headers = auth(driver_one_token)

    response = await client.patch("/v1/driver/availability", headers=headers)
    assert response.json()["status"] == "offline"
    assert response.json()["vehicle"]["status"] == "offline"

    response = await client.patch("/v1/driver/availability", json={"available": True}, headers=headers)
    assert response.json()["status"] == "available"


@pytest.mark.asyncio
async def test_cannot_go_offline_during_a_ride(client, driver_one_token, pending_ride):
    headers = auth(driver_one_token)
    await client.post(f"/v1/driver/rides/{pending_ride['id']}/accept", headers=headers)

    response = await client.patch("/v1/driver/availability", json={"available": False}, headers=headers)

    assert response.status_code == 409
    assert response.json()["details"]["ride_id"] == pending_ride["id"]


@pytest.mark.asyncio
async def test_offline_driver_cannot_accept(client, driver_one_token, pending_ride):
    headers = auth(driver_one_token)
    await client.patch("/v1/driver/availability", json={"available": False}, headers=headers)

    response = await client.post(f"/v1/driver/rides/{pending_ride['id']}/accept", headers=headers)
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_DRIVER_001"


@pytest.mark.asyncio
async def test_vehicle_location_update(client, driver_one_token):
    response = await client.put(
        "/v1/driver/vehicle/location",
        json={"latitude": 7.8580, "longitude": 9.7890},
        headers=auth(driver_one_token),
    )

    assert response.status_code == 200
    vehicle = response.json()["vehicle"]
    assert (vehicle["current_latitude"], vehicle["current_longitude"]) == (7.8580, 9.7890)
    assert vehicle["location_updated_at"] is not None


@pytest.mark.asyncio
async def test_vehicle_location_out_of_range(client, driver_one_token):
    response = await client.put(
        "/v1/driver/vehicle/location",
        json={"latitude": 91, "longitude": 9.7890},
        headers=auth(driver_one_token),
    )
    assert response.status_code == 422


# Role guards

@pytest.mark.asyncio
async def test_role_guards(client, passenger_token, driver_one_token, admin_token):
    assert (await client.get("/v1/driver/rides/pending", headers=auth(passenger_token))).status_code == 403
    assert (await client.get("/v1/passenger/rides/active", headers=auth(driver_one_token))).status_code == 403
    assert (await client.get("/v1/admin/audit-logs", headers=auth(driver_one_token))).status_code == 403
    assert (await client.get("/v1/driver/me", headers=auth(admin_token))).status_code == 403


# Admin

@pytest.mark.asyncio
async def test_admin_creates_vehicle_and_driver(client, admin_token):
    headers = auth(admin_token)

    response = await client.post(
        "/v1/admin/vehicles", json={"vehicle_name": "Shuttle C", "vehicle_number": "FUW-003"}, headers=headers
    )
    assert response.status_code == 201
    vehicle = response.json()
    assert vehicle["status"] == "offline"
    assert vehicle["capacity"] == 14

    response = await client.post(
        "/v1/admin/vehicles", json={"vehicle_name": "Copy", "vehicle_number": "FUW-003"}, headers=headers
    )
    assert response.status_code == 400

    response = await client.post("/v1/admin/drivers", json={
        "email": "bola@fuw.edu.ng",
        "password": "secret123",
        "full_name": "Bola Ige",
        "vehicle_id": vehicle["id"],
    }, headers=headers)
    assert response.status_code == 201
    driver = response.json()
    assert driver["status"] == "offline"
    assert driver["vehicle"]["vehicle_number"] == "FUW-003"

    token = await login(client, "bola@fuw.edu.ng")
    response = await client.patch("/v1/driver/availability", headers=auth(token))
    assert response.json()["status"] == "available"


@pytest.mark.asyncio
async def test_vehicle_has_a_single_driver(client, campus, admin_token):
    response = await client.post("/v1/admin/drivers", json={
        "email": "second@fuw.edu.ng",
        "password": "secret123",
        "full_name": "Second Driver",
        "vehicle_id": campus.vehicle_one.id,
    }, headers=auth(admin_token))

    assert response.status_code == 400
    assert response.json()["message"] == "Vehicle already has a driver"


@pytest.mark.asyncio
async def test_admin_creates_stop(client, admin_token, passenger_token):
    response = await client.post("/v1/admin/locations", json={
        "name": "Sports Complex", "latitude": 7.8500, "longitude": 9.7750, "location_type": "sports",
    }, headers=auth(admin_token))
    assert response.status_code == 201

    response = await client.get("/v1/locations", headers=auth(passenger_token))
    names = [loc["name"] for loc in response.json()["locations"]]
    assert names == ["Library", "Main Gate", "Male Hostel", "Sports Complex"]


@pytest.mark.asyncio
async def test_admin_cancels_pending_ride(client, admin_token, pending_ride):
    response = await client.post(
        f"/v1/admin/rides/{pending_ride['id']}/cancel", headers=auth(admin_token)
    )
    assert response.status_code == 200
    assert response.json()["cancellation_reason"] == "Cancelled by transport office"


@pytest.mark.asyncio
async def test_reconcile_repairs_stale_driver(client, campus, admin_token, db_session):
    from campus_shuttle.app.models.ride_enums import DriverStatus

    campus.driver_two.status = DriverStatus.BUSY
    await db_session.commit()

    response = await client.post(
        f"/v1/admin/drivers/{campus.driver_two.id}/reconcile", headers=auth(admin_token)
    )

    assert response.status_code == 200
    assert response.json() == {
        "driver_id": campus.driver_two.id,
        "changed": True,
        "driver_status": "available",
        "vehicle_status": "available",
    }


@pytest.mark.asyncio
async def test_audit_trail_for_ride(client, admin_token, driver_one_token, pending_ride):
    await client.post(f"/v1/driver/rides/{pending_ride['id']}/accept", headers=auth(driver_one_token))

    response = await client.get(
        "/v1/admin/audit-logs", params={"ride_id": pending_ride["id"]}, headers=auth(admin_token)
    )

    actions = [log["action"] for log in response.json()["logs"]]
    assert set(actions) == {"RIDE_REQUESTED", "RIDE_ACCEPTED"}
    assert actions[0] == "RIDE_ACCEPTED"


# Locations and health

@pytest.mark.asyncio
async def test_nearest_stop(client, passenger_token):
    response = await client.get(
        "/v1/locations/nearest", params={"lat": 7.8579, "lon": 9.7889}, headers=auth(passenger_token)
    )

    data = response.json()
    assert data["location"]["name"] == "Male Hostel"
    assert data["used_fallback"] is False


@pytest.mark.asyncio
async def test_nearest_stop_falls_back_to_campus_center(client, passenger_token):
    response = await client.get("/v1/locations/nearest", headers=auth(passenger_token))

    data = response.json()
    assert data["used_fallback"] is True
    # Campus center sits closest to the Library
    assert data["location"]["name"] == "Library"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["redis"] == "up"
