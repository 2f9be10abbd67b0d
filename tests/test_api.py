"""
Integration tests for the REST API endpoints.

Routes run against the in-memory SQLite store through ``get_db``
overridden with the test session factory.  ASGITransport does not run
the lifespan, so neither the system-account bootstrap nor the
notification worker start here.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.api.dependencies import get_db
from tests.conftest import AIRPORT, FORT, GALLE_FACE, booking_day, headers_for

API = "/api/v1"


def _place(place):
    return {
        "address": place.address,
        "coordinates": {"lat": place.location.latitude, "lng": place.location.longitude},
    }


def _ride_body(destination=GALLE_FACE, **overrides):
    body = {
        "ride_type": "one_way",
        "pickup_location": _place(FORT),
        "destination_location": _place(destination),
        "scheduled_date": booking_day().isoformat(),
        "scheduled_time": "09:00",
    }
    body.update(overrides)
    return body


@pytest_asyncio.fixture
async def client(session_factory, fleet):
    async def _test_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_db] = _test_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _create(client, user, **overrides):
    resp = await client.post(
        f"{API}/rides", json=_ride_body(**overrides), headers=headers_for(user)
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Health ───────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get(f"{API}/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── Identity ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_missing_identity_is_401(client):
    resp = await client.post(f"{API}/rides", json=_ride_body())
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Authentication required"}


@pytest.mark.asyncio
async def test_unknown_role_is_401(client, fleet):
    resp = await client.get(
        f"{API}/rides",
        headers={"X-User-Id": str(fleet["user"].id), "X-User-Role": "pilot"},
    )
    assert resp.status_code == 401


# ── Ride lifecycle ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_ride(client, fleet):
    data = await _create(client, fleet["user"])

    assert data["status"] == "awaiting_admin"
    assert data["requester_id"] == fleet["user"].id
    assert data["requires_pm_approval"] is False
    assert data["scheduled_time"] == "09:00"


@pytest.mark.asyncio
async def test_create_rejects_bad_time(client, fleet):
    resp = await client.post(
        f"{API}/rides",
        json=_ride_body(scheduled_time="25:00"),
        headers=headers_for(fleet["user"]),
    )
    assert resp.status_code == 400
    assert "HH:MM" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_create_rejects_out_of_range_coordinates(client, fleet):
    body = _ride_body()
    body["pickup_location"]["coordinates"]["lat"] = 91
    resp = await client.post(f"{API}/rides", json=body, headers=headers_for(fleet["user"]))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_missing_ride_is_404(client, fleet):
    resp = await client.get(f"{API}/rides/9999", headers=headers_for(fleet["admin"]))
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Ride not found"}


@pytest.mark.asyncio
async def test_outsider_cannot_view_ride(client, fleet):
    ride = await _create(client, fleet["user"])
    resp = await client.get(
        f"{API}/rides/{ride['id']}", headers=headers_for(fleet["other_user"])
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_cancel_then_cancel_again(client, fleet):
    ride = await _create(client, fleet["user"])
    url = f"{API}/rides/{ride['id']}/cancel"

    resp = await client.patch(url, headers=headers_for(fleet["user"]))
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = await client.patch(url, headers=headers_for(fleet["user"]))
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_full_ride_over_http(client, fleet):
    admin, driver = headers_for(fleet["admin"]), headers_for(fleet["driver"])
    ride = await _create(client, fleet["user"])
    url = f"{API}/rides/{ride['id']}"

    resp = await client.patch(f"{url}/admin-approve", json={}, headers=admin)
    assert resp.json()["status"] == "approved"

    resp = await client.patch(
        f"{url}/assign",
        json={"driver_id": fleet["driver"].id, "vehicle_id": fleet["vehicle"].id},
        headers=admin,
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["assigned_driver_id"] == fleet["driver"].id

    resp = await client.get(f"{API}/rides/driver/assigned", headers=driver)
    assert [r["id"] for r in resp.json()] == [ride["id"]]

    resp = await client.patch(f"{url}/start", json={"start_mileage": 5000}, headers=driver)
    assert resp.json()["status"] == "in_progress"

    resp = await client.patch(f"{url}/complete", json={"end_mileage": 4999}, headers=driver)
    assert resp.status_code == 400

    resp = await client.patch(f"{url}/complete", json={"end_mileage": 5012}, headers=driver)
    assert resp.status_code == 200
    assert resp.json()["actual_distance"] == 12

    resp = await client.get(f"{API}/vehicles/{fleet['vehicle'].id}", headers=admin)
    vehicle = resp.json()
    assert vehicle["status"] == "available"
    assert vehicle["total_mileage"] == 12

    resp = await client.get(f"{API}/rides/my-stats", headers=headers_for(fleet["user"]))
    assert resp.json()["completed_rides"] == 1


@pytest.mark.asyncio
async def test_non_finite_mileage_is_refused(client, fleet):
    admin, driver = headers_for(fleet["admin"]), headers_for(fleet["driver"])
    ride = await _create(client, fleet["user"])
    url = f"{API}/rides/{ride['id']}"
    await client.patch(f"{url}/admin-approve", json={}, headers=admin)
    await client.patch(
        f"{url}/assign",
        json={"driver_id": fleet["driver"].id, "vehicle_id": fleet["vehicle"].id},
        headers=admin,
    )
    raw_json = {**driver, "Content-Type": "application/json"}

    resp = await client.patch(
        f"{url}/start", content='{"start_mileage": NaN}', headers=raw_json
    )
    assert resp.status_code == 422

    resp = await client.patch(f"{url}/start", json={"start_mileage": 100}, headers=driver)
    assert resp.json()["status"] == "in_progress"

    resp = await client.patch(
        f"{url}/complete", content='{"end_mileage": Infinity}', headers=raw_json
    )
    assert resp.status_code == 422

    resp = await client.patch(f"{url}/complete", json={"end_mileage": 108}, headers=driver)
    assert resp.status_code == 200
    assert resp.json()["actual_distance"] == 8


@pytest.mark.asyncio
async def test_double_booking_is_409(client, fleet):
    admin = headers_for(fleet["admin"])
    first = await _create(client, fleet["user"])
    second = await _create(client, fleet["other_user"])
    assignment = {"driver_id": fleet["driver"].id, "vehicle_id": fleet["vehicle"].id}

    for ride in (first, second):
        await client.patch(f"{API}/rides/{ride['id']}/admin-approve", json={}, headers=admin)

    resp = await client.patch(
        f"{API}/rides/{first['id']}/assign", json=assignment, headers=admin
    )
    assert resp.status_code == 200
    resp = await client.patch(
        f"{API}/rides/{second['id']}/assign", json=assignment, headers=admin
    )
    assert resp.status_code == 409
    assert "already booked" in resp.json()["detail"]

    resp = await client.get(
        f"{API}/rides/available-drivers",
        params={"date": first["scheduled_date"], "time": "09:00"},
        headers=admin,
    )
    flags = {d["id"]: d["is_available"] for d in resp.json()}
    assert flags == {fleet["driver"].id: False, fleet["driver2"].id: True}


@pytest.mark.asyncio
async def test_long_ride_needs_note_over_http(client, fleet):
    ride = await _create(client, fleet["user"], destination=AIRPORT)
    assert ride["requires_pm_approval"] is True

    resp = await client.get(f"{API}/rides/awaiting-pm", headers=headers_for(fleet["pm"]))
    assert [r["id"] for r in resp.json()] == [ride["id"]]

    resp = await client.patch(
        f"{API}/rides/{ride['id']}/admin-approve",
        json={},
        headers=headers_for(fleet["admin"]),
    )
    assert resp.status_code == 400
    assert "note" in resp.json()["detail"].lower()

    resp = await client.patch(
        f"{API}/rides/{ride['id']}/pm-approve", headers=headers_for(fleet["pm"])
    )
    assert resp.status_code == 200
    assert resp.json()["is_pm_approved"] is True


@pytest.mark.asyncio
async def test_role_checks(client, fleet):
    user = headers_for(fleet["user"])
    ride = await _create(client, fleet["user"])

    resp = await client.patch(f"{API}/rides/{ride['id']}/admin-approve", json={}, headers=user)
    assert resp.status_code == 403
    resp = await client.get(f"{API}/rides/ready-for-assignment", headers=user)
    assert resp.status_code == 403
    assert resp.json()["detail"] == "Access denied. Admin only."
    resp = await client.get(f"{API}/admin/overview", headers=headers_for(fleet["pm"]))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_list_pagination_and_filter(client, fleet):
    for at in ("07:00", "08:00", "09:00"):
        await _create(client, fleet["user"], scheduled_time=at)

    resp = await client.get(
        f"{API}/rides", params={"page": 2, "limit": 2}, headers=headers_for(fleet["user"])
    )
    data = resp.json()
    assert (data["total"], data["page"], data["pages"]) == (3, 2, 2)
    assert len(data["rides"]) == 1

    resp = await client.get(
        f"{API}/rides",
        params={"status": "cancelled"},
        headers=headers_for(fleet["admin"]),
    )
    assert resp.json()["total"] == 0


@pytest.mark.asyncio
async def test_fourth_pending_request_is_refused(client, fleet):
    for at in ("07:00", "08:00", "09:00"):
        await _create(client, fleet["user"], scheduled_time=at)
    resp = await client.post(
        f"{API}/rides",
        json=_ride_body(scheduled_time="10:00"),
        headers=headers_for(fleet["user"]),
    )
    assert resp.status_code == 400
    assert "3 pending" in resp.json()["detail"]


# ── Notifications ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_notification_inbox(client, fleet):
    admin = headers_for(fleet["admin"])
    await _create(client, fleet["user"])
    await _create(client, fleet["other_user"])

    resp = await client.get(f"{API}/notifications", headers=admin)
    data = resp.json()
    assert data["unread_count"] == 2
    assert {n["event"] for n in data["notifications"]} == {"ride_created"}

    first_id = data["notifications"][0]["id"]
    resp = await client.patch(
        f"{API}/notifications/read", json={"ids": [first_id]}, headers=admin
    )
    assert resp.json() == {"updated": 1}

    resp = await client.patch(f"{API}/notifications/read", headers=admin)
    assert resp.json() == {"updated": 1}

    resp = await client.get(f"{API}/notifications", params={"unread_only": True}, headers=admin)
    assert resp.json() == {"notifications": [], "unread_count": 0}


# ── Fleet management ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_vehicle_admin_endpoints(client, fleet):
    admin = headers_for(fleet["admin"])

    resp = await client.post(
        f"{API}/vehicles", json={"vehicle_number": "kh-5330", "type": "Van"}, headers=admin
    )
    assert resp.status_code == 201
    assert resp.json()["vehicle_number"] == "KH-5330"

    resp = await client.post(
        f"{API}/vehicles", json={"vehicle_number": "KH-5330"}, headers=admin
    )
    assert resp.status_code == 400

    resp = await client.get(f"{API}/vehicles/counts", headers=admin)
    assert resp.json()["total"] == 3

    resp = await client.delete(f"{API}/vehicles/{fleet['vehicle2'].id}", headers=admin)
    assert resp.status_code == 204
    resp = await client.get(f"{API}/vehicles/{fleet['vehicle2'].id}", headers=admin)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_user_endpoints(client, fleet):
    admin = headers_for(fleet["admin"])

    resp = await client.post(
        f"{API}/users",
        json={
            "name": "Driver 5",
            "email": "driver5@fleet.local",
            "phone": "0775555555",
            "password": "long-enough",
            "role": "driver",
        },
        headers=admin,
    )
    assert resp.status_code == 201, resp.text
    assert "password_hash" not in resp.json()

    resp = await client.get(f"{API}/users/drivers", headers=headers_for(fleet["pm"]))
    assert len(resp.json()) == 3

    resp = await client.get(
        f"{API}/users",
        params={"role": "driver", "search": "driver 5", "limit": 2},
        headers=admin,
    )
    assert resp.status_code == 200, resp.text
    page = resp.json()
    assert page["total"] == 1
    assert page["pages"] == 1
    assert page["users"][0]["email"] == "driver5@fleet.local"

    resp = await client.get(f"{API}/users", params={"role": "pilot"}, headers=admin)
    assert resp.status_code == 422

    resp = await client.get(f"{API}/users/counts", headers=admin)
    assert resp.json()["driver"] == 3
    assert resp.json()["total"] == 7
    assert resp.json()["available_drivers"] == 3

    resp = await client.get(f"{API}/users/counts", headers=headers_for(fleet["user"]))
    assert resp.status_code == 403

    resp = await client.get(
        f"{API}/users/{fleet['admin'].id}", headers=headers_for(fleet["user"])
    )
    assert resp.status_code == 403
