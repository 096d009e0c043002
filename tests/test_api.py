"""
Smoke tests for the HTTP layer.
Startup is not run: tables come from the in-memory engine fixture,
collaborators (payments, telegram) stay unset.
"""
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rentals.database import get_db
from rentals.main import app

HOST = {"X-User-Id": "10", "X-User-Role": "host"}
GUEST = {"X-User-Id": "1", "X-User-Role": "guest"}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def create_listing(client, **overrides):
    payload = {"title": "Cabin by the lake", "price": "100", "max_guests": 4}
    payload.update(overrides)
    response = await client.post("/listings", json=payload, headers=HOST)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.integration
class TestApiSmoke:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": "ok"}

    @pytest.mark.asyncio
    async def test_listing_requires_identity(self, client):
        response = await client.post("/listings", json={"title": "x", "price": "10"})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_guest_cannot_create_listing(self, client):
        response = await client.post("/listings", json={"title": "x", "price": "10"}, headers=GUEST)
        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_booking_flow(self, client, future):
        listing = await create_listing(client)
        check_in, check_out = future(30), future(33)

        quote = await client.post(
            "/bookings/quote",
            json={"listing_id": listing["id"], "check_in": str(check_in), "check_out": str(check_out)},
        )
        assert quote.status_code == 200
        assert quote.json()["nights"] == 3
        assert Decimal(quote.json()["subtotal"]) == Decimal("300")

        created = await client.post(
            "/bookings",
            json={
                "listingId": listing["id"],
                "checkInDate": str(check_in),
                "checkOutDate": str(check_out),
                "guests": 2,
            },
            headers=GUEST,
        )
        assert created.status_code == 201, created.text
        booking = created.json()
        assert booking["status"] == "pending"
        assert booking["reference"].startswith("BKG-")
        assert Decimal(booking["total_amount"]) == Decimal(quote.json()["total"])

        availability = await client.get(
            "/bookings/availability",
            params={"listing_id": listing["id"], "check_in": str(check_in), "check_out": str(check_out)},
        )
        assert availability.json()["available"] is False

        confirmed = await client.patch(
            f"/bookings/{booking['id']}/status", json={"status": "confirmed"}, headers=HOST
        )
        assert confirmed.status_code == 200, confirmed.text
        assert confirmed.json()["status"] == "confirmed"

        logs = await client.get(f"/bookings/{booking['id']}/logs", headers=GUEST)
        assert [log["action"] for log in logs.json()][:1] == ["created"]

    @pytest.mark.asyncio
    async def test_overlapping_booking_is_conflict(self, client, future):
        listing = await create_listing(client)
        body = {"listing_id": listing["id"], "check_in": str(future(10)), "check_out": str(future(12))}

        first = await client.post("/bookings", json=body, headers=GUEST)
        second = await client.post("/bookings", json=body, headers={"X-User-Id": "2"})

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["error"] == "date_conflict"

    @pytest.mark.asyncio
    async def test_other_guest_cannot_see_booking(self, client, future):
        listing = await create_listing(client)
        body = {"listing_id": listing["id"], "check_in": str(future(10)), "check_out": str(future(12))}
        booking = (await client.post("/bookings", json=body, headers=GUEST)).json()

        response = await client.get(f"/bookings/{booking['id']}", headers={"X-User-Id": "99"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_status_filter(self, client):
        response = await client.get("/bookings", params={"status": "bogus"}, headers=GUEST)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_ics_export(self, client):
        listing = await create_listing(client)
        response = await client.get(f"/listings/{listing['id']}/calendar.ics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/calendar")
        assert response.text.startswith("BEGIN:VCALENDAR")

    @pytest.mark.asyncio
    async def test_global_pricing_is_admin_only(self, client):
        payload = {"service_fee": {"mode": "percentage", "value": "10"}}
        denied = await client.put("/pricing-configs/global", json=payload, headers=HOST)
        assert denied.status_code == 403

        allowed = await client.put(
            "/pricing-configs/global", json=payload, headers={"X-User-Id": "1", "X-User-Role": "admin"}
        )
        assert allowed.status_code == 200, allowed.text
