"""
tests/test_stoodioz.py
Stoodio listings, owner-only management and rooms.
"""

from decimal import Decimal
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Stoodio, User
from tests.conftest import auth_headers

NEW_STOODIO = {
    "name": "Night Shift",
    "location": "Brooklyn, NY",
    "hourly_rate": "95.00",
    "engineer_pay_rate": "40.00",
    "amenities": ["SSL console", "lounge"],
}


@pytest.mark.asyncio
async def test_create_stoodio(client: AsyncClient, stoodio_owner: User):
    response = await client.post("/stoodioz", headers=auth_headers(stoodio_owner), json=NEW_STOODIO)
    assert response.status_code == 201
    data = response.json()
    assert data["owner_id"] == str(stoodio_owner.id)
    assert Decimal(data["hourly_rate"]) == Decimal("95")
    assert data["verification_status"] == "UNVERIFIED"
    assert data["rooms"] == []


@pytest.mark.asyncio
async def test_only_stoodio_accounts_can_list_a_space(client: AsyncClient, artist: User):
    response = await client.post("/stoodioz", headers=auth_headers(artist), json=NEW_STOODIO)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_filters_and_order(client: AsyncClient, db: AsyncSession, stoodio: Stoodio):
    db.add(Stoodio(owner_id=stoodio.owner_id, name="Budget Booth", location="Atlanta, GA",
                   hourly_rate=Decimal("40.00")))
    db.add(Stoodio(owner_id=stoodio.owner_id, name="Hollywood Hall", location="Los Angeles, CA",
                   hourly_rate=Decimal("400.00")))
    await db.commit()

    everything = (await client.get("/stoodioz")).json()
    assert [s["name"] for s in everything] == ["Budget Booth", "Echo Chamber", "Hollywood Hall"]

    atlanta = (await client.get("/stoodioz", params={"location": "atlanta"})).json()
    assert [s["name"] for s in atlanta] == ["Budget Booth", "Echo Chamber"]

    cheap = (await client.get("/stoodioz", params={"max_hourly_rate": 100})).json()
    assert [s["name"] for s in cheap] == ["Budget Booth"]

    paged = (await client.get("/stoodioz", params={"page": 2, "page_size": 2})).json()
    assert [s["name"] for s in paged] == ["Hollywood Hall"]


@pytest.mark.asyncio
async def test_get_stoodio_with_rooms(client: AsyncClient, stoodio: Stoodio, room):
    response = await client.get(f"/stoodioz/{stoodio.id}")
    assert response.status_code == 200
    rooms = response.json()["rooms"]
    assert [r["name"] for r in rooms] == ["Studio B"]
    assert rooms[0]["smoking_policy"] == "NON_SMOKING"


@pytest.mark.asyncio
async def test_get_missing_stoodio(client: AsyncClient):
    response = await client.get(f"/stoodioz/{uuid.uuid4()}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_owner_updates_stoodio(client: AsyncClient, stoodio_owner: User, stoodio: Stoodio):
    response = await client.put(
        f"/stoodioz/{stoodio.id}", headers=auth_headers(stoodio_owner), json={"hourly_rate": "135.50"}
    )
    assert response.status_code == 200
    assert Decimal(response.json()["hourly_rate"]) == Decimal("135.50")
    assert response.json()["name"] == "Echo Chamber"


@pytest.mark.asyncio
async def test_non_owner_cannot_manage(client: AsyncClient, artist: User, stoodio: Stoodio):
    update = await client.put(f"/stoodioz/{stoodio.id}", headers=auth_headers(artist), json={"name": "Mine now"})
    assert update.status_code == 403

    room = await client.post(
        f"/stoodioz/{stoodio.id}/rooms", headers=auth_headers(artist), json={"name": "A", "hourly_rate": "10"}
    )
    assert room.status_code == 403


@pytest.mark.asyncio
async def test_owner_adds_room(client: AsyncClient, stoodio_owner: User, stoodio: Stoodio):
    response = await client.post(
        f"/stoodioz/{stoodio.id}/rooms",
        headers=auth_headers(stoodio_owner),
        json={"name": "Smoke Room", "hourly_rate": "60", "smoking_policy": "SMOKING_ALLOWED"},
    )
    assert response.status_code == 201
    assert response.json()["stoodio_id"] == str(stoodio.id)
    assert response.json()["smoking_policy"] == "SMOKING_ALLOWED"

    detail = (await client.get(f"/stoodioz/{stoodio.id}")).json()
    assert [r["name"] for r in detail["rooms"]] == ["Smoke Room"]
