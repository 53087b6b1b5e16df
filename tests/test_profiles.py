"""Tests for profile registration, lookup and verification."""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.errors import NotFoundError, PersistenceError, UnauthorizedError, ValidationError
from escrow_api.schemas.profile import ProfileCreate
from escrow_api.services import profile as profile_service
from escrow_api.utils.crypto import generate_keypair
from tests.conftest import create_profile, make_profile_data, register_via_api, signed


@pytest.mark.asyncio
async def test_register_profile(client: AsyncClient) -> None:
    _, pub = generate_keypair()
    resp = await client.post("/profiles", json=make_profile_data(pub, role="auditor"))
    assert resp.status_code == 201
    data = resp.json()
    assert data["public_key"] == pub
    assert data["role"] == "auditor"
    assert data["is_arbitrator"] is False
    assert data["is_verified"] is False


@pytest.mark.asyncio
async def test_register_invalid_public_key(client: AsyncClient) -> None:
    resp = await client.post("/profiles", json=make_profile_data("not-a-key"))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_register_unknown_role(client: AsyncClient) -> None:
    resp = await client.post("/profiles", json=make_profile_data(role="overlord"))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_duplicate_public_key(client: AsyncClient) -> None:
    _, pub = generate_keypair()
    assert (await client.post("/profiles", json=make_profile_data(pub))).status_code == 201
    resp = await client.post("/profiles", json=make_profile_data(pub))
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_get_profile(client: AsyncClient) -> None:
    profile_id, _ = await register_via_api(client)
    resp = await client.get(f"/profiles/{profile_id}")
    assert resp.status_code == 200
    assert resp.json()["profile_id"] == profile_id


@pytest.mark.asyncio
async def test_verify_profile_requires_arbitrator(client: AsyncClient) -> None:
    target_id, _ = await register_via_api(client)
    user_id, user_key = await register_via_api(client)
    arbitrator_id, arbitrator_key = await register_via_api(client, role="admin", is_arbitrator=True)

    resp = await signed(client, "POST", f"/profiles/{target_id}/verify", user_id, user_key)
    assert resp.status_code == 403

    resp = await signed(client, "POST", f"/profiles/{target_id}/verify", arbitrator_id, arbitrator_key)
    assert resp.status_code == 200
    assert resp.json()["is_verified"] is True


@pytest.mark.asyncio
async def test_service_duplicate_key(db_session: AsyncSession) -> None:
    _, pub = generate_keypair()
    await profile_service.register_profile(db_session, ProfileCreate(**make_profile_data(pub)))
    with pytest.raises(ValidationError):
        await profile_service.register_profile(db_session, ProfileCreate(**make_profile_data(pub)))


@pytest.mark.asyncio
async def test_service_lookups(db_session: AsyncSession) -> None:
    profile, _ = await create_profile(db_session)
    with pytest.raises(NotFoundError):
        await profile_service.get_profile(db_session, uuid.uuid4())
    found = await profile_service.get_profiles(db_session, [profile.profile_id, uuid.uuid4()])
    assert list(found) == [profile.profile_id]
    with pytest.raises(UnauthorizedError):
        await profile_service.require_arbitrator(db_session, profile.profile_id)


@pytest.mark.asyncio
async def test_store_failure_during_registration(db_session: AsyncSession, monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing_flush(self: AsyncSession, objects: object = None) -> None:
        raise OperationalError("INSERT INTO profiles", {}, Exception("connection reset"))

    monkeypatch.setattr(AsyncSession, "flush", failing_flush)
    with pytest.raises(PersistenceError):
        await profile_service.register_profile(db_session, ProfileCreate(**make_profile_data()))
