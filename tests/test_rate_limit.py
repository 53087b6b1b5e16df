"""Tests for rate limiting (escrow_api/auth/rate_limit.py)."""

import pytest
from httpx import AsyncClient

from escrow_api.auth.rate_limit import get_rate_config
from escrow_api.config import settings
from tests.conftest import make_profile_data


@pytest.mark.asyncio
async def test_rate_limit_headers_present(client: AsyncClient) -> None:
    resp = await client.post("/profiles", json=make_profile_data())
    assert "x-ratelimit-limit" in resp.headers
    assert "x-ratelimit-remaining" in resp.headers


@pytest.mark.asyncio
async def test_rate_limit_exceeded_returns_429(client: AsyncClient) -> None:
    object.__setattr__(settings, "rate_limit_read_capacity", 2)
    object.__setattr__(settings, "rate_limit_read_refill_per_min", 0)
    resp = await client.post("/profiles", json=make_profile_data())
    assert resp.status_code == 201
    profile_id = resp.json()["profile_id"]

    for _ in range(5):
        resp = await client.get(f"/profiles/{profile_id}")
        if resp.status_code == 429:
            break
    assert resp.status_code == 429
    assert resp.json()["detail"] == "Rate limit exceeded"


@pytest.mark.asyncio
async def test_registration_bucket(client: AsyncClient) -> None:
    object.__setattr__(settings, "rate_limit_registration_capacity", 1)
    object.__setattr__(settings, "rate_limit_registration_refill_per_min", 0)
    assert (await client.post("/profiles", json=make_profile_data())).status_code == 201
    assert (await client.post("/profiles", json=make_profile_data())).status_code == 429


def test_rate_limit_categories() -> None:
    assert get_rate_config("POST", "/profiles")[2] == "registration"
    assert get_rate_config("POST", "/transactions/abc/approve")[2] == "approval"
    assert get_rate_config("POST", "/contracts")[2] == "write"
    assert get_rate_config("POST", "/disputes/abc/resolve")[2] == "write"
    assert get_rate_config("GET", "/contracts/abc")[2] == "read"
