"""Ed25519 request signature verification dependency for FastAPI."""

import uuid

import redis.asyncio as aioredis
from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.config import settings
from escrow_api.database import get_db, run_query
from escrow_api.errors import UnauthorizedError
from escrow_api.models.profile import Profile
from escrow_api.redis import get_redis
from escrow_api.utils.crypto import is_timestamp_valid, verify_signature

AUTH_SCHEME = "ProfileSig "


class AuthenticatedProfile:
    """Container for the verified caller."""

    def __init__(self, profile_id: uuid.UUID, profile: Profile) -> None:
        self.profile_id = profile_id
        self.profile = profile


def parse_authorization(header: str) -> tuple[uuid.UUID, str]:
    """Split ``ProfileSig <profile_id>:<signature>`` into its parts."""
    if not header.startswith(AUTH_SCHEME):
        raise UnauthorizedError("Invalid authorization scheme")
    try:
        profile_id_str, signature = header[len(AUTH_SCHEME):].split(":", 1)
        return uuid.UUID(profile_id_str), signature
    except ValueError:
        raise UnauthorizedError("Malformed authorization header")


async def verify_request(
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> AuthenticatedProfile:
    """Verify the Ed25519 signature on an incoming request."""
    auth_header = request.headers.get("Authorization")
    timestamp = request.headers.get("X-Timestamp")
    nonce = request.headers.get("X-Nonce")

    if not auth_header or not timestamp:
        raise UnauthorizedError("Missing authentication headers")

    profile_id, signature = parse_authorization(auth_header)

    if not is_timestamp_valid(timestamp, settings.signature_max_age_seconds):
        raise UnauthorizedError("Request timestamp expired")

    # Replay protection
    if nonce:
        fresh = await redis.set(f"nonce:{nonce}", "1", nx=True, ex=settings.nonce_ttl_seconds)
        if not fresh:
            raise UnauthorizedError("Nonce already used")

    result = await run_query(
        db, select(Profile).where(Profile.profile_id == profile_id), "verify_request"
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise UnauthorizedError("Profile not found")

    body = await request.body()
    if not verify_signature(
        profile.public_key, signature, timestamp, request.method.upper(), request.url.path, body
    ):
        raise UnauthorizedError("Invalid signature")

    return AuthenticatedProfile(profile_id=profile_id, profile=profile)
