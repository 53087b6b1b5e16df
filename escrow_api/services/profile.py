"""Profile business logic.

Profiles are owned by the identity subsystem; this service keeps only what
the escrow engine needs: a public key for signatures and the arbitrator flag.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.database import commit, persistence_retry, run_query
from escrow_api.errors import (
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
)
from escrow_api.models.profile import Profile, ProfileRole
from escrow_api.schemas.profile import ProfileCreate

logger = logging.getLogger(__name__)


async def register_profile(db: AsyncSession, data: ProfileCreate) -> Profile:
    """Register a profile. Public keys are unique."""
    result = await run_query(
        db, select(Profile).where(Profile.public_key == data.public_key), "register_profile"
    )
    if result.scalar_one_or_none() is not None:
        raise ValidationError("Public key already registered")

    profile = Profile(
        profile_id=uuid.uuid4(),
        public_key=data.public_key,
        display_name=data.display_name,
        description=data.description,
        role=ProfileRole(data.role),
        is_arbitrator=data.is_arbitrator,
    )
    db.add(profile)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("Public key already registered")
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Profile insert failed")
        raise PersistenceError("Profile registration failed") from e
    await commit(db, "register_profile")
    logger.info("Profile %s registered (role=%s, arbitrator=%s)",
                profile.profile_id, profile.role.value, profile.is_arbitrator)
    return profile


async def load_profile(db: AsyncSession, profile_id: uuid.UUID) -> Profile:
    """Single lookup, never retried. Use inside units of work that hold row locks."""
    result = await run_query(
        db, select(Profile).where(Profile.profile_id == profile_id), "get_profile"
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise NotFoundError("Profile not found")
    return profile


@persistence_retry
async def get_profile(db: AsyncSession, profile_id: uuid.UUID) -> Profile:
    return await load_profile(db, profile_id)


async def get_profiles(db: AsyncSession, profile_ids: list[uuid.UUID]) -> dict[uuid.UUID, Profile]:
    """Load several profiles at once; missing ids are absent from the result."""
    result = await run_query(
        db, select(Profile).where(Profile.profile_id.in_(profile_ids)), "get_profiles"
    )
    return {p.profile_id: p for p in result.scalars().all()}


async def require_arbitrator(db: AsyncSession, profile_id: uuid.UUID) -> Profile:
    profile = await load_profile(db, profile_id)
    if not profile.is_arbitrator:
        raise UnauthorizedError("Only an arbitrator can perform this action")
    return profile


async def verify_profile(
    db: AsyncSession, profile_id: uuid.UUID, actor_id: uuid.UUID
) -> Profile:
    """Mark a profile as verified. Arbitrators act as platform administrators here."""
    await require_arbitrator(db, actor_id)
    profile = await load_profile(db, profile_id)
    if not profile.is_verified:
        profile.is_verified = True
        await commit(db, "verify_profile")
        logger.info("Profile %s verified by %s", profile_id, actor_id)
    return profile
