"""Unit tests for the error taxonomy and the persistence retry policy."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api import database
from escrow_api.config import settings
from escrow_api.database import get_db, persistence_retry
from escrow_api.errors import (
    AlreadyResolvedError,
    DuplicateApprovalError,
    EscrowError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
)


@pytest.mark.parametrize(
    ("cls", "status", "code"),
    [
        (ValidationError, 422, "validation_error"),
        (InvalidTransitionError, 409, "invalid_transition"),
        (InvalidStateError, 409, "invalid_state"),
        (UnauthorizedError, 403, "unauthorized"),
        (DuplicateApprovalError, 409, "duplicate_approval"),
        (AlreadyResolvedError, 409, "already_resolved"),
        (NotFoundError, 404, "not_found"),
        (PersistenceError, 503, "persistence_error"),
    ],
)
def test_error_codes(cls: type[EscrowError], status: int, code: str) -> None:
    err = cls("boom")
    assert isinstance(err, EscrowError)
    assert err.status_code == status
    assert err.to_dict() == {"detail": "boom", "error": code}


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failure() -> None:
    object.__setattr__(settings, "persistence_retry_attempts", 3)
    calls = []

    @persistence_retry
    async def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise PersistenceError("connection reset")
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_is_bounded() -> None:
    object.__setattr__(settings, "persistence_retry_attempts", 2)
    calls = []

    @persistence_retry
    async def down() -> None:
        calls.append(1)
        raise PersistenceError("store unavailable")

    with pytest.raises(PersistenceError):
        await down()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_retry_ignores_domain_errors() -> None:
    calls = []

    @persistence_retry
    async def invalid() -> None:
        calls.append(1)
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        await invalid()
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_get_db_uses_the_single_session_factory() -> None:
    sessions = get_db()
    session = await anext(sessions)
    try:
        assert isinstance(session, AsyncSession)
        assert session.bind is database.engine
    finally:
        await sessions.aclose()
    assert not hasattr(database, "async_session_factory")
