import asyncio
import functools
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from escrow_api.config import settings
from escrow_api.errors import PersistenceError

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, echo=(settings.env == "development"))
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

P = ParamSpec("P")
T = TypeVar("T")


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def commit(db: AsyncSession, operation: str) -> None:
    """Commit the unit of work, translating store failures into PersistenceError.

    The session is rolled back first so nothing from the failed unit stays
    visible to later reads on the same session.
    """
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Store write failed during %s", operation)
        raise PersistenceError(f"Store write failed during {operation}") from e


def persistence_retry(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Retry an idempotent operation on PersistenceError with exponential backoff.

    Only wrap reads and writes guarded by an idempotency key.
    """

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        attempts = max(1, settings.persistence_retry_attempts)
        attempt = 1
        while True:
            try:
                return await func(*args, **kwargs)
            except PersistenceError:
                if attempt >= attempts:
                    raise
                delay = settings.persistence_retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.2fs",
                    func.__name__, attempt, attempts, delay,
                )
                await asyncio.sleep(delay)
                attempt += 1

    return wrapper


async def run_query(db: AsyncSession, statement, operation: str):  # type: ignore[no-untyped-def]
    """Execute a read statement, mapping store failures onto PersistenceError."""
    try:
        return await db.execute(statement)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("Store read failed during %s", operation)
        raise PersistenceError(f"Store read failed during {operation}") from e
