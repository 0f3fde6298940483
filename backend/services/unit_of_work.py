"""
Transaction boundary for every stock mutation.

``atomic`` runs one operation against the request's ``AsyncSession`` and
either commits all of it or rolls all of it back. Business errors
(``StockError``) are never retried. Transient datastore conflicts are retried
a bounded number of times with the whole operation re-run from scratch, then
surfaced as ``TransientConflictError``.

The session may already have autobegun (fastapi-users loads the current user
on the same session), so this never calls ``session.begin()``; it relies on
explicit commit/rollback instead.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import StockError, TransientConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})
UNIQUE_VIOLATION = "23505"


class StockRowConflict(Exception):
    """Two writers tried to create the same (product, location) stock row at once."""

    def __init__(self, product_id: int, location_id: int):
        super().__init__(f"Concurrent creation of stock row ({product_id}, {location_id})")
        self.product_id = product_id
        self.location_id = location_id


class DocumentNumberConflict(Exception):
    """A freshly generated order or purchase order number was already taken."""

    def __init__(self, number: str):
        super().__init__(f"Document number {number} is already in use")
        self.number = number


def sqlstate_of(exc: DBAPIError) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_unique_violation(exc: DBAPIError) -> bool:
    # sqlite reports no sqlstate
    return sqlstate_of(exc) in (None, UNIQUE_VIOLATION)


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (StockRowConflict, DocumentNumberConflict)):
        return True
    if isinstance(exc, DBAPIError):
        return bool(exc.connection_invalidated) or sqlstate_of(exc) in TRANSIENT_SQLSTATES
    return False


async def flush_new_document(session: AsyncSession, number: str) -> None:
    """Flush a new order or purchase order; a taken number re-runs the unit of work."""
    try:
        await session.flush()
    except IntegrityError as e:
        if is_unique_violation(e):
            raise DocumentNumberConflict(number) from e
        raise


async def _set_lock_timeout(session: AsyncSession) -> None:
    if session.bind is not None and session.bind.dialect.name == "postgresql":
        await session.execute(text(f"SET LOCAL lock_timeout = {int(settings.lock_timeout_ms)}"))


async def atomic(
    session: AsyncSession,
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: Optional[int] = None,
    **kwargs: Any,
) -> T:
    attempts = max(1, max_attempts or settings.tx_max_attempts)
    name = getattr(operation, "__name__", "operation")

    for attempt in range(1, attempts + 1):
        try:
            await _set_lock_timeout(session)
            result = await operation(session, *args, **kwargs)
            await session.commit()
            return result
        except StockError as e:
            await session.rollback()
            logger.info("%s rejected: %s", name, e.message)
            raise
        except Exception as e:
            await session.rollback()
            if not is_transient(e):
                raise
            if attempt == attempts:
                logger.error("%s gave up after %d attempts: %r", name, attempts, e)
                raise TransientConflictError(
                    f"{name} could not complete because of concurrent updates, try again"
                ) from e
            logger.warning("%s hit a transient conflict (attempt %d/%d): %r", name, attempt, attempts, e)
            await asyncio.sleep(settings.tx_retry_backoff_ms * attempt / 1000.0)

    raise AssertionError("unreachable")
