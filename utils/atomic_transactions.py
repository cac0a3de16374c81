"""Atomic transaction utilities for serializable gateway writes"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from config import Config
from database import Database
from utils.exception_handler import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL SQLSTATEs for aborted concurrent transactions
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"
UNIQUE_VIOLATION = "23505"


def _sqlstate(error: DBAPIError) -> Optional[str]:
    orig = getattr(error, "orig", None)
    if orig is None:
        return None
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_serialization_failure(error: BaseException) -> bool:
    """
    True when the store aborted the transaction because it conflicted with a
    concurrent one. Such a transaction is safe to re-run from the start.
    """
    if not isinstance(error, DBAPIError):
        return False

    if _sqlstate(error) in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED):
        return True

    # SQLite reports writer contention as a locked database
    message = str(getattr(error, "orig", error)).lower()
    return "database is locked" in message or "could not serialize access" in message


def is_unique_violation(error: BaseException) -> bool:
    """True for a uniqueness violation (the conflict half of find-or-create races)"""
    if not isinstance(error, IntegrityError):
        return False
    sqlstate = _sqlstate(error)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION
    return "unique" in str(getattr(error, "orig", error)).lower()


async def run_serializable(
    database: Database,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    operation: str,
    retry_on_unique_violation: bool = True,
    max_attempts: Optional[int] = None,
) -> T:
    """
    Run ``work`` inside one SERIALIZABLE transaction, re-running it as a fresh
    transaction when the store aborts it for conflicting with a concurrent one.

    With ``retry_on_unique_violation`` a uniqueness violation is treated the
    same way: the next attempt observes the row the other writer committed.
    Without it the IntegrityError reaches the caller, who decides how to
    resolve the collision.

    Raises:
        TransientStoreError: the retry budget ran out or the store is unreachable
    """
    attempts = max_attempts or Config.DB_TRANSACTION_MAX_ATTEMPTS
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            async with database.transaction() as session:
                return await work(session)
        except IntegrityError as e:
            if not (retry_on_unique_violation and is_unique_violation(e)):
                raise
            last_error = e
            logger.info(
                f"🔄 TX_CONFLICT: {operation} hit a uniqueness violation "
                f"(attempt {attempt}/{attempts}), re-reading committed state"
            )
        except DBAPIError as e:
            if is_serialization_failure(e):
                last_error = e
                logger.info(
                    f"🔄 TX_SERIALIZATION_FAILURE: {operation} aborted by the store "
                    f"(attempt {attempt}/{attempts})"
                )
            elif isinstance(e, (OperationalError, InterfaceError)):
                logger.error(f"❌ STORE_UNAVAILABLE: {operation}: {e}")
                raise TransientStoreError(f"Database unavailable during {operation}") from e
            else:
                raise
        except (ConnectionError, OSError) as e:
            logger.error(f"❌ STORE_UNAVAILABLE: {operation}: {e}")
            raise TransientStoreError(f"Database unavailable during {operation}") from e

        if attempt < attempts:
            await asyncio.sleep(Config.DB_RETRY_BACKOFF_SECONDS * attempt)

    logger.error(f"❌ TX_RETRIES_EXHAUSTED: {operation} failed after {attempts} attempts: {last_error}")
    raise TransientStoreError(
        f"{operation} could not be committed after {attempts} attempts"
    ) from last_error


async def read_only(
    database: Database,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    operation: str,
) -> T:
    """Run a read in its own transaction, mapping connectivity failures to TransientStoreError"""
    try:
        async with database.transaction() as session:
            return await work(session)
    except (OperationalError, InterfaceError, ConnectionError, OSError) as e:
        logger.error(f"❌ STORE_UNAVAILABLE: {operation}: {e}")
        raise TransientStoreError(f"Database unavailable during {operation}") from e
