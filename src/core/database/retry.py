import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSIENT_MARKERS = (
    "database is locked",
    "could not serialize",
    "deadlock detected",
)
_TRANSIENT_SQLSTATES = {"40001", "40P01"}


def is_transient_error(exc: OperationalError) -> bool:
    """Lock timeouts, serialization failures and deadlocks are worth retrying."""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _TRANSIENT_SQLSTATES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


async def run_with_retry(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    attempts: int,
    operation: str,
) -> T:
    """
    Run a unit of work, retrying it from scratch on transient database errors.

    Any failure rolls the session back so the write lock is released at once.

    The work callable must re-read everything it needs: after a rollback all
    loaded instances are expired.
    """
    attempt = 1
    while True:
        try:
            return await work()
        except OperationalError as exc:
            await db.rollback()
            if attempt >= attempts or not is_transient_error(exc):
                raise
            logger.warning(
                "Transient database error during %s (attempt %s/%s): %s",
                operation,
                attempt,
                attempts,
                exc.orig if exc.orig is not None else exc,
            )
            attempt += 1
        except Exception:
            await db.rollback()
            raise
