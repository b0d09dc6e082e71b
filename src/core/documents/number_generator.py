"""
Human-readable booking and receipt numbers: PREFIX-YYYY-NNNNNN.

The counter row is bumped with a single UPDATE, so the write lock is taken
before the value is read and two transactions can never hand out the same
number. The first number of a year inserts the row inside a savepoint; a
writer that loses that insert race falls back to the UPDATE.
"""
from datetime import datetime
from enum import StrEnum

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.documents.models import NumberSequence


class DocumentPrefix(StrEnum):
    BOOKING = "BKG"
    RECEIPT = "RCP"


def format_document_number(prefix: str, year: int, value: int) -> str:
    return f"{prefix}-{year}-{value:06d}"


async def _bump(session: AsyncSession, prefix: str, year: int) -> int | None:
    result = await session.execute(
        update(NumberSequence)
        .where(NumberSequence.prefix == prefix, NumberSequence.year == year)
        .values(last_value=NumberSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return None
    value = await session.execute(
        select(NumberSequence.last_value).where(
            NumberSequence.prefix == prefix, NumberSequence.year == year
        )
    )
    return value.scalar_one()


async def get_document_number(session: AsyncSession, prefix: str, year: int | None = None) -> str:
    """Issue the next number for `prefix` in `year` (defaults to the current year)."""
    prefix = str(prefix)
    if year is None:
        year = datetime.now().year

    value = await _bump(session, prefix, year)
    if value is None:
        try:
            async with session.begin_nested():
                session.add(NumberSequence(prefix=prefix, year=year, last_value=1))
            value = 1
        except IntegrityError:
            value = await _bump(session, prefix, year)

    return format_document_number(prefix, year, value)
