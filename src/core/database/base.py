from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, Numeric, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

# BigInteger for PostgreSQL, Integer for SQLite (required for autoincrement)
BigIntPK = BigInteger().with_variant(Integer, "sqlite")

# Two decimal places for every amount, balance and price
MoneyType = Numeric(12, 2)


class Base(DeclarativeBase):
    pass


class BaseModel(Base):
    """Surrogate id plus created/updated timestamps."""

    __abstract__ = True

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class HostelScopedMixin:
    """Rows owned by exactly one hostel; staff only see their own hostel's rows."""

    @declared_attr
    def hostel_id(cls) -> Mapped[int]:
        return mapped_column(BigInteger, ForeignKey("hostels.id"), nullable=False, index=True)
