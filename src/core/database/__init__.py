from src.core.database.session import async_session, engine, get_db
from src.core.database.base import Base, BaseModel, BigIntPK, MoneyType
from src.core.database.retry import is_transient_error, run_with_retry

__all__ = [
    "async_session",
    "engine",
    "get_db",
    "Base",
    "BaseModel",
    "BigIntPK",
    "MoneyType",
    "is_transient_error",
    "run_with_retry",
]
