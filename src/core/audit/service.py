from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    CREATE_BOOKING = "CREATE_BOOKING"
    CANCEL_BOOKING = "CANCEL_BOOKING"
    RECORD_PAYMENT = "RECORD_PAYMENT"
    CONFIRM_PAYMENT = "CONFIRM_PAYMENT"
    FAIL_PAYMENT = "FAIL_PAYMENT"
    ISSUE_VERIFICATION_CODE = "ISSUE_VERIFICATION_CODE"
    CHECK_IN = "CHECK_IN"
    REGISTER_RESIDENT = "REGISTER_RESIDENT"
    SET_CURRENT_SEMESTER = "SET_CURRENT_SEMESTER"


class AuditService:
    """Appends trail entries inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: int,
        hostel_id: int | None,
        user_id: int | None = None,
        reference: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            hostel_id=hostel_id,
            action=action.value,
            entity_type=entity_type,
            entity_id=entity_id,
            reference=reference,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def trail(self, entity_type: str, entity_id: int) -> list[AuditLog]:
        """Entries for one entity, oldest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.id)
        )
        return list(result.scalars().all())
