from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import StaffUser, ensure_hostel_access, resolve_hostel_scope
from src.core.cache import SummaryCache, get_summary_cache
from src.core.database import get_db
from src.core.exceptions import NotFoundError
from src.core.notifications.service import NotificationSender, get_notification_sender
from src.core.schema import SchemaAdapter, get_schema_adapter
from src.modules.ledger.schemas import (
    LedgerPaymentResponse,
    RecordedLedgerPaymentResponse,
    ResidentPaymentCreate,
)
from src.modules.ledger.service import LedgerService, ResidentTarget
from src.modules.residents.models import Resident
from src.shared.schemas import PageQuery, PaginatedResponse, SuccessResponse

router = APIRouter(prefix="/ledger", tags=["Ledger"])


def get_ledger_service(
    db: AsyncSession = Depends(get_db),
    adapter: SchemaAdapter = Depends(get_schema_adapter),
    cache: SummaryCache = Depends(get_summary_cache),
    notifier: NotificationSender = Depends(get_notification_sender),
) -> LedgerService:
    return LedgerService(db, adapter=adapter, cache=cache, notifier=notifier)


@router.post(
    "/payments",
    response_model=SuccessResponse[RecordedLedgerPaymentResponse],
    status_code=201,
)
async def record_resident_payment(
    data: ResidentPaymentCreate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
    service: LedgerService = Depends(get_ledger_service),
):
    """
    Record a payment made by a resident for a semester.

    Rejected when the resident owes nothing or the amount exceeds the
    outstanding balance.
    """
    resident = await db.get(Resident, data.resident_id)
    if not resident:
        raise NotFoundError("Resident", data.resident_id)
    ensure_hostel_access(current_user, resident.hostel_id)

    recorded = await service.record_payment(
        ResidentTarget(data.resident_id, data.semester_id),
        data.amount,
        method=data.method.value,
        currency=data.currency,
        purpose=data.purpose,
        user_id=current_user.id,
    )
    return SuccessResponse(
        data=RecordedLedgerPaymentResponse(payment=recorded.payment, balance=recorded.balances),
        message="Payment recorded",
    )


@router.get("/payments", response_model=SuccessResponse[PaginatedResponse[LedgerPaymentResponse]])
async def list_ledger_payments(
    current_user: StaffUser,
    paging: Annotated[PageQuery, Depends()],
    hostel_id: int | None = Query(None),
    semester_id: int | None = Query(None),
    resident_id: int | None = Query(None),
    search: str | None = Query(None),
    service: LedgerService = Depends(get_ledger_service),
):
    """List resident ledger payments."""
    scope = hostel_id if current_user.is_super_admin else resolve_hostel_scope(current_user, hostel_id)
    items, total = await service.list_payments(
        hostel_id=scope,
        semester_id=semester_id,
        resident_id=resident_id,
        search=search,
        page=paging.page,
        limit=paging.limit,
    )
    return SuccessResponse(
        data=PaginatedResponse.for_query(items, total, paging),
        message="Payments retrieved",
    )
