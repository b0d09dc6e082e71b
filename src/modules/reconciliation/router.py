from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import StaffUser, SuperAdminUser, ensure_hostel_access
from src.core.cache import SummaryCache, get_summary_cache
from src.core.database import get_db
from src.core.exceptions import NotFoundError
from src.core.schema import SchemaAdapter, get_schema_adapter
from src.modules.hostels.service import HostelService
from src.modules.reconciliation.schemas import (
    GlobalSummary,
    HostelSummary,
    ResidentSummary,
    RoomSummary,
    SemesterHistory,
)
from src.modules.reconciliation.service import ReconciliationService
from src.modules.residents.models import Resident
from src.shared.schemas import SuccessResponse

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


def get_reconciliation_service(
    db: AsyncSession = Depends(get_db),
    adapter: SchemaAdapter = Depends(get_schema_adapter),
    cache: SummaryCache = Depends(get_summary_cache),
) -> ReconciliationService:
    return ReconciliationService(db, adapter=adapter, cache=cache)


@router.get("/hostels/{hostel_id}/summary", response_model=SuccessResponse[HostelSummary])
async def get_hostel_summary(
    hostel_id: int,
    current_user: StaffUser,
    semester_id: int | None = Query(None, description="Omit for all semesters"),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Collected and outstanding money for a hostel.

    Booking money mirrored into the resident ledger at check-in is counted
    once. semester_filter_applied is false when the ledger cannot be
    filtered by semester in this deployment.
    """
    ensure_hostel_access(current_user, hostel_id)
    summary = await service.hostel_summary(hostel_id, semester_id)
    return SuccessResponse(data=summary, message="Hostel summary retrieved")


@router.get("/hostels/{hostel_id}/semesters", response_model=SuccessResponse[SemesterHistory])
async def get_semester_history(
    hostel_id: int,
    current_user: StaffUser,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Per-semester totals, newest first, with the current semester singled out."""
    ensure_hostel_access(current_user, hostel_id)
    history = await service.semester_history(hostel_id)
    return SuccessResponse(data=history, message="Semester history retrieved")


@router.get("/rooms/{room_id}/summary", response_model=SuccessResponse[RoomSummary])
async def get_room_summary(
    room_id: int,
    current_user: StaffUser,
    semester_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
    adapter: SchemaAdapter = Depends(get_schema_adapter),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    room = await HostelService(db, adapter).get_room(room_id)
    ensure_hostel_access(current_user, room.hostel_id)
    summary = await service.room_summary(room_id, semester_id)
    return SuccessResponse(data=summary, message="Room summary retrieved")


@router.get("/residents/{resident_id}/summary", response_model=SuccessResponse[ResidentSummary])
async def get_resident_summary(
    resident_id: int,
    current_user: StaffUser,
    semester_id: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    resident = await db.get(Resident, resident_id)
    if not resident:
        raise NotFoundError("Resident", resident_id)
    ensure_hostel_access(current_user, resident.hostel_id)
    summary = await service.resident_summary(resident_id, semester_id)
    return SuccessResponse(data=summary, message="Resident summary retrieved")


@router.get("/global", response_model=SuccessResponse[GlobalSummary])
async def get_global_summary(
    current_user: SuperAdminUser,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Totals across every hostel. Super admin only."""
    summary = await service.global_summary()
    return SuccessResponse(data=summary, message="Global summary retrieved")
