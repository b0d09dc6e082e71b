from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import StaffUser, ensure_hostel_access
from src.core.database import get_db
from src.core.schema import SchemaAdapter, get_schema_adapter
from src.modules.capacity.schemas import RoomCapacity
from src.modules.capacity.service import CapacityService
from src.modules.hostels.service import HostelService, SemesterService
from src.shared.schemas import SuccessResponse

router = APIRouter(prefix="/rooms", tags=["Capacity"])


@router.get("/{room_id}/capacity", response_model=SuccessResponse[RoomCapacity])
async def get_room_capacity(
    room_id: int,
    current_user: StaffUser,
    semester_id: int | None = Query(None, description="Defaults to the hostel's current semester"),
    db: AsyncSession = Depends(get_db),
    adapter: SchemaAdapter = Depends(get_schema_adapter),
):
    """Seats taken and free in a room for a semester."""
    room = await HostelService(db).get_room(room_id)
    ensure_hostel_access(current_user, room.hostel_id)

    if semester_id is None:
        current = await SemesterService(db).get_current(room.hostel_id)
        semester_id = current.id if current else None

    capacity = await CapacityService(db, adapter).check_capacity(room_id, semester_id)
    return SuccessResponse(data=capacity, message="Room capacity retrieved")
