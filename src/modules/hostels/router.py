from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import StaffUser, ensure_hostel_access, require_roles
from src.core.auth.models import User, UserRole
from src.core.database import get_db
from src.modules.hostels.schemas import SemesterResponse
from src.modules.hostels.service import SemesterService
from src.shared.schemas import SuccessResponse

router = APIRouter(tags=["Hostels & Semesters"])


@router.get(
    "/hostels/{hostel_id}/semesters/current",
    response_model=SuccessResponse[SemesterResponse | None],
)
async def get_current_semester(
    hostel_id: int,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    """Current semester of a hostel (null when none is marked current)."""
    ensure_hostel_access(current_user, hostel_id)
    semester = await SemesterService(db).get_current(hostel_id)
    if not semester:
        return SuccessResponse(data=None, message="No current semester")
    return SuccessResponse(
        data=SemesterResponse.model_validate(semester),
        message="Current semester retrieved",
    )


@router.post("/semesters/{semester_id}/make-current", response_model=SuccessResponse[SemesterResponse])
async def make_semester_current(
    semester_id: int,
    current_user: User = Depends(require_roles(UserRole.SUPER_ADMIN, UserRole.HOSTEL_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    service = SemesterService(db)
    semester = await service.get_semester(semester_id)
    ensure_hostel_access(current_user, semester.hostel_id)
    semester = await service.set_current(semester_id, user_id=current_user.id)
    return SuccessResponse(
        data=SemesterResponse.model_validate(semester),
        message="Semester is now current",
    )
