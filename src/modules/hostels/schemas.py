from datetime import date

from src.shared.schemas import BaseSchema


class SemesterResponse(BaseSchema):
    id: int
    hostel_id: int
    name: str
    academic_year: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_current: bool
