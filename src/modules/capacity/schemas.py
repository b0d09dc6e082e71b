from src.shared.schemas import BaseSchema


class RoomCapacity(BaseSchema):
    room_id: int
    semester_id: int | None = None
    capacity: int
    occupied: int
    available: int
    active_assignments: int = 0
    holding_bookings: int = 0
