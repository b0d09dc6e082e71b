from pydantic import EmailStr

from src.shared.schemas import BaseSchema


class ResidentProfile(BaseSchema):
    """Student details handed over at check-in."""

    name: str
    email: EmailStr
    phone: str | None = None
    registration_number: str | None = None
    course: str | None = None
    gender: str | None = None
    emergency_contact: str | None = None

