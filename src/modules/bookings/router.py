from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import StaffUser, ensure_hostel_access, resolve_hostel_scope
from src.core.cache import SummaryCache, get_summary_cache
from src.core.database import get_db
from src.core.notifications.service import NotificationSender, get_notification_sender
from src.core.schema import SchemaAdapter, get_schema_adapter
from src.modules.bookings.models import Booking
from src.modules.bookings.schemas import (
    BookingCancel,
    BookingCreate,
    BookingDetailResponse,
    BookingResponse,
    BookingWithPaymentResponse,
    CheckInRequest,
)
from src.modules.bookings.service import BookingService
from src.modules.ledger.schemas import BookingPaymentCreate, BookingPaymentResponse
from src.modules.ledger.service import RecordedPayment, booking_balance
from src.shared.schemas import PageQuery, PaginatedResponse, SuccessResponse

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    adapter: SchemaAdapter = Depends(get_schema_adapter),
    cache: SummaryCache = Depends(get_summary_cache),
    notifier: NotificationSender = Depends(get_notification_sender),
) -> BookingService:
    return BookingService(db, adapter=adapter, cache=cache, notifier=notifier)


def _with_payment(booking: Booking, recorded: RecordedPayment | None) -> BookingWithPaymentResponse:
    return BookingWithPaymentResponse(
        booking=BookingResponse.model_validate(booking),
        payment=BookingPaymentResponse.model_validate(recorded.payment) if recorded else None,
        balance=booking_balance(booking),
    )


@router.post("", response_model=SuccessResponse[BookingWithPaymentResponse], status_code=201)
async def create_booking(
    data: BookingCreate,
    current_user: StaffUser,
    service: BookingService = Depends(get_booking_service),
):
    """
    Create a booking for a room.

    The room must have a free seat for the semester. amount_due follows the
    configured policy unless given explicitly.
    """
    hostel_id = resolve_hostel_scope(current_user, data.hostel_id)
    booking, recorded = await service.create_booking(data, hostel_id, user_id=current_user.id)
    return SuccessResponse(data=_with_payment(booking, recorded), message="Booking created")


@router.get("", response_model=SuccessResponse[PaginatedResponse[BookingResponse]])
async def list_bookings(
    current_user: StaffUser,
    paging: Annotated[PageQuery, Depends()],
    hostel_id: int | None = Query(None),
    status: str | None = Query(None),
    payment_status: str | None = Query(None),
    semester_id: int | None = Query(None),
    search: str | None = Query(None),
    service: BookingService = Depends(get_booking_service),
):
    """List bookings with optional filters."""
    if current_user.is_super_admin:
        scope = hostel_id
    else:
        scope = resolve_hostel_scope(current_user, hostel_id)

    bookings, total = await service.list_bookings(
        hostel_id=scope,
        status=status,
        payment_status=payment_status,
        semester_id=semester_id,
        search=search,
        page=paging.page,
        limit=paging.limit,
    )
    return SuccessResponse(
        data=PaginatedResponse.for_query(
            [BookingResponse.model_validate(b) for b in bookings], total, paging
        ),
        message="Bookings retrieved",
    )


@router.get("/verify/{code}", response_model=SuccessResponse[BookingResponse])
async def verify_booking_code(
    code: str,
    current_user: StaffUser,
    service: BookingService = Depends(get_booking_service),
):
    """Look up a booking by the verification code given to the student."""
    scope = None if current_user.is_super_admin else resolve_hostel_scope(current_user)
    booking = await service.verify_code(code, hostel_id=scope)
    return SuccessResponse(data=BookingResponse.model_validate(booking), message="Verification code is valid")


@router.post("/check-in", response_model=SuccessResponse[BookingResponse])
async def check_in_by_body(
    data: CheckInRequest,
    current_user: StaffUser,
    service: BookingService = Depends(get_booking_service),
):
    """Check a student in, booking id in the body."""
    return await _check_in(data.booking_id, current_user, service)


@router.get("/{booking_id}", response_model=SuccessResponse[BookingDetailResponse])
async def get_booking(
    booking_id: int,
    current_user: StaffUser,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id, with_payments=True)
    ensure_hostel_access(current_user, booking.hostel_id)
    return SuccessResponse(data=BookingDetailResponse.model_validate(booking), message="Booking retrieved")


@router.post(
    "/{booking_id}/payments",
    response_model=SuccessResponse[BookingWithPaymentResponse],
    status_code=201,
)
async def record_booking_payment(
    booking_id: int,
    data: BookingPaymentCreate,
    current_user: StaffUser,
    service: BookingService = Depends(get_booking_service),
):
    """
    Record money against a booking.

    Rejected when nothing is owed or the amount exceeds the outstanding
    balance. A full payment issues the verification code.
    """
    booking = await service.get_booking(booking_id)
    ensure_hostel_access(current_user, booking.hostel_id)
    recorded = await service.apply_payment(
        booking_id,
        data.amount,
        method=data.method.value,
        status=data.status.value,
        reference=data.reference,
        notes=data.notes,
        user_id=current_user.id,
    )
    return SuccessResponse(data=_with_payment(recorded.booking, recorded), message="Payment recorded")


@router.post(
    "/{booking_id}/payments/{payment_id}/confirm",
    response_model=SuccessResponse[BookingWithPaymentResponse],
)
async def confirm_booking_payment(
    booking_id: int,
    payment_id: int,
    current_user: StaffUser,
    service: BookingService = Depends(get_booking_service),
):
    """Confirm a pending (e.g. mobile money) payment as received."""
    booking = await service.get_booking(booking_id)
    ensure_hostel_access(current_user, booking.hostel_id)
    recorded = await service.confirm_payment(booking_id, payment_id, user_id=current_user.id)
    return SuccessResponse(data=_with_payment(recorded.booking, recorded), message="Payment confirmed")


@router.post(
    "/{booking_id}/payments/{payment_id}/fail",
    response_model=SuccessResponse[BookingWithPaymentResponse],
)
async def fail_booking_payment(
    booking_id: int,
    payment_id: int,
    current_user: StaffUser,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id)
    ensure_hostel_access(current_user, booking.hostel_id)
    recorded = await service.fail_payment(booking_id, payment_id, user_id=current_user.id)
    return SuccessResponse(data=_with_payment(recorded.booking, recorded), message="Payment marked as failed")


@router.post("/{booking_id}/check-in", response_model=SuccessResponse[BookingResponse])
async def check_in_booking(
    booking_id: int,
    current_user: StaffUser,
    service: BookingService = Depends(get_booking_service),
):
    """Check a fully paid student in. Repeating the call is harmless."""
    return await _check_in(booking_id, current_user, service)


@router.post("/{booking_id}/cancel", response_model=SuccessResponse[BookingResponse])
async def cancel_booking(
    booking_id: int,
    current_user: StaffUser,
    data: BookingCancel | None = None,
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.get_booking(booking_id)
    ensure_hostel_access(current_user, booking.hostel_id)
    booking = await service.cancel(
        booking_id, reason=data.reason if data else None, user_id=current_user.id
    )
    return SuccessResponse(data=BookingResponse.model_validate(booking), message="Booking cancelled")


async def _check_in(booking_id: int, current_user, service: BookingService):
    booking = await service.get_booking(booking_id)
    ensure_hostel_access(current_user, booking.hostel_id)
    booking = await service.check_in(booking_id, user_id=current_user.id)
    return SuccessResponse(data=BookingResponse.model_validate(booking), message="Student checked in")
