from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.bookings.schemas import (
    BookClassIn,
    BookClassOut,
    BookingOut,
    BookingResultOut,
    BookingWithClassOut,
    CancelBookingIn,
    QrCodeOut,
    UnbookCourseIn,
    UnbookCourseOut,
)
from fittrack.api.deps import client_ip, require_roles
from fittrack.crud import bookingsCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User

router = APIRouter(prefix="/api/bookings", tags=["bookings"])

member_only = require_roles("member")


@router.post("", response_model=BookClassOut, status_code=status.HTTP_201_CREATED)
async def book_class(
    data: BookClassIn,
    response: Response,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    """
    Book a class. Recurring classes book every upcoming occurrence of the
    series; a full class puts the member on its waitlist (HTTP 200).
    """
    outcome = await bookingsCrud.book_class(db, member=member, class_id=data.class_id)

    if outcome.is_series:
        results = [
            BookingResultOut(
                class_id=r.class_id,
                start_at=r.start_at,
                status=r.status,
                message=r.message,
                booking_id=r.booking.id if r.booking else None,
                waitlist_position=r.waitlist_position,
            )
            for r in outcome.results
        ]
        booked = sum(1 for r in outcome.results if r.status == "booked")
        waitlisted = sum(1 for r in outcome.results if r.status == "waitlisted")
        return BookClassOut(
            message=f"Booked {booked} class(es) in the series, waitlisted for {waitlisted}",
            results=results,
            waitlisted=outcome.waitlisted,
        )

    result = outcome.results[0]
    if result.status == "waitlisted":
        response.status_code = status.HTTP_200_OK
    return BookClassOut(
        message=result.message,
        booking=BookingOut.model_validate(result.booking),
        waitlist_position=result.waitlist_position,
        waitlisted=result.status == "waitlisted",
    )


@router.get("/me", response_model=List[BookingWithClassOut])
async def my_bookings(
    status: Optional[str] = None,
    upcoming: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    return await bookingsCrud.get_my_bookings(db, member_id=member.id, status=status, upcoming=upcoming)


@router.post("/unbook-course", response_model=UnbookCourseOut)
async def unbook_course(
    data: UnbookCourseIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    outcome = await bookingsCrud.unbook_course(
        db, member=member, class_id=data.class_id, reason=data.reason, ip_address=client_ip(request)
    )
    message = f"Cancelled {len(outcome['cancelled'])} booking(s)"
    if outcome["skipped"]:
        message += f", {len(outcome['skipped'])} kept because they start too soon to cancel"
    return UnbookCourseOut(message=message, **outcome)


@router.get("/{booking_id}", response_model=BookingWithClassOut)
async def get_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    return await bookingsCrud.get_booking(db, user=member, booking_id=booking_id)


@router.post("/{booking_id}/cancel", response_model=BookingOut)
async def cancel_booking(
    booking_id: int,
    request: Request,
    data: Optional[CancelBookingIn] = None,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    return await bookingsCrud.cancel_booking(
        db,
        member=member,
        booking_id=booking_id,
        reason=data.reason if data else None,
        ip_address=client_ip(request),
    )


@router.post("/{booking_id}/qr", response_model=QrCodeOut)
async def booking_qr_code(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    member: User = Depends(member_only),
):
    """Fresh single-use check-in code; earlier codes for the booking stop working"""
    return await bookingsCrud.generate_qr_token(db, member=member, booking_id=booking_id)
