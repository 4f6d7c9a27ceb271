from datetime import datetime
from typing import List, Optional

from pydantic import Field

from fittrack.api.schemas import CamelModel, ClassBrief


class BookClassIn(CamelModel):
    class_id: int


class CancelBookingIn(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class UnbookCourseIn(CamelModel):
    class_id: int
    reason: Optional[str] = Field(default=None, max_length=255)


class BookingOut(CamelModel):
    id: int
    member_id: int
    class_id: int
    status: str
    waitlist_position: Optional[int] = None
    booked_at: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


class BookingWithClassOut(BookingOut):
    class_session: ClassBrief


class BookingResultOut(CamelModel):
    class_id: int
    start_at: Optional[datetime] = None
    status: str
    message: str
    booking_id: Optional[int] = None
    waitlist_position: Optional[int] = None


class BookClassOut(CamelModel):
    message: str
    booking: Optional[BookingOut] = None
    waitlist_position: Optional[int] = None
    results: Optional[List[BookingResultOut]] = None
    waitlisted: bool = False


class UnbookCourseOut(CamelModel):
    message: str
    cancelled: List[int]
    skipped: List[int]


class QrCodeOut(CamelModel):
    booking_id: int
    class_id: int
    token: str
    checkin_url: str
    qr_code: str
    expires_at: datetime
