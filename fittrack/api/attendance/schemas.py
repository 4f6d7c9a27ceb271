from datetime import datetime
from typing import List, Optional

from pydantic import Field

from fittrack.api.schemas import CamelModel, ClassBrief, UserBrief


class QrCheckInIn(CamelModel):
    booking_id: int
    token: str = Field(min_length=1)


class ManualCheckInIn(CamelModel):
    class_id: int
    member_id: int


class AttendanceOut(CamelModel):
    id: int
    booking_id: int
    member_id: int
    class_id: int
    method: str
    checked_in_by: Optional[int] = None
    checked_in_at: datetime


class CheckInOut(CamelModel):
    message: str
    attendance: AttendanceOut


class AttendanceWithMemberOut(AttendanceOut):
    member: UserBrief


class AttendanceWithClassOut(AttendanceOut):
    class_session: ClassBrief


class BookingStatusOut(CamelModel):
    id: int
    member: UserBrief
    status: str
    booked_at: datetime


class AttendanceStatsOut(CamelModel):
    total_bookings: int
    checked_in: int
    no_shows: int
    cancelled: int
    qr: int
    manual: int


class ClassAttendanceOut(CamelModel):
    class_session: ClassBrief
    attendance: List[AttendanceWithMemberOut]
    bookings: List[BookingStatusOut]
    stats: AttendanceStatsOut


class MemberAttendanceOut(CamelModel):
    member: UserBrief
    attendance: List[AttendanceWithClassOut]
    total: int
    qr: int
    manual: int
    last_checked_in_at: Optional[datetime] = None
