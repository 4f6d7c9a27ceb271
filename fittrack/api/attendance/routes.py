from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.attendance.schemas import (
    CheckInOut,
    ClassAttendanceOut,
    ManualCheckInIn,
    MemberAttendanceOut,
    QrCheckInIn,
)
from fittrack.api.deps import client_ip, get_current_user, require_roles
from fittrack.crud import attendanceCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User

router = APIRouter(prefix="/api/attendance", tags=["attendance"])

staff_only = require_roles("trainer", "admin")


@router.post("/qr", response_model=CheckInOut)
async def qr_check_in(
    data: QrCheckInIn,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Scan a member's QR code. Each code checks in once."""
    attendance = await attendanceCrud.check_in_with_qr(db, caller=user, booking_id=data.booking_id, token=data.token)
    return CheckInOut(message="Checked in successfully", attendance=attendance)


@router.post("/manual", response_model=CheckInOut)
async def manual_check_in(
    data: ManualCheckInIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(staff_only),
):
    attendance = await attendanceCrud.manual_check_in(
        db, caller=user, class_id=data.class_id, member_id=data.member_id, ip_address=client_ip(request)
    )
    return CheckInOut(message="Member checked in", attendance=attendance)


@router.get("/class/{class_id}", response_model=ClassAttendanceOut)
async def class_attendance(
    class_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(staff_only),
):
    report = await attendanceCrud.get_class_attendance(db, caller=user, class_id=class_id)
    return ClassAttendanceOut.model_validate(report)


@router.get("/member/{member_id}", response_model=MemberAttendanceOut)
async def member_attendance(
    member_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    report = await attendanceCrud.get_member_attendance(db, caller=user, member_id=member_id)
    return MemberAttendanceOut.model_validate(report)
