"""
Attendance engine: QR token lifecycle and check-in.

Tokens are stored only as SHA-256 hashes. A token is consumed by a conditional
UPDATE (``used = false AND expires_at > now``) inside the check-in transaction,
and ``attendance.booking_id`` is unique, so concurrent scans of the same code
produce exactly one attendance row.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from fittrack.core import settings
from fittrack.core.conversions import utcnow
from fittrack.core.errors import AlreadyExists, NotFound, PermissionDenied, ValidationFailed
from fittrack.core.logging_config import get_logger, log_security_event
from fittrack.crud.membershipsCrud import require_active_subscription
from fittrack.crud.notificationsCrud import add_audit_log, add_notification
from fittrack.models import Attendance, AttendanceToken, Booking, ClassSession, User
from fittrack.services.qr_service import hash_token, new_token

logger = get_logger("crud.attendance")


@dataclass
class AttendanceStats:
    total_bookings: int = 0
    checked_in: int = 0
    no_shows: int = 0
    cancelled: int = 0
    qr: int = 0
    manual: int = 0


@dataclass
class ClassAttendanceReport:
    class_session: ClassSession
    attendance: List[Attendance] = field(default_factory=list)
    bookings: List[Booking] = field(default_factory=list)
    stats: AttendanceStats = field(default_factory=AttendanceStats)


@dataclass
class MemberAttendanceReport:
    member: User
    attendance: List[Attendance] = field(default_factory=list)
    total: int = 0
    qr: int = 0
    manual: int = 0
    last_checked_in_at: Optional[datetime] = None


def can_manage_class(user: User, class_session: ClassSession) -> bool:
    return user.role == "admin" or class_session.trainer_id == user.id


# ==================== TOKENS ====================

async def purge_expired_tokens(db: AsyncSession) -> int:
    """Delete tokens that expired more than QR_TOKEN_RETENTION_HOURS ago"""
    cutoff = utcnow() - timedelta(hours=settings.QR_TOKEN_RETENTION_HOURS)
    result = await db.execute(
        delete(AttendanceToken)
        .where(AttendanceToken.expires_at <= cutoff)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def mint_token(db: AsyncSession, booking: Booking) -> Tuple[str, datetime]:
    """
    Issue a new token for ``booking`` (no commit).

    Earlier unused tokens for the booking are revoked so only the latest code
    scans, and long-expired tokens of any booking are purged.
    """
    await purge_expired_tokens(db)
    await db.execute(
        delete(AttendanceToken)
        .where(AttendanceToken.booking_id == booking.id, AttendanceToken.used == False)  # noqa: E712
        .execution_options(synchronize_session=False)
    )

    token = new_token()
    now = utcnow()
    expires_at = now + timedelta(minutes=settings.QR_TOKEN_TTL_MINUTES)
    db.add(AttendanceToken(
        token_hash=hash_token(token),
        booking_id=booking.id,
        class_id=booking.class_id,
        member_id=booking.member_id,
        issued_at=now,
        expires_at=expires_at,
        used=False,
    ))
    booking.qr_token_expires_at = expires_at
    await db.flush()
    logger.info(f"Issued check-in token for booking {booking.id}, expires {expires_at.isoformat()}")
    return token, expires_at


async def validate_token(db: AsyncSession, *, booking_id: int, token: str) -> AttendanceToken:
    row = (await db.execute(
        select(AttendanceToken).where(AttendanceToken.token_hash == hash_token(token))
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if row is None or row.booking_id != booking_id:
        log_security_event("qr_invalid", f"unknown check-in code presented for booking {booking_id}")
        raise ValidationFailed("Invalid QR code")
    if row.used:
        log_security_event("qr_replay", f"used check-in code presented for booking {booking_id}", level="INFO")
        raise ValidationFailed("QR code has already been used")
    if row.expires_at <= utcnow():
        raise ValidationFailed("QR code has expired")
    return row


async def consume_token(db: AsyncSession, token_row: AttendanceToken) -> None:
    now = utcnow()
    result = await db.execute(
        update(AttendanceToken)
        .where(
            AttendanceToken.id == token_row.id,
            AttendanceToken.used == False,  # noqa: E712
            AttendanceToken.expires_at > now,
        )
        .values(used=True, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ValidationFailed("QR code has already been used")


# ==================== CHECK-IN ====================

async def _load_booking(db: AsyncSession, booking_id: int) -> Booking:
    booking = (await db.execute(
        select(Booking)
        .options(joinedload(Booking.class_session), joinedload(Booking.member))
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def _ensure_not_checked_in(db: AsyncSession, booking_id: int) -> None:
    existing = (await db.execute(
        select(Attendance.id).where(Attendance.booking_id == booking_id)
    )).scalar_one_or_none()
    if existing is not None:
        raise AlreadyExists("Already checked in")


def _ensure_in_window(class_session: ClassSession) -> None:
    now = utcnow()
    if now < class_session.start_at:
        raise ValidationFailed("Class has not started yet")
    if now > class_session.end_at:
        raise ValidationFailed("Class has already ended")


async def _record_attendance(
    db: AsyncSession,
    *,
    booking: Booking,
    method: str,
    checked_in_by: int,
) -> Attendance:
    attendance = Attendance(
        booking_id=booking.id,
        member_id=booking.member_id,
        class_id=booking.class_id,
        method=method,
        checked_in_by=checked_in_by,
        checked_in_at=utcnow(),
    )
    db.add(attendance)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        raise AlreadyExists("Already checked in")

    flipped = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == "booked")
        .values(status="checked_in", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if flipped.rowcount != 1:
        await db.rollback()
        raise ValidationFailed("Booking is no longer active")

    add_notification(
        db,
        user_id=booking.member_id,
        type="checked_in",
        title="Checked in",
        message=f"You're checked in to {booking.class_session.name}. Enjoy the class!",
    )
    return attendance


async def _commit_check_in(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise AlreadyExists("Already checked in")
    except SQLAlchemyError:
        await db.rollback()
        raise


async def check_in_with_qr(db: AsyncSession, *, caller: User, booking_id: int, token: str) -> Attendance:
    """
    Check a member in by scanning their QR code.

    The scanner may be the member, the class trainer or an admin. First
    successful scan wins; later scans fail with "Already checked in" or
    "QR code has already been used".
    """
    booking = await _load_booking(db, booking_id)
    class_session = booking.class_session

    token_row = await validate_token(db, booking_id=booking.id, token=token)

    if caller.id != booking.member_id and not can_manage_class(caller, class_session):
        raise PermissionDenied("Not authorized to check in this booking")

    await require_active_subscription(db, booking.member_id, own=caller.id == booking.member_id)
    await _ensure_not_checked_in(db, booking.id)
    if booking.status != "booked":
        raise ValidationFailed("Booking is not active")
    _ensure_in_window(class_session)

    await consume_token(db, token_row)
    attendance = await _record_attendance(db, booking=booking, method="qr", checked_in_by=caller.id)
    await _commit_check_in(db)

    logger.info(f"QR check-in for booking {booking.id} (class {class_session.id}) by user {caller.id}")
    return attendance


async def manual_check_in(
    db: AsyncSession,
    *,
    caller: User,
    class_id: int,
    member_id: int,
    ip_address: Optional[str] = None,
) -> Attendance:
    """Trainer or admin checks a booked member in without a QR code"""
    class_session = (await db.execute(
        select(ClassSession).where(ClassSession.id == class_id)
    )).scalar_one_or_none()
    if not class_session:
        raise NotFound("Class not found")
    if not can_manage_class(caller, class_session):
        raise PermissionDenied("Only the class trainer or an admin can check members in")

    booking = (await db.execute(
        select(Booking)
        .options(joinedload(Booking.class_session))
        .where(
            Booking.class_id == class_id,
            Booking.member_id == member_id,
            Booking.status.in_(("booked", "checked_in")),
        )
    )).scalar_one_or_none()
    if not booking:
        raise NotFound("No active booking found for this member")

    await require_active_subscription(db, member_id, own=False)
    await _ensure_not_checked_in(db, booking.id)
    _ensure_in_window(class_session)

    attendance = await _record_attendance(db, booking=booking, method="manual", checked_in_by=caller.id)
    add_audit_log(
        db, user_id=caller.id, action="attendance.manual_check_in", resource="booking",
        resource_id=booking.id, details={"classId": class_id, "memberId": member_id},
        ip_address=ip_address,
    )
    await _commit_check_in(db)

    logger.info(f"Manual check-in of member {member_id} to class {class_id} by user {caller.id}")
    return attendance


# ==================== REPORTS ====================

async def get_class_attendance(db: AsyncSession, *, caller: User, class_id: int) -> ClassAttendanceReport:
    class_session = (await db.execute(
        select(ClassSession).options(joinedload(ClassSession.trainer)).where(ClassSession.id == class_id)
    )).scalar_one_or_none()
    if not class_session:
        raise NotFound("Class not found")
    if not can_manage_class(caller, class_session):
        raise PermissionDenied("Not authorized to view attendance for this class")

    attendance = list((await db.execute(
        select(Attendance)
        .options(joinedload(Attendance.member))
        .where(Attendance.class_id == class_id)
        .order_by(Attendance.checked_in_at)
    )).scalars().all())
    bookings = list((await db.execute(
        select(Booking)
        .options(joinedload(Booking.member))
        .where(Booking.class_id == class_id)
        .order_by(Booking.booked_at, Booking.id)
    )).scalars().all())

    by_status: Dict[str, int] = {}
    for booking in bookings:
        by_status[booking.status] = by_status.get(booking.status, 0) + 1

    stats = AttendanceStats(
        total_bookings=len(bookings),
        checked_in=len(attendance),
        no_shows=by_status.get("no_show", 0),
        cancelled=by_status.get("cancelled", 0),
        qr=sum(1 for a in attendance if a.method == "qr"),
        manual=sum(1 for a in attendance if a.method == "manual"),
    )
    return ClassAttendanceReport(class_session=class_session, attendance=attendance, bookings=bookings, stats=stats)


async def get_member_attendance(db: AsyncSession, *, caller: User, member_id: int) -> MemberAttendanceReport:
    if caller.id != member_id and caller.role != "admin":
        raise PermissionDenied("Not authorized to view this member's attendance")
    member = (await db.execute(select(User).where(User.id == member_id))).scalar_one_or_none()
    if not member:
        raise NotFound("Member not found")

    attendance = list((await db.execute(
        select(Attendance)
        .options(joinedload(Attendance.class_session))
        .where(Attendance.member_id == member_id)
        .order_by(Attendance.checked_in_at.desc())
    )).scalars().all())

    return MemberAttendanceReport(
        member=member,
        attendance=attendance,
        total=len(attendance),
        qr=sum(1 for a in attendance if a.method == "qr"),
        manual=sum(1 for a in attendance if a.method == "manual"),
        last_checked_in_at=attendance[0].checked_in_at if attendance else None,
    )


async def count_check_ins_between(
    db: AsyncSession,
    start: datetime,
    end: datetime,
    *,
    trainer_id: Optional[int] = None,
) -> int:
    stmt = select(func.count(Attendance.id)).where(
        Attendance.checked_in_at >= start, Attendance.checked_in_at < end
    )
    if trainer_id is not None:
        stmt = stmt.join(ClassSession, ClassSession.id == Attendance.class_id).where(
            ClassSession.trainer_id == trainer_id
        )
    return (await db.execute(stmt)).scalar() or 0


async def count_member_attendance(db: AsyncSession, member_id: int) -> int:
    return (await db.execute(
        select(func.count(Attendance.id)).where(Attendance.member_id == member_id)
    )).scalar() or 0
