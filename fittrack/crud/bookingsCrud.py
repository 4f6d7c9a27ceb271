"""
Booking engine: seat reservation, waitlist and promotion.

``class_sessions.attendee_count`` is only ever changed by single conditional
UPDATE statements, so two requests racing for the last seat cannot both win:
the database evaluates ``attendee_count < capacity`` and increments in one
step, and the loser sees ``rowcount == 0``. Waitlist positions come from the
class's own ``waitlist_seq`` counter, incremented the same way, which keeps
the waitlist in strict arrival order.

Operations commit once at the end; a domain error raised part-way leaves the
transaction uncommitted and it is rolled back when the request session closes.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from fittrack.core import settings
from fittrack.core.conversions import utcnow
from fittrack.core.errors import AlreadyExists, NotFound, PermissionDenied, ValidationFailed
from fittrack.core.logging_config import get_logger
from fittrack.crud.attendanceCrud import mint_token
from fittrack.crud.membershipsCrud import require_active_subscription
from fittrack.crud.notificationsCrud import add_audit_log, add_notification
from fittrack.models import Booking, ClassSession, User
from fittrack.services.qr_service import build_checkin_url, render_qr_png

logger = get_logger("crud.bookings")

ACTIVE_BOOKING_STATUSES = ("booked", "waitlisted", "checked_in")


@dataclass
class BookingResult:
    """Outcome of booking one class occurrence"""
    class_id: int
    status: str  # booked | waitlisted | already_booked | error
    message: str
    booking: Optional[Booking] = None
    waitlist_position: Optional[int] = None
    start_at: Optional[Any] = None


@dataclass
class BookClassOutcome:
    results: List[BookingResult] = field(default_factory=list)

    @property
    def is_series(self) -> bool:
        return len(self.results) > 1

    @property
    def waitlisted(self) -> bool:
        return any(r.status == "waitlisted" for r in self.results)


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


def course_key(class_session: ClassSession) -> str:
    """A weekly series counts as one course; a standalone class is its own course"""
    if class_session.recurrence_group_id:
        return f"group:{class_session.recurrence_group_id}"
    return f"class:{class_session.id}"


async def load_class(db: AsyncSession, class_id: int, *, fresh: bool = False) -> ClassSession:
    stmt = select(ClassSession).where(ClassSession.id == class_id)
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    class_session = (await db.execute(stmt)).scalar_one_or_none()
    if not class_session:
        raise NotFound("Class not found")
    return class_session


# ==================== ATOMIC COUNTERS ====================

async def reserve_seat(db: AsyncSession, class_id: int) -> bool:
    """Take one seat if the class is scheduled and not full"""
    result = await db.execute(
        update(ClassSession)
        .where(
            ClassSession.id == class_id,
            ClassSession.status == "scheduled",
            ClassSession.attendee_count < ClassSession.capacity,
        )
        .values(attendee_count=ClassSession.attendee_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def release_seat(db: AsyncSession, class_id: int) -> None:
    await db.execute(
        update(ClassSession)
        .where(ClassSession.id == class_id, ClassSession.attendee_count > 0)
        .values(attendee_count=ClassSession.attendee_count - 1)
        .execution_options(synchronize_session=False)
    )


async def next_waitlist_position(db: AsyncSession, class_id: int) -> Optional[int]:
    """Claim the next waitlist position, None when the class is no longer scheduled"""
    result = await db.execute(
        update(ClassSession)
        .where(ClassSession.id == class_id, ClassSession.status == "scheduled")
        .values(waitlist_seq=ClassSession.waitlist_seq + 1)
        .returning(ClassSession.waitlist_seq)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


async def _transition(db: AsyncSession, booking_id: int, from_status: str, **values) -> bool:
    """Move a booking out of ``from_status``; False when someone else moved it first"""
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == from_status)
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ==================== WAITLIST ====================

async def promote_from_waitlist(db: AsyncSession, class_id: int) -> List[Booking]:
    """
    Fill free seats from the waitlist in FIFO order (no commit).

    Each round takes the lowest waitlist position, reserves a seat with the
    conditional update, then flips that booking to ``booked``. A booking that
    left the waitlist meanwhile gives its seat back and the next one is tried.
    Stops when the class is full or the waitlist is empty.
    """
    promoted: List[Booking] = []
    while True:
        candidate = (await db.execute(
            select(Booking)
            .where(Booking.class_id == class_id, Booking.status == "waitlisted")
            .order_by(Booking.waitlist_position, Booking.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )).scalar_one_or_none()
        if candidate is None:
            break

        if not await reserve_seat(db, class_id):
            break

        flipped = await _transition(
            db, candidate.id, "waitlisted",
            status="booked", waitlist_position=None, booked_at=utcnow(),
        )
        if not flipped:
            await release_seat(db, class_id)
            continue

        await db.refresh(candidate)
        promoted.append(candidate)

    if promoted:
        class_session = await load_class(db, class_id)
        for booking in promoted:
            add_notification(
                db,
                user_id=booking.member_id,
                type="waitlist_promoted",
                title="You're off the waitlist",
                message=f"A spot opened up in {class_session.name}. Your booking is confirmed.",
            )
        logger.info(f"Promoted {len(promoted)} member(s) from waitlist of class {class_id}")

    return promoted


# ==================== BOOKING ====================

async def member_courses(db: AsyncSession, member_id: int) -> Set[str]:
    """Course keys the member currently holds an active booking for.

    A course is a whole weekly series or a standalone class. Bookings on classes
    that have already ended no longer occupy a quota slot.
    """
    rows = await db.execute(
        select(ClassSession.id, ClassSession.recurrence_group_id)
        .join(Booking, Booking.class_id == ClassSession.id)
        .where(
            Booking.member_id == member_id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            ClassSession.end_at > utcnow(),
        )
    )
    courses = set()
    for class_id, group_id in rows.all():
        courses.add(f"group:{group_id}" if group_id else f"class:{class_id}")
    return courses


async def _series_targets(db: AsyncSession, class_session: ClassSession) -> List[ClassSession]:
    if not class_session.recurrence_group_id:
        return [class_session]
    res = await db.execute(
        select(ClassSession)
        .where(
            ClassSession.recurrence_group_id == class_session.recurrence_group_id,
            ClassSession.status == "scheduled",
            ClassSession.start_at >= class_session.start_at,
        )
        .order_by(ClassSession.start_at)
    )
    return list(res.scalars().all())


async def _book_occurrence(db: AsyncSession, member: User, class_session: ClassSession) -> BookingResult:
    existing = (await db.execute(
        select(Booking).where(Booking.member_id == member.id, Booking.class_id == class_session.id)
    )).scalar_one_or_none()

    base = dict(class_id=class_session.id, start_at=class_session.start_at)

    if existing and existing.status in ACTIVE_BOOKING_STATUSES:
        return BookingResult(status="already_booked", message="You have already booked this class",
                             booking=existing, waitlist_position=existing.waitlist_position, **base)

    if class_session.status != "scheduled":
        return BookingResult(status="error", message="Class is not available for booking", **base)
    if class_session.end_at <= utcnow():
        return BookingResult(status="error", message="Class has already ended", **base)
    if existing and existing.status != "cancelled":
        return BookingResult(status="error", message=f"Booking is already {existing.status}", **base)

    if await reserve_seat(db, class_session.id):
        status, position = "booked", None
    else:
        position = await next_waitlist_position(db, class_session.id)
        if position is None:
            return BookingResult(status="error", message="Class is not available for booking", **base)
        status = "waitlisted"

    booking = existing or Booking(member_id=member.id, class_id=class_session.id)
    booking.status = status
    booking.waitlist_position = position
    booking.booked_at = utcnow()
    booking.cancelled_at = None
    booking.cancellation_reason = None
    booking.qr_token_expires_at = None
    if existing is None:
        db.add(booking)
    await db.flush()

    if status == "booked":
        add_notification(
            db, user_id=member.id, type="booking_confirmed", title="Booking confirmed",
            message=f"You're booked for {class_session.name}.",
        )
        logger.info(f"Member {member.id} booked class {class_session.id}")
        return BookingResult(status="booked", message="Class booked successfully", booking=booking, **base)

    add_notification(
        db, user_id=member.id, type="booking_waitlisted", title="Added to waitlist",
        message=f"{class_session.name} is full. You're number {position} on the waitlist.",
    )
    logger.info(f"Member {member.id} waitlisted for class {class_session.id} at position {position}")
    return BookingResult(status="waitlisted", message="Class is full. You've been added to the waitlist.",
                         booking=booking, waitlist_position=position, **base)


async def book_class(db: AsyncSession, *, member: User, class_id: int) -> BookClassOutcome:
    """
    Book a class, or every upcoming occurrence of its weekly series.

    Raises:
        PermissionDenied: no active subscription, or the plan's course quota is used up
        AlreadyExists/ValidationFailed: single-occurrence booking that cannot proceed
    """
    class_session = await load_class(db, class_id)
    subscription = await require_active_subscription(db, member.id)

    plan = subscription.plan
    if plan and plan.classes_per_month > 0:
        courses = await member_courses(db, member.id)
        if course_key(class_session) not in courses and len(courses) >= plan.classes_per_month:
            raise PermissionDenied(
                f"Your plan allows {plan.classes_per_month} active course(s)",
                extra={"limit": plan.classes_per_month, "currentCount": len(courses)},
            )

    targets = await _series_targets(db, class_session)
    if not targets or targets[0].id != class_session.id:
        # the clicked class itself is not bookable
        targets = [class_session]

    outcome = BookClassOutcome()
    for occurrence in targets:
        outcome.results.append(await _book_occurrence(db, member, occurrence))

    if not outcome.is_series:
        result = outcome.results[0]
        if result.status == "already_booked":
            raise AlreadyExists(result.message)
        if result.status == "error":
            raise ValidationFailed(result.message)

    await _commit(db)
    return outcome


# ==================== READS ====================

async def get_my_bookings(
    db: AsyncSession,
    *,
    member_id: int,
    status: Optional[str] = None,
    upcoming: Optional[bool] = None,
) -> List[Booking]:
    stmt = (
        select(Booking)
        .join(ClassSession, ClassSession.id == Booking.class_id)
        .options(joinedload(Booking.class_session).joinedload(ClassSession.trainer))
        .where(Booking.member_id == member_id)
    )
    if status:
        stmt = stmt.where(Booking.status == status)
    if upcoming is True:
        stmt = stmt.where(ClassSession.end_at > utcnow())
    elif upcoming is False:
        stmt = stmt.where(ClassSession.end_at <= utcnow())
    res = await db.execute(stmt.order_by(ClassSession.start_at))
    return list(res.scalars().all())


async def get_booking(db: AsyncSession, *, user: User, booking_id: int) -> Booking:
    """Get a booking owned by ``user``"""
    res = await db.execute(
        select(Booking)
        .options(joinedload(Booking.class_session))
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = res.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found")
    if booking.member_id != user.id:
        raise PermissionDenied("Not authorized to access this booking")
    return booking


# ==================== CANCELLATION ====================

def _cutoff_passed(class_session: ClassSession) -> bool:
    cutoff = class_session.start_at - timedelta(hours=settings.BOOKING_CANCELLATION_HOURS)
    return utcnow() > cutoff


async def _cancel_one(db: AsyncSession, booking: Booking, reason: Optional[str]) -> bool:
    """Cancel a booked/waitlisted booking; returns True when a seat was freed"""
    previous = booking.status
    cancelled = await _transition(
        db, booking.id, previous,
        status="cancelled", waitlist_position=None,
        cancelled_at=utcnow(), cancellation_reason=reason,
    )
    if not cancelled:
        raise ValidationFailed("Booking was changed by another request, please retry")
    if previous == "booked":
        await release_seat(db, booking.class_id)
        return True
    return False


async def cancel_booking(
    db: AsyncSession,
    *,
    member: User,
    booking_id: int,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Booking:
    """Cancel one booking; a freed seat goes to the head of the waitlist"""
    booking = await get_booking(db, user=member, booking_id=booking_id)
    class_session = booking.class_session

    if booking.status not in ("booked", "waitlisted"):
        raise ValidationFailed(f"Cannot cancel a booking with status {booking.status}")
    if booking.status == "booked" and _cutoff_passed(class_session):
        raise ValidationFailed(
            f"Bookings can only be cancelled at least "
            f"{settings.BOOKING_CANCELLATION_HOURS} hours before the class starts"
        )

    freed = await _cancel_one(db, booking, reason)
    if freed:
        await promote_from_waitlist(db, booking.class_id)

    add_audit_log(
        db, user_id=member.id, action="booking.cancel", resource="booking",
        resource_id=booking.id, details={"classId": booking.class_id, "reason": reason},
        ip_address=ip_address,
    )
    await _commit(db)
    await db.refresh(booking)
    logger.info(f"Member {member.id} cancelled booking {booking.id}")
    return booking


async def unbook_course(
    db: AsyncSession,
    *,
    member: User,
    class_id: int,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> Dict[str, List[int]]:
    """
    Leave a whole course: the clicked class plus every future occurrence of its
    series. Booked seats inside the cancellation cutoff are kept and reported
    as skipped.
    """
    class_session = await load_class(db, class_id)
    now = utcnow()

    stmt = (
        select(Booking)
        .join(ClassSession, ClassSession.id == Booking.class_id)
        .options(joinedload(Booking.class_session))
        .where(Booking.member_id == member.id, Booking.status.in_(("booked", "waitlisted")))
    )
    if class_session.recurrence_group_id:
        stmt = stmt.where(
            ClassSession.recurrence_group_id == class_session.recurrence_group_id,
            (ClassSession.id == class_session.id) | (ClassSession.start_at > now),
        )
    else:
        stmt = stmt.where(ClassSession.id == class_session.id)
    bookings = list((await db.execute(stmt.order_by(ClassSession.start_at))).scalars().all())

    cancelled: List[int] = []
    skipped: List[int] = []
    freed_classes: List[int] = []
    for booking in bookings:
        if booking.status == "booked" and _cutoff_passed(booking.class_session):
            skipped.append(booking.class_id)
            continue
        if await _cancel_one(db, booking, reason):
            freed_classes.append(booking.class_id)
        cancelled.append(booking.class_id)

    if not cancelled:
        raise ValidationFailed("No bookings to cancel for this course")

    for freed_class_id in freed_classes:
        await promote_from_waitlist(db, freed_class_id)

    add_audit_log(
        db, user_id=member.id, action="booking.unbook_course", resource="class",
        resource_id=class_session.id,
        details={"cancelled": cancelled, "skipped": skipped, "reason": reason},
        ip_address=ip_address,
    )
    await _commit(db)
    logger.info(f"Member {member.id} left course of class {class_id}: {len(cancelled)} cancelled")
    return {"cancelled": cancelled, "skipped": skipped}


async def release_member_bookings(
    db: AsyncSession, *, member_id: int, reason: Optional[str] = None
) -> List[int]:
    """
    Cancel the member's booked and waitlisted places in classes that have not
    started yet (no commit). The cancellation cutoff does not apply. Freed
    seats go to each class's waitlist. Returns the affected class ids.
    """
    bookings = list((await db.execute(
        select(Booking)
        .join(ClassSession, ClassSession.id == Booking.class_id)
        .where(
            Booking.member_id == member_id,
            Booking.status.in_(("booked", "waitlisted")),
            ClassSession.start_at > utcnow(),
        )
        .order_by(ClassSession.start_at)
    )).scalars().all())

    released: List[int] = []
    for booking in bookings:
        if await _cancel_one(db, booking, reason):
            await promote_from_waitlist(db, booking.class_id)
        released.append(booking.class_id)
    if released:
        logger.info(f"Released {len(released)} booking(s) of member {member_id}")
    return released


# ==================== QR ====================

async def generate_qr_token(db: AsyncSession, *, member: User, booking_id: int) -> Dict[str, Any]:
    """Mint a fresh check-in token for one of the member's bookings"""
    booking = await get_booking(db, user=member, booking_id=booking_id)
    class_session = booking.class_session

    if booking.status != "booked":
        raise ValidationFailed("Check-in codes are only available for active bookings")
    if class_session.status != "scheduled" or class_session.end_at <= utcnow():
        raise ValidationFailed("Class has already ended")

    token, expires_at = await mint_token(db, booking)
    await _commit(db)

    checkin_url = build_checkin_url(class_session.id, booking.id, token)
    return {
        "token": token,
        "checkin_url": checkin_url,
        "expires_at": expires_at,
        "qr_code": render_qr_png(checkin_url),
        "booking_id": booking.id,
        "class_id": class_session.id,
    }
