"""
Class registry: scheduling, weekly series, edits, cancellation and completion.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from fittrack.core.conversions import ensure_utc, utcnow
from fittrack.core.errors import NotFound, PermissionDenied, ValidationFailed
from fittrack.core.logging_config import get_logger
from fittrack.crud.bookingsCrud import load_class, promote_from_waitlist
from fittrack.crud.notificationsCrud import add_audit_log, add_notification
from fittrack.models import Booking, ClassSession, User
from fittrack.services.availability import check_availability, to_gym_time

logger = get_logger("crud.classes")

MAX_RECURRENCE = 52
EDITABLE_FIELDS = ("name", "description", "location", "start_at", "end_at", "duration_min", "capacity", "trainer_id")


@dataclass
class ClassCreateData:
    """Clean class creation payload"""
    name: str
    description: str
    start_at: datetime
    end_at: datetime
    capacity: int
    location: str
    trainer_id: int
    duration_min: Optional[int] = None
    is_recurring: bool = False
    recurrence_count: int = 1


@dataclass
class ClassDetail:
    class_session: ClassSession
    attendees: List[Booking] = field(default_factory=list)
    waitlist: List[Booking] = field(default_factory=list)


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


def _can_manage(user: User, class_session: ClassSession) -> bool:
    return user.role == "admin" or class_session.trainer_id == user.id


async def _get_trainer(db: AsyncSession, trainer_id: int) -> User:
    trainer = (await db.execute(
        select(User).options(selectinload(User.availability)).where(User.id == trainer_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if not trainer or trainer.role != "trainer":
        raise ValidationFailed("Trainer not found")
    if not trainer.is_active:
        raise ValidationFailed("Trainer account is inactive")
    return trainer


async def find_trainer_conflict(
    db: AsyncSession,
    *,
    trainer_id: int,
    start_at: datetime,
    end_at: datetime,
    exclude_id: Optional[int] = None,
) -> Optional[ClassSession]:
    """Another scheduled class of the trainer overlapping [start_at, end_at)"""
    stmt = select(ClassSession).where(
        ClassSession.trainer_id == trainer_id,
        ClassSession.status == "scheduled",
        ClassSession.start_at < end_at,
        ClassSession.end_at > start_at,
    )
    if exclude_id is not None:
        stmt = stmt.where(ClassSession.id != exclude_id)
    return (await db.execute(stmt.limit(1))).scalars().first()


def weekly_occurrences(start_at: datetime, end_at: datetime, count: int) -> List[tuple]:
    """
    Start/end pairs repeating weekly at the same gym-local wall-clock time.

    Arithmetic happens on gym-local aware datetimes, so a series keeps its
    local start time across DST changes.
    """
    local_start = to_gym_time(start_at)
    duration = end_at - start_at
    occurrences = []
    for week in range(count):
        local = local_start + timedelta(weeks=week)
        start = local.astimezone(timezone.utc)
        occurrences.append((start, start + duration))
    return occurrences


# ==================== READS ====================

async def list_classes(
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    trainer_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    available: Optional[bool] = None,
    limit: int = 200,
) -> List[ClassSession]:
    """List classes sorted by start time"""
    stmt = select(ClassSession).options(joinedload(ClassSession.trainer))
    if status:
        stmt = stmt.where(ClassSession.status == status)
    if trainer_id:
        stmt = stmt.where(ClassSession.trainer_id == trainer_id)
    if start_date:
        stmt = stmt.where(ClassSession.start_at >= ensure_utc(start_date))
    if end_date:
        stmt = stmt.where(ClassSession.start_at <= ensure_utc(end_date))
    if available:
        stmt = stmt.where(
            ClassSession.status == "scheduled",
            ClassSession.attendee_count < ClassSession.capacity,
        )
    res = await db.execute(stmt.order_by(ClassSession.start_at, ClassSession.id).limit(limit))
    return list(res.scalars().all())


async def get_class_detail(db: AsyncSession, class_id: int) -> ClassDetail:
    """Class with its attendee list and FIFO waitlist"""
    class_session = (await db.execute(
        select(ClassSession)
        .options(joinedload(ClassSession.trainer))
        .where(ClassSession.id == class_id)
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if not class_session:
        raise NotFound("Class not found")

    bookings = (await db.execute(
        select(Booking)
        .options(joinedload(Booking.member))
        .where(Booking.class_id == class_id, Booking.status.in_(("booked", "checked_in", "waitlisted")))
        .order_by(Booking.waitlist_position, Booking.booked_at, Booking.id)
        .execution_options(populate_existing=True)
    )).scalars().all()

    return ClassDetail(
        class_session=class_session,
        attendees=sorted(
            (b for b in bookings if b.status != "waitlisted"),
            key=lambda b: (b.booked_at, b.id),
        ),
        waitlist=[b for b in bookings if b.status == "waitlisted"],
    )


# ==================== CREATE ====================

async def create_classes(
    db: AsyncSession,
    *,
    actor: User,
    data: ClassCreateData,
    ip_address: Optional[str] = None,
) -> List[ClassSession]:
    """
    Create a class, or a weekly series sharing one recurrence group.

    The trainer's availability window is checked against the first occurrence;
    every occurrence is checked for trainer conflicts and any conflict rejects
    the whole batch.
    """
    if not data.name or not data.name.strip():
        raise ValidationFailed("Class name is required")
    if not data.description or not data.location:
        raise ValidationFailed("Description and location are required")

    start_at, end_at = ensure_utc(data.start_at), ensure_utc(data.end_at)
    if start_at >= end_at:
        raise ValidationFailed("Start time must be before end time")
    if data.capacity is None or data.capacity < 1:
        raise ValidationFailed("Capacity must be at least 1")

    duration_min = data.duration_min or int((end_at - start_at).total_seconds() // 60)
    if duration_min < 1:
        raise ValidationFailed("Duration must be positive")

    count = data.recurrence_count if data.is_recurring else 1
    if count < 1 or count > MAX_RECURRENCE:
        raise ValidationFailed(f"Recurrence count must be between 1 and {MAX_RECURRENCE}")

    trainer = await _get_trainer(db, data.trainer_id)
    ok, reason = check_availability(trainer.availability, start_at, end_at)
    if not ok:
        raise ValidationFailed(reason)

    occurrences = weekly_occurrences(start_at, end_at, count)
    conflicts = []
    for occ_start, occ_end in occurrences:
        conflict = await find_trainer_conflict(
            db, trainer_id=trainer.id, start_at=occ_start, end_at=occ_end
        )
        if conflict:
            conflicts.append({"start": occ_start.isoformat(), "conflictsWith": conflict.id})
    if conflicts:
        raise ValidationFailed(
            "Trainer already has a class scheduled at this time",
            extra={"conflicts": conflicts},
        )

    group_id = str(uuid.uuid4()) if count > 1 else None
    created = []
    for occ_start, occ_end in occurrences:
        class_session = ClassSession(
            name=data.name.strip(),
            description=data.description,
            location=data.location,
            trainer_id=trainer.id,
            start_at=occ_start,
            end_at=occ_end,
            duration_min=duration_min,
            capacity=data.capacity,
            attendee_count=0,
            waitlist_seq=0,
            status="scheduled",
            recurrence_group_id=group_id,
        )
        db.add(class_session)
        created.append(class_session)
    await db.flush()

    add_audit_log(
        db, user_id=actor.id, action="class.create", resource="class",
        resource_id=created[0].id,
        details={"count": len(created), "recurrenceGroupId": group_id, "trainerId": trainer.id},
        ip_address=ip_address,
    )
    await _commit(db)
    logger.info(f"Created {len(created)} class occurrence(s) for trainer {trainer.id}")
    return created


# ==================== UPDATE ====================

async def update_class(
    db: AsyncSession,
    *,
    actor: User,
    class_id: int,
    changes: Dict[str, Any],
    ip_address: Optional[str] = None,
) -> ClassSession:
    """Edit a class that has not ended yet"""
    class_session = await load_class(db, class_id, fresh=True)
    if not _can_manage(actor, class_session):
        raise PermissionDenied("Not authorized to update this class")
    if class_session.status != "scheduled":
        raise ValidationFailed(f"Cannot edit a {class_session.status} class")
    if class_session.end_at <= utcnow():
        raise ValidationFailed("Cannot edit a class that has already ended")

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationFailed(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
    if "trainer_id" in changes and changes["trainer_id"] != class_session.trainer_id and actor.role != "admin":
        raise PermissionDenied("Only an admin can reassign a class")

    start_at = ensure_utc(changes.get("start_at")) or class_session.start_at
    duration_min = changes.get("duration_min") or class_session.duration_min
    if changes.get("end_at"):
        end_at = ensure_utc(changes["end_at"])
        if "duration_min" not in changes:
            duration_min = int((end_at - start_at).total_seconds() // 60)
    elif "duration_min" in changes or "start_at" in changes:
        end_at = start_at + timedelta(minutes=duration_min)
    else:
        end_at = class_session.end_at
    if start_at >= end_at:
        raise ValidationFailed("Start time must be before end time")

    trainer_id = changes.get("trainer_id") or class_session.trainer_id
    schedule_changed = (
        start_at != class_session.start_at
        or end_at != class_session.end_at
        or trainer_id != class_session.trainer_id
    )
    if schedule_changed:
        trainer = await _get_trainer(db, trainer_id)
        conflict = await find_trainer_conflict(
            db, trainer_id=trainer_id, start_at=start_at, end_at=end_at, exclude_id=class_session.id
        )
        if conflict:
            raise ValidationFailed(
                "Trainer already has a class scheduled at this time",
                extra={"conflicts": [{"start": start_at.isoformat(), "conflictsWith": conflict.id}]},
            )
        ok, reason = check_availability(trainer.availability, start_at, end_at)
        if not ok:
            raise ValidationFailed(reason)

    capacity_increased = False
    if "capacity" in changes and changes["capacity"] != class_session.capacity:
        new_capacity = changes["capacity"]
        if new_capacity is None or new_capacity < 1:
            raise ValidationFailed("Capacity must be at least 1")
        result = await db.execute(
            update(ClassSession)
            .where(ClassSession.id == class_session.id, ClassSession.attendee_count <= new_capacity)
            .values(capacity=new_capacity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ValidationFailed(
                f"Capacity cannot be lower than the current number of attendees ({class_session.attendee_count})"
            )
        capacity_increased = new_capacity > class_session.capacity

    for key in ("name", "description", "location"):
        if key in changes and changes[key] is not None:
            setattr(class_session, key, changes[key])
    class_session.start_at = start_at
    class_session.end_at = end_at
    class_session.duration_min = duration_min
    class_session.trainer_id = trainer_id
    await db.flush()

    promoted = []
    if capacity_increased:
        promoted = await promote_from_waitlist(db, class_session.id)

    add_audit_log(
        db, user_id=actor.id, action="class.update", resource="class", resource_id=class_session.id,
        details={"fields": sorted(changes), "promoted": [b.id for b in promoted]},
        ip_address=ip_address,
    )
    await _commit(db)
    await db.refresh(class_session)
    logger.info(f"Class {class_session.id} updated by user {actor.id}")
    return class_session


# ==================== CANCEL / COMPLETE ====================

async def cancel_class(
    db: AsyncSession,
    *,
    actor: User,
    class_id: int,
    reason: str = "Class cancelled by trainer",
    ip_address: Optional[str] = None,
) -> ClassSession:
    """Cancel a class and every booked or waitlisted booking in it"""
    class_session = await load_class(db, class_id, fresh=True)
    if not _can_manage(actor, class_session):
        raise PermissionDenied("Not authorized to cancel this class")
    if class_session.status != "scheduled":
        raise ValidationFailed(f"Class is already {class_session.status}")

    affected = (await db.execute(
        select(Booking).where(Booking.class_id == class_id, Booking.status.in_(("booked", "waitlisted")))
    )).scalars().all()

    now = utcnow()
    for booking in affected:
        booking.status = "cancelled"
        booking.waitlist_position = None
        booking.cancelled_at = now
        booking.cancellation_reason = reason
        add_notification(
            db,
            user_id=booking.member_id,
            type="class_cancelled",
            title="Class cancelled",
            message=f"{class_session.name} on {to_gym_time(class_session.start_at):%Y-%m-%d %H:%M} has been cancelled.",
        )

    class_session.status = "cancelled"
    await db.flush()
    await db.execute(
        update(ClassSession)
        .where(ClassSession.id == class_id)
        .values(attendee_count=0)
        .execution_options(synchronize_session=False)
    )

    add_audit_log(
        db, user_id=actor.id, action="class.cancel", resource="class", resource_id=class_id,
        details={"cancelledBookings": len(affected), "reason": reason}, ip_address=ip_address,
    )
    await _commit(db)
    await db.refresh(class_session)
    logger.info(f"Class {class_id} cancelled by user {actor.id}; {len(affected)} booking(s) cancelled")
    return class_session


async def complete_class(
    db: AsyncSession,
    *,
    actor: User,
    class_id: int,
    ip_address: Optional[str] = None,
) -> Dict[str, int]:
    """
    Close out a class: checked-in bookings complete, remaining booked seats
    become no-shows and the waitlist is cancelled.
    """
    class_session = await load_class(db, class_id, fresh=True)
    if not _can_manage(actor, class_session):
        raise PermissionDenied("Not authorized to complete this class")
    if class_session.status != "scheduled":
        raise ValidationFailed("Only scheduled classes can be completed")
    if class_session.start_at > utcnow():
        raise ValidationFailed("Class has not started yet")

    now = utcnow()
    counts = {}
    for from_status, values in (
        ("checked_in", {"status": "completed"}),
        ("booked", {"status": "no_show"}),
        ("waitlisted", {"status": "cancelled", "waitlist_position": None,
                        "cancelled_at": now, "cancellation_reason": "Class completed"}),
    ):
        result = await db.execute(
            update(Booking)
            .where(and_(Booking.class_id == class_id, Booking.status == from_status))
            .values(updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        counts[values["status"] if from_status != "waitlisted" else "waitlist_cancelled"] = result.rowcount or 0

    class_session.status = "completed"
    add_audit_log(
        db, user_id=actor.id, action="class.complete", resource="class", resource_id=class_id,
        details=counts, ip_address=ip_address,
    )
    await _commit(db)
    logger.info(f"Class {class_id} completed: {counts}")
    return counts
