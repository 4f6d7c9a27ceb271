"""
Read models behind the role dashboards.
"""
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from fittrack.core import settings
from fittrack.core.conversions import utcnow
from fittrack.crud import attendanceCrud, bookingsCrud, membershipsCrud, usersCrud
from fittrack.models import Booking, ClassSession, Subscription, User
from fittrack.models.membershipsModel import ACCESS_STATUSES


@dataclass
class AdminStats:
    total_members: int
    active_members: int
    total_trainers: int
    total_classes: int
    upcoming_classes: int
    active_subscriptions: int
    total_revenue: int
    todays_check_ins: int


@dataclass
class TrainerClassSummary:
    class_session: ClassSession
    booked: int
    waitlisted: int


@dataclass
class TrainerStats:
    upcoming_classes: List[TrainerClassSummary] = field(default_factory=list)
    total_members: int = 0
    todays_check_ins: int = 0


@dataclass
class MemberStats:
    upcoming_bookings: List[Booking] = field(default_factory=list)
    subscription: Optional[Subscription] = None
    courses_used: int = 0
    course_limit: Optional[int] = None
    total_attendance: int = 0


def today_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Start and end of the current gym-local day, in UTC"""
    local = (now or utcnow()).astimezone(ZoneInfo(settings.GYM_TIMEZONE))
    start = datetime.combine(local.date(), time.min, tzinfo=local.tzinfo)
    return start.astimezone(timezone.utc), (start + timedelta(days=1)).astimezone(timezone.utc)


async def _count(db: AsyncSession, stmt) -> int:
    return (await db.execute(stmt)).scalar() or 0


async def admin_stats(db: AsyncSession) -> AdminStats:
    now = utcnow()
    day_start, day_end = today_bounds(now)
    return AdminStats(
        total_members=await _count(db, select(func.count(User.id)).where(User.role == "member")),
        active_members=await _count(
            db, select(func.count(User.id)).where(User.role == "member", User.is_active == True)  # noqa: E712
        ),
        total_trainers=await _count(
            db, select(func.count(User.id)).where(User.role == "trainer", User.is_active == True)  # noqa: E712
        ),
        total_classes=await _count(db, select(func.count(ClassSession.id))),
        upcoming_classes=await _count(
            db,
            select(func.count(ClassSession.id)).where(
                ClassSession.status == "scheduled", ClassSession.start_at > now
            ),
        ),
        active_subscriptions=await _count(
            db,
            select(func.count(Subscription.id)).where(
                Subscription.status.in_(ACCESS_STATUSES), Subscription.current_period_end >= now
            ),
        ),
        total_revenue=await membershipsCrud.total_revenue(db),
        todays_check_ins=await attendanceCrud.count_check_ins_between(db, day_start, day_end),
    )


async def trainer_stats(db: AsyncSession, trainer_id: int, *, limit: int = 20) -> TrainerStats:
    now = utcnow()
    day_start, day_end = today_bounds(now)

    classes = list((await db.execute(
        select(ClassSession)
        .where(
            ClassSession.trainer_id == trainer_id,
            ClassSession.status == "scheduled",
            ClassSession.end_at > now,
        )
        .order_by(ClassSession.start_at)
        .limit(limit)
    )).scalars().all())

    waitlist_counts = {}
    if classes:
        rows = await db.execute(
            select(Booking.class_id, func.count(Booking.id))
            .where(Booking.class_id.in_([c.id for c in classes]), Booking.status == "waitlisted")
            .group_by(Booking.class_id)
        )
        waitlist_counts = dict(rows.all())

    members = await usersCrud.get_trainer_members(db, trainer_id)
    return TrainerStats(
        upcoming_classes=[
            TrainerClassSummary(class_session=c, booked=c.attendee_count, waitlisted=waitlist_counts.get(c.id, 0))
            for c in classes
        ],
        total_members=len(members),
        todays_check_ins=await attendanceCrud.count_check_ins_between(
            db, day_start, day_end, trainer_id=trainer_id
        ),
    )


async def member_stats(db: AsyncSession, member_id: int) -> MemberStats:
    upcoming = list((await db.execute(
        select(Booking)
        .join(ClassSession, ClassSession.id == Booking.class_id)
        .options(joinedload(Booking.class_session))
        .where(
            Booking.member_id == member_id,
            Booking.status.in_(("booked", "waitlisted")),
            ClassSession.end_at > utcnow(),
        )
        .order_by(ClassSession.start_at)
    )).scalars().all())

    stats = MemberStats(
        upcoming_bookings=upcoming,
        total_attendance=await attendanceCrud.count_member_attendance(db, member_id),
    )
    subscription = await membershipsCrud.get_active_subscription(db, member_id)
    if subscription:
        stats.subscription = subscription
        courses = await bookingsCrud.member_courses(db, member_id)
        stats.courses_used = len(courses)
        if subscription.plan and subscription.plan.classes_per_month > 0:
            stats.course_limit = subscription.plan.classes_per_month
    return stats
