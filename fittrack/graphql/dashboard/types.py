"""
GraphQL types for the role dashboards
"""
from datetime import datetime
from typing import List, Optional

import strawberry

from fittrack.crud.dashboardCrud import AdminStats, MemberStats, TrainerClassSummary, TrainerStats
from fittrack.models import Booking, ClassSession, Subscription


@strawberry.type
class DashboardClass:
    id: int
    name: str
    location: Optional[str]
    start_at: datetime
    end_at: datetime
    capacity: int
    attendee_count: int
    available_spots: int
    status: str
    recurrence_group_id: Optional[str]

    @classmethod
    def from_model(cls, class_session: ClassSession) -> "DashboardClass":
        return cls(
            id=class_session.id,
            name=class_session.name,
            location=class_session.location,
            start_at=class_session.start_at,
            end_at=class_session.end_at,
            capacity=class_session.capacity,
            attendee_count=class_session.attendee_count,
            available_spots=class_session.available_spots,
            status=class_session.status,
            recurrence_group_id=class_session.recurrence_group_id,
        )


@strawberry.type
class AdminDashboard:
    total_members: int
    active_members: int
    total_trainers: int
    total_classes: int
    upcoming_classes: int
    active_subscriptions: int
    total_revenue: int
    todays_check_ins: int

    @classmethod
    def from_stats(cls, stats: AdminStats) -> "AdminDashboard":
        return cls(**vars(stats))


@strawberry.type
class TrainerClassInfo:
    booked: int
    waitlisted: int
    class_session: DashboardClass = strawberry.field(name="class")

    @classmethod
    def from_summary(cls, summary: TrainerClassSummary) -> "TrainerClassInfo":
        return cls(
            class_session=DashboardClass.from_model(summary.class_session),
            booked=summary.booked,
            waitlisted=summary.waitlisted,
        )


@strawberry.type
class TrainerDashboard:
    upcoming_classes: List[TrainerClassInfo]
    total_members: int
    todays_check_ins: int

    @classmethod
    def from_stats(cls, stats: TrainerStats) -> "TrainerDashboard":
        return cls(
            upcoming_classes=[TrainerClassInfo.from_summary(s) for s in stats.upcoming_classes],
            total_members=stats.total_members,
            todays_check_ins=stats.todays_check_ins,
        )


@strawberry.type
class MemberBooking:
    id: int
    status: str
    waitlist_position: Optional[int]
    booked_at: datetime
    class_session: DashboardClass = strawberry.field(name="class")

    @classmethod
    def from_model(cls, booking: Booking) -> "MemberBooking":
        return cls(
            id=booking.id,
            status=booking.status,
            waitlist_position=booking.waitlist_position,
            booked_at=booking.booked_at,
            class_session=DashboardClass.from_model(booking.class_session),
        )


@strawberry.type
class MemberSubscription:
    id: int
    status: str
    plan_id: int
    plan_name: Optional[str]
    classes_per_month: int
    current_period_end: datetime
    cancel_at_period_end: bool

    @classmethod
    def from_model(cls, subscription: Subscription) -> "MemberSubscription":
        plan = subscription.plan
        return cls(
            id=subscription.id,
            status=subscription.status,
            plan_id=subscription.plan_id,
            plan_name=plan.name if plan else None,
            classes_per_month=plan.classes_per_month if plan else 0,
            current_period_end=subscription.current_period_end,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )


@strawberry.type
class MemberDashboard:
    upcoming_bookings: List[MemberBooking]
    subscription: Optional[MemberSubscription]
    courses_used: int
    course_limit: Optional[int]
    total_attendance: int

    @classmethod
    def from_stats(cls, stats: MemberStats) -> "MemberDashboard":
        return cls(
            upcoming_bookings=[MemberBooking.from_model(b) for b in stats.upcoming_bookings],
            subscription=MemberSubscription.from_model(stats.subscription) if stats.subscription else None,
            courses_used=stats.courses_used,
            course_limit=stats.course_limit,
            total_attendance=stats.total_attendance,
        )
