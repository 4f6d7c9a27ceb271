"""
Class scheduling and booking models for FitTrack
"""
from datetime import datetime
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, Integer, String, Text, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fittrack.core.conversions import utcnow
from fittrack.db.postgresql import Base, BigIntId, UTCDateTime

if TYPE_CHECKING:
    from fittrack.models.userModel import User
    from fittrack.models.attendanceModel import Attendance


CLASS_STATUSES = ("scheduled", "cancelled", "completed")
BOOKING_STATUSES = ("booked", "waitlisted", "checked_in", "cancelled", "no_show", "completed")


class ClassSession(Base):
    """A single class occurrence; weekly series share a recurrence group"""

    __tablename__ = "class_sessions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(200))
    trainer_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    # Seat counter; only ever changed through conditional UPDATE statements
    attendee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Monotonic source of waitlist positions
    waitlist_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    recurrence_group_id: Mapped[Optional[str]] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    trainer: Mapped["User"] = relationship(back_populates="trainer_classes")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="class_session")

    @property
    def available_spots(self) -> int:
        return max(0, self.capacity - self.attendee_count)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_class_capacity"),
        CheckConstraint("attendee_count >= 0 AND attendee_count <= capacity", name="ck_class_attendee_count"),
        CheckConstraint("end_at > start_at", name="ck_class_time_range"),
        CheckConstraint("status IN ('scheduled','cancelled','completed')", name="ck_class_status"),
        Index("idx_classes_time", "start_at", "status"),
        Index("idx_classes_trainer", "trainer_id", "start_at"),
        Index("idx_classes_recurrence", "recurrence_group_id", "start_at"),
    )


class Booking(Base):
    """A member's seat (or waitlist place) in a class"""

    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    member_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    class_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="booked")
    waitlist_position: Mapped[Optional[int]] = mapped_column(Integer)
    booked_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(255))
    qr_token_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    member: Mapped["User"] = relationship(back_populates="bookings")
    class_session: Mapped["ClassSession"] = relationship(back_populates="bookings")
    attendance: Mapped[Optional["Attendance"]] = relationship(back_populates="booking", uselist=False)

    __table_args__ = (
        UniqueConstraint("member_id", "class_id", name="uq_booking_member_class"),
        CheckConstraint(
            "status IN ('booked','waitlisted','checked_in','cancelled','no_show','completed')",
            name="ck_booking_status",
        ),
        Index("idx_bookings_member", "member_id", "status"),
        Index("idx_bookings_waitlist", "class_id", "status", "waitlist_position"),
    )
