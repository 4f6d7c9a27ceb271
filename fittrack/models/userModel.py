"""
User identity, roles and trainer availability models for FitTrack
"""
from datetime import datetime
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, Integer, String, Text, Boolean, JSON,
    CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fittrack.core.conversions import utcnow
from fittrack.db.postgresql import Base, BigIntId, UTCDateTime

if TYPE_CHECKING:
    from fittrack.models.classModel import ClassSession, Booking
    from fittrack.models.membershipsModel import Subscription, Payment


ROLES = ("admin", "trainer", "member")
WEEKDAYS = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


class User(Base):
    """Every person with a login: admins, trainers and members"""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32))
    avatar_path: Mapped[Optional[str]] = mapped_column(String(255))
    profile: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    specialization: Mapped[Optional[str]] = mapped_column(String(120))
    experience: Mapped[Optional[int]] = mapped_column(Integer)
    stripe_customer_id: Mapped[Optional[str]] = mapped_column(String(120))
    approved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    approved_by: Mapped[Optional[int]] = mapped_column(BigIntId, ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, onupdate=utcnow)

    # Relationships
    availability: Mapped[List["TrainerAvailability"]] = relationship(
        back_populates="trainer",
        cascade="all, delete-orphan",
        order_by="TrainerAvailability.weekday",
    )
    trainer_classes: Mapped[List["ClassSession"]] = relationship(back_populates="trainer")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="member")
    subscriptions: Mapped[List["Subscription"]] = relationship(back_populates="user")
    payments: Mapped[List["Payment"]] = relationship(back_populates="user")

    __table_args__ = (
        CheckConstraint("role IN ('admin','trainer','member')", name="ck_user_role"),
        Index("idx_users_role", "role", "is_active"),
    )


class TrainerAvailability(Base):
    """Weekly working window of a trainer ("HH:MM" local gym time)"""

    __tablename__ = "trainer_availability"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    trainer_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    weekday: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Sunday, 6=Saturday
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False, default="09:00")
    end_time: Mapped[str] = mapped_column(String(5), nullable=False, default="17:00")
    notes: Mapped[Optional[str]] = mapped_column(Text)

    trainer: Mapped["User"] = relationship(back_populates="availability")

    @property
    def day(self) -> str:
        return WEEKDAYS[self.weekday]

    __table_args__ = (
        UniqueConstraint("trainer_id", "weekday", name="uq_trainer_weekday"),
        CheckConstraint("weekday BETWEEN 0 AND 6", name="ck_availability_weekday"),
    )
