"""
Trainer-published content (workout and diet plans) and member progress
"""
from datetime import datetime
from typing import Optional, TYPE_CHECKING
from sqlalchemy import ForeignKey, Integer, Float, String, Text, JSON, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fittrack.core.conversions import utcnow
from fittrack.db.postgresql import Base, BigIntId, UTCDateTime

if TYPE_CHECKING:
    from fittrack.models.userModel import User


class WorkoutPlan(Base):
    __tablename__ = "workout_plans"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    trainer_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    file_url: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0 = free
    visibility: Mapped[str] = mapped_column(String(20), nullable=False, default="members_only")
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    trainer: Mapped["User"] = relationship()

    __table_args__ = (
        CheckConstraint("visibility IN ('public','members_only')", name="ck_workout_visibility"),
        Index("idx_workout_plans_trainer", "trainer_id", "uploaded_at"),
    )


class DietPlan(Base):
    __tablename__ = "diet_plans"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    trainer_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    file_url: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[str] = mapped_column(String(100), nullable=False)
    calories: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    visibility: Mapped[str] = mapped_column(String(20), nullable=False, default="members_only")
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    uploaded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    trainer: Mapped["User"] = relationship()

    __table_args__ = (
        CheckConstraint("visibility IN ('public','members_only')", name="ck_diet_visibility"),
        Index("idx_diet_plans_trainer", "trainer_id", "uploaded_at"),
    )


class MemberProgress(Base):
    __tablename__ = "member_progress"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    member_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    trainer_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    weight: Mapped[float] = mapped_column(Float, nullable=False)
    body_fat: Mapped[Optional[float]] = mapped_column(Float)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("idx_member_progress_member", "member_id", "recorded_at"),
    )
