"""
Attendance and QR check-in token models for FitTrack
"""
from datetime import datetime
from typing import Optional, TYPE_CHECKING
from sqlalchemy import ForeignKey, String, Boolean, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fittrack.core.conversions import utcnow
from fittrack.db.postgresql import Base, BigIntId, UTCDateTime

if TYPE_CHECKING:
    from fittrack.models.userModel import User
    from fittrack.models.classModel import Booking, ClassSession


class Attendance(Base):
    """One check-in per booking"""

    __tablename__ = "attendance"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    booking_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    member_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    class_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False
    )
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    checked_in_by: Mapped[Optional[int]] = mapped_column(BigIntId, ForeignKey("users.id"))
    checked_in_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    booking: Mapped["Booking"] = relationship(back_populates="attendance")
    member: Mapped["User"] = relationship(foreign_keys=[member_id])
    checked_in_by_user: Mapped[Optional["User"]] = relationship(foreign_keys=[checked_in_by])
    class_session: Mapped["ClassSession"] = relationship()

    __table_args__ = (
        CheckConstraint("method IN ('qr','manual')", name="ck_attendance_method"),
        Index("idx_attendance_class", "class_id", "checked_in_at"),
        Index("idx_attendance_member", "member_id", "checked_in_at"),
    )


class AttendanceToken(Base):
    """Short-lived single-use QR token; only the SHA-256 hash is stored"""

    __tablename__ = "attendance_tokens"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    booking_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    class_id: Mapped[int] = mapped_column(
        BigIntId, ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)

    __table_args__ = (
        Index("idx_attendance_tokens_booking", "booking_id"),
        Index("idx_attendance_tokens_expiry", "expires_at"),
    )
