"""
Membership plan, subscription mirror and payment models for FitTrack
"""
from datetime import datetime
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    ForeignKey, Integer, String, Text, Boolean, JSON, CheckConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fittrack.core.conversions import utcnow
from fittrack.db.postgresql import Base, BigIntId, UTCDateTime

if TYPE_CHECKING:
    from fittrack.models.userModel import User


# Processor statuses that grant access to booking and attendance
ACCESS_STATUSES = ("active", "trialing")


class Plan(Base):
    """Membership plan sold through the payment processor"""

    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    # Minor currency units (paisa/cents)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    interval: Mapped[str] = mapped_column(String(10), nullable=False, default="month")
    # Distinct courses a member may hold at once, 0 means unlimited
    classes_per_month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    features: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String(120))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, onupdate=utcnow)

    # Relationships
    subscriptions: Mapped[List["Subscription"]] = relationship(back_populates="plan")

    __table_args__ = (
        CheckConstraint("interval IN ('month','year')", name="ck_plan_interval"),
        CheckConstraint("price >= 0", name="ck_plan_price"),
        CheckConstraint("classes_per_month >= 0", name="ck_plan_quota"),
    )


class Subscription(Base):
    """Local mirror of a processor subscription used for access checks"""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    plan_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("plans.id"), nullable=False)
    stripe_customer_id: Mapped[str] = mapped_column(String(120), nullable=False)
    stripe_subscription_id: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="incomplete")
    current_period_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, onupdate=utcnow)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="subscriptions")
    plan: Mapped["Plan"] = relationship(back_populates="subscriptions")
    payments: Mapped[List["Payment"]] = relationship(back_populates="subscription")

    __table_args__ = (
        CheckConstraint(
            "status IN ('trialing','active','past_due','cancelled','incomplete')",
            name="ck_subscription_status",
        ),
        Index("idx_subscriptions_user", "user_id", "status", "current_period_end"),
    )


class Payment(Base):
    """Payment records"""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("users.id"), nullable=False)
    subscription_id: Mapped[Optional[int]] = mapped_column(BigIntId, ForeignKey("subscriptions.id"))
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="pkr")
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(120), unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="paid")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="payments")
    subscription: Mapped[Optional["Subscription"]] = relationship(back_populates="payments")

    __table_args__ = (
        Index("idx_payments_user_created", "user_id", "created_at"),
    )
