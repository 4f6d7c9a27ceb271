from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import EmailStr, Field

from fittrack.api.auth.schemas import UserOut
from fittrack.api.schemas import CamelModel


class UserUpdateIn(CamelModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None
    phone_number: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None
    specialization: Optional[str] = None
    experience: Optional[int] = None


class ProfileUpdateIn(CamelModel):
    name: Optional[str] = None
    phone_number: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None
    specialization: Optional[str] = None
    experience: Optional[int] = Field(default=None, ge=0)


class TrainerCreateIn(CamelModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)
    phone_number: Optional[str] = None
    specialization: Optional[str] = None
    experience: Optional[int] = Field(default=None, ge=0)


class AvailabilityIn(CamelModel):
    weekday: int = Field(ge=0, le=6)
    is_available: bool = True
    start_time: str = Field(default="09:00", pattern=r"^\d{2}:\d{2}$")
    end_time: str = Field(default="17:00", pattern=r"^\d{2}:\d{2}$")
    notes: Optional[str] = None


class AvailabilityOut(CamelModel):
    weekday: int
    day: str
    is_available: bool
    start_time: str
    end_time: str
    notes: Optional[str] = None


class TrainerOut(UserOut):
    availability: List[AvailabilityOut] = []


class ProgressIn(CamelModel):
    weight: float = Field(gt=0)
    body_fat: Optional[float] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None
    recorded_at: Optional[datetime] = None


class ProgressOut(CamelModel):
    id: int
    member_id: int
    trainer_id: int
    recorded_at: datetime
    weight: float
    body_fat: Optional[float] = None
    notes: Optional[str] = None


class MemberDetailOut(CamelModel):
    member: UserOut
    progress: List[ProgressOut]
    total_attendance: int


class AccountClosedOut(CamelModel):
    message: str
    cancelled_bookings: int
    revoked_sessions: int
