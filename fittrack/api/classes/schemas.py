from datetime import datetime
from typing import List, Optional

from pydantic import Field, model_validator

from fittrack.api.schemas import CamelModel, UserBrief


class ClassCreateIn(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    description: str = Field(min_length=1)
    start_at: datetime
    end_at: datetime
    duration_min: Optional[int] = Field(default=None, gt=0)
    capacity: int = Field(gt=0)
    location: str = Field(min_length=1)
    trainer_id: int
    is_recurring: bool = False
    recurrence_count: int = Field(default=1, ge=1, le=52)

    @model_validator(mode="after")
    def check_times(self):
        if self.start_at >= self.end_at:
            raise ValueError("Start time must be before end time")
        return self


class ClassUpdateIn(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    duration_min: Optional[int] = Field(default=None, gt=0)
    capacity: Optional[int] = Field(default=None, gt=0)
    trainer_id: Optional[int] = None


class ClassOut(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    location: Optional[str] = None
    trainer_id: int
    start_at: datetime
    end_at: datetime
    duration_min: int
    capacity: int
    attendee_count: int
    available_spots: int
    status: str
    recurrence_group_id: Optional[str] = None


class ClassListOut(ClassOut):
    trainer: UserBrief


class ClassCreateOut(CamelModel):
    message: str
    classes: List[ClassOut]
    recurrence_group_id: Optional[str] = None


class RosterEntry(CamelModel):
    booking_id: int
    member: UserBrief
    status: str
    booked_at: datetime
    waitlist_position: Optional[int] = None


class ClassDetailOut(ClassListOut):
    attendees: List[RosterEntry] = []
    waitlist: List[RosterEntry] = []


class CompleteClassOut(CamelModel):
    message: str
    completed: int
    no_show: int
    waitlist_cancelled: int
