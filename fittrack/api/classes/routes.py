from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.classes.schemas import (
    ClassCreateIn,
    ClassCreateOut,
    ClassDetailOut,
    ClassListOut,
    ClassOut,
    ClassUpdateIn,
    CompleteClassOut,
    RosterEntry,
)
from fittrack.api.deps import client_ip, require_roles
from fittrack.api.schemas import UserBrief
from fittrack.crud import classSessionCrud
from fittrack.db.postgresql import get_db
from fittrack.models import Booking, User

router = APIRouter(prefix="/api/classes", tags=["classes"])

admin_only = require_roles("admin")
staff_only = require_roles("trainer", "admin")


def _roster(bookings: List[Booking]) -> List[RosterEntry]:
    return [
        RosterEntry(
            booking_id=b.id,
            member=UserBrief.model_validate(b.member),
            status=b.status,
            booked_at=b.booked_at,
            waitlist_position=b.waitlist_position,
        )
        for b in bookings
    ]


@router.get("", response_model=List[ClassListOut])
async def list_classes(
    status: Optional[str] = None,
    trainer_id: Optional[int] = Query(None, alias="trainerId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    available: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
):
    return await classSessionCrud.list_classes(
        db, status=status, trainer_id=trainer_id, start_date=start_date, end_date=end_date, available=available
    )


@router.get("/{class_id}", response_model=ClassDetailOut)
async def get_class(class_id: int, db: AsyncSession = Depends(get_db)):
    detail = await classSessionCrud.get_class_detail(db, class_id)
    out = ClassDetailOut.model_validate(detail.class_session)
    out.attendees = _roster(detail.attendees)
    out.waitlist = _roster(detail.waitlist)
    return out


@router.post("", response_model=ClassCreateOut, status_code=status.HTTP_201_CREATED)
async def create_class(
    data: ClassCreateIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(admin_only),
):
    created = await classSessionCrud.create_classes(
        db,
        actor=admin,
        data=classSessionCrud.ClassCreateData(**data.model_dump()),
        ip_address=client_ip(request),
    )
    message = "Class created successfully" if len(created) == 1 else f"{len(created)} recurring classes created"
    return ClassCreateOut(
        message=message,
        classes=[ClassOut.model_validate(c) for c in created],
        recurrence_group_id=created[0].recurrence_group_id,
    )


@router.patch("/{class_id}", response_model=ClassOut)
async def update_class(
    class_id: int,
    data: ClassUpdateIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(staff_only),
):
    return await classSessionCrud.update_class(
        db,
        actor=user,
        class_id=class_id,
        changes=data.model_dump(exclude_unset=True),
        ip_address=client_ip(request),
    )


@router.delete("/{class_id}", response_model=ClassOut)
async def cancel_class(
    class_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(staff_only),
):
    """Cancel the class and every booking in it"""
    return await classSessionCrud.cancel_class(db, actor=user, class_id=class_id, ip_address=client_ip(request))


@router.post("/{class_id}/complete", response_model=CompleteClassOut)
async def complete_class(
    class_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(staff_only),
):
    counts = await classSessionCrud.complete_class(db, actor=user, class_id=class_id, ip_address=client_ip(request))
    return CompleteClassOut(message="Class marked as completed", **counts)
