from typing import List, Optional

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.auth.schemas import UserOut
from fittrack.api.deps import client_ip, get_current_user, require_roles
from fittrack.api.schemas import MessageOut
from fittrack.api.users.schemas import (
    AccountClosedOut,
    AvailabilityIn,
    AvailabilityOut,
    MemberDetailOut,
    ProfileUpdateIn,
    ProgressIn,
    ProgressOut,
    TrainerCreateIn,
    TrainerOut,
    UserUpdateIn,
)
from fittrack.core.errors import PermissionDenied, ValidationFailed
from fittrack.crud import attendanceCrud, contentCrud, usersCrud
from fittrack.crud.notificationsCrud import add_audit_log
from fittrack.db.postgresql import get_db
from fittrack.models import User
from fittrack.services.image_service import ImageService

router = APIRouter(prefix="/api/users", tags=["users"])

admin_only = require_roles("admin")
trainer_only = require_roles("trainer")
staff_only = require_roles("trainer", "admin")


@router.get("", response_model=List[UserOut])
async def list_users(
    role: Optional[str] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(admin_only),
):
    return await usersCrud.list_users(db, role=role, is_active=is_active, search=search, limit=limit, offset=offset)


@router.get("/trainers", response_model=List[TrainerOut])
async def list_trainers(db: AsyncSession = Depends(get_db)):
    """Public trainer directory with weekly availability"""
    return await usersCrud.list_trainers(db)


@router.post("/trainers", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_trainer(
    data: TrainerCreateIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(admin_only),
):
    trainer = await usersCrud.create_user(
        db,
        name=data.name,
        email=data.email,
        password=data.password,
        role="trainer",
        phone_number=data.phone_number,
        specialization=data.specialization,
        experience=data.experience,
        approved_by=admin.id,
    )
    add_audit_log(db, user_id=admin.id, action="user.create_trainer", resource="user",
                  resource_id=trainer.id, ip_address=client_ip(request))
    await db.commit()
    return trainer


@router.patch("/me", response_model=UserOut)
async def update_me(data: ProfileUpdateIn, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    changes = data.model_dump(exclude_unset=True)
    return await usersCrud.update_profile(db, user=user, changes=changes)


@router.delete("/me", response_model=AccountClosedOut)
async def delete_me(request: Request, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    summary = await usersCrud.close_own_account(db, user=user, ip_address=client_ip(request))
    return AccountClosedOut(message="Account deleted", **summary)


@router.post("/me/avatar", response_model=UserOut)
async def upload_avatar(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    service = ImageService()
    file_data = await file.read()
    is_valid, error = service.validate_image(file_data, file.filename or "")
    if not is_valid:
        raise ValidationFailed(error)

    path = service.process_and_save_image(file_data, user.id, file.filename or "avatar.png")
    previous = await usersCrud.set_avatar(db, user=user, avatar_path=path)
    if previous and previous != path:
        service.delete_file(previous)
    return user


@router.get("/me/availability", response_model=List[AvailabilityOut])
async def my_availability(db: AsyncSession = Depends(get_db), trainer: User = Depends(trainer_only)):
    return await usersCrud.get_availability(db, trainer.id)


@router.put("/me/availability", response_model=List[AvailabilityOut])
async def set_my_availability(
    data: List[AvailabilityIn],
    db: AsyncSession = Depends(get_db),
    trainer: User = Depends(trainer_only),
):
    windows = [usersCrud.AvailabilityWindow(**item.model_dump()) for item in data]
    return await usersCrud.set_availability(db, trainer=trainer, windows=windows)


@router.get("/me/members", response_model=List[UserOut])
async def my_members(db: AsyncSession = Depends(get_db), trainer: User = Depends(trainer_only)):
    """Members who booked any of the trainer's classes"""
    return await usersCrud.get_trainer_members(db, trainer.id)


@router.get("/members/{member_id}", response_model=MemberDetailOut)
async def member_detail(member_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(staff_only)):
    member = await usersCrud.require_user(db, member_id, role="member")
    if user.role == "trainer" and not await usersCrud.is_trainer_member(db, trainer_id=user.id, member_id=member_id):
        raise PermissionDenied("Member is not in any of your classes")
    progress = await contentCrud.list_progress(db, member_id=member_id)
    total = await attendanceCrud.count_member_attendance(db, member_id)
    return MemberDetailOut(member=UserOut.model_validate(member), progress=progress, total_attendance=total)


@router.get("/members/{member_id}/progress", response_model=List[ProgressOut])
async def member_progress(member_id: int, db: AsyncSession = Depends(get_db), user: User = Depends(get_current_user)):
    if user.role == "member" and user.id != member_id:
        raise PermissionDenied("Not authorized to view this member's progress")
    if user.role == "trainer" and not await usersCrud.is_trainer_member(db, trainer_id=user.id, member_id=member_id):
        raise PermissionDenied("Member is not in any of your classes")
    return await contentCrud.list_progress(db, member_id=member_id)


@router.post("/members/{member_id}/progress", response_model=ProgressOut, status_code=status.HTTP_201_CREATED)
async def add_member_progress(
    member_id: int,
    data: ProgressIn,
    db: AsyncSession = Depends(get_db),
    trainer: User = Depends(staff_only),
):
    return await contentCrud.record_progress(
        db, trainer=trainer, member_id=member_id, values=data.model_dump(exclude_unset=True)
    )


@router.get("/{user_id}/availability", response_model=List[AvailabilityOut])
async def trainer_availability(user_id: int, db: AsyncSession = Depends(get_db)):
    trainer = await usersCrud.require_user(db, user_id, role="trainer")
    return await usersCrud.get_availability(db, trainer.id)


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: int,
    data: UserUpdateIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(admin_only),
):
    changes = data.model_dump(exclude_unset=True)
    user = await usersCrud.update_user(db, user_id=user_id, changes=changes)
    add_audit_log(db, user_id=admin.id, action="user.update", resource="user", resource_id=user.id,
                  details={"fields": sorted(changes)}, ip_address=client_ip(request))
    await db.commit()
    return user


@router.delete("/{user_id}", response_model=MessageOut)
async def delete_user(
    user_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(admin_only),
):
    user = await usersCrud.deactivate_user(db, user_id=user_id, acting_user_id=admin.id)
    add_audit_log(db, user_id=admin.id, action="user.delete", resource="user", resource_id=user.id,
                  ip_address=client_ip(request))
    await db.commit()
    return MessageOut(message="User deleted")
