from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func, or_, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fittrack.auth.hashing import hash_password
from fittrack.core.conversions import coerce_int, utcnow
from fittrack.core.errors import AlreadyExists, NotFound, ValidationFailed
from fittrack.core.logging_config import get_logger
from fittrack.crud import bookingsCrud, sessionCrud
from fittrack.crud.notificationsCrud import add_audit_log
from fittrack.models import User, TrainerAvailability, Booking, ClassSession
from fittrack.models.userModel import ROLES, WEEKDAYS
from fittrack.services.availability import parse_hhmm

logger = get_logger("crud.users")

# Fields a user may change on their own profile
PROFILE_FIELDS = ("name", "phone_number", "profile", "specialization", "experience")
# Additional fields only an admin may change
ADMIN_FIELDS = PROFILE_FIELDS + ("email", "role", "is_active")


@dataclass
class AvailabilityWindow:
    weekday: int
    is_available: bool = True
    start_time: str = "09:00"
    end_time: str = "17:00"
    notes: Optional[str] = None


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


async def get_user_by_id(db: AsyncSession, user_id: Any) -> User | None:
    user_id = coerce_int(user_id)
    if user_id is None:
        return None
    res = await db.execute(select(User).where(User.id == user_id))
    return res.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    res = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return res.scalar_one_or_none()


async def require_user(db: AsyncSession, user_id: int, *, role: Optional[str] = None) -> User:
    user = await get_user_by_id(db, user_id)
    if not user or (role and user.role != role):
        raise NotFound(f"{(role or 'user').capitalize()} not found")
    return user


async def create_user(
    db: AsyncSession,
    *,
    name: str,
    email: str,
    password: str,
    role: str = "member",
    phone_number: Optional[str] = None,
    specialization: Optional[str] = None,
    experience: Optional[int] = None,
    approved_by: Optional[int] = None,
) -> User:
    """Create a new user with a hashed password"""
    if role not in ROLES:
        raise ValidationFailed(f"Invalid role {role}")
    if len(password) < 6:
        raise ValidationFailed("Password must be at least 6 characters")
    if await get_user_by_email(db, email):
        raise AlreadyExists("User already exists")

    user = User(
        name=name.strip(),
        email=email.strip().lower(),
        password_hash=hash_password(password),
        role=role,
        is_active=True,
        phone_number=phone_number,
        specialization=specialization,
        experience=experience,
        profile={},
    )
    if approved_by is not None:
        user.approved_by = approved_by
        user.approved_at = utcnow()

    db.add(user)
    await _commit(db)
    await db.refresh(user)
    logger.info(f"Created {role} account {user.id}")
    return user


async def list_users(
    db: AsyncSession,
    *,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[User]:
    stmt = select(User)
    if role:
        stmt = stmt.where(User.role == role)
    if is_active is not None:
        stmt = stmt.where(User.is_active == is_active)
    if search:
        pattern = f"%{search.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern)))
    stmt = stmt.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit)
    res = await db.execute(stmt)
    return list(res.scalars().all())


async def list_trainers(db: AsyncSession) -> List[User]:
    res = await db.execute(
        select(User)
        .options(selectinload(User.availability))
        .where(User.role == "trainer", User.is_active == True)  # noqa: E712
        .order_by(User.name)
    )
    return list(res.scalars().all())


def _apply_changes(user: User, changes: Dict[str, Any], allowed: Iterable[str]) -> None:
    allowed = set(allowed)
    for key, value in changes.items():
        if key not in allowed:
            raise ValidationFailed(f"Field {key} cannot be updated")
        if key == "role" and value not in ROLES:
            raise ValidationFailed(f"Invalid role {value}")
        if key == "profile":
            merged = dict(user.profile or {})
            merged.update(value or {})
            value = merged
        setattr(user, key, value)


async def update_user(db: AsyncSession, *, user_id: int, changes: Dict[str, Any]) -> User:
    """Admin update of any account"""
    user = await require_user(db, user_id)
    if "email" in changes and changes["email"]:
        changes["email"] = changes["email"].strip().lower()
        other = await get_user_by_email(db, changes["email"])
        if other and other.id != user.id:
            raise AlreadyExists("Email already in use")
    _apply_changes(user, changes, ADMIN_FIELDS)
    await _commit(db)
    logger.info(f"Updated user {user.id}: {sorted(changes)}")
    return user


async def update_profile(db: AsyncSession, *, user: User, changes: Dict[str, Any]) -> User:
    """Self-service profile update"""
    if user.role != "trainer":
        changes = {k: v for k, v in changes.items() if k not in ("specialization", "experience")}
    _apply_changes(user, changes, PROFILE_FIELDS)
    await _commit(db)
    return user


async def set_avatar(db: AsyncSession, *, user: User, avatar_path: str) -> Optional[str]:
    """Store the new avatar path and return the previous one"""
    previous = user.avatar_path
    user.avatar_path = avatar_path
    await _commit(db)
    return previous


async def deactivate_user(db: AsyncSession, *, user_id: int, acting_user_id: int) -> User:
    """Accounts are deactivated rather than removed so bookings and payments keep their owner"""
    if user_id == acting_user_id:
        raise ValidationFailed("You cannot delete your own account")
    user = await require_user(db, user_id)
    user.is_active = False
    await _commit(db)
    logger.info(f"Deactivated user {user.id}")
    return user


async def close_own_account(db: AsyncSession, *, user: User, ip_address: Optional[str] = None) -> Dict[str, int]:
    """
    Soft-delete the caller's own account.

    Signs the user out of every session and gives up their places in classes
    that have not started, promoting waitlisted members into freed seats.
    Admins are closed by another admin, and trainers must hand over their
    upcoming classes first.
    """
    if user.role == "admin":
        raise ValidationFailed("Administrators cannot delete their own account")
    if user.role == "trainer":
        upcoming = (await db.execute(
            select(func.count(ClassSession.id)).where(
                ClassSession.trainer_id == user.id,
                ClassSession.status == "scheduled",
                ClassSession.end_at > utcnow(),
            )
        )).scalar_one()
        if upcoming:
            raise ValidationFailed(
                f"Reassign or cancel your {upcoming} upcoming class(es) before deleting your account"
            )

    released = await bookingsCrud.release_member_bookings(db, member_id=user.id, reason="Account deleted")
    revoked = await sessionCrud.revoke_user_sessions(db, user.id)
    user.is_active = False
    add_audit_log(
        db, user_id=user.id, action="user.delete_self", resource="user", resource_id=user.id,
        details={"cancelledBookings": len(released), "revokedSessions": revoked}, ip_address=ip_address,
    )
    await _commit(db)
    logger.info(f"User {user.id} deleted their account; {len(released)} booking(s) released")
    return {"cancelled_bookings": len(released), "revoked_sessions": revoked}


async def get_availability(db: AsyncSession, trainer_id: int) -> List[TrainerAvailability]:
    res = await db.execute(
        select(TrainerAvailability)
        .where(TrainerAvailability.trainer_id == trainer_id)
        .order_by(TrainerAvailability.weekday)
    )
    return list(res.scalars().all())


async def set_availability(
    db: AsyncSession,
    *,
    trainer: User,
    windows: List[AvailabilityWindow],
) -> List[TrainerAvailability]:
    """Replace the trainer's weekly availability"""
    seen = set()
    for window in windows:
        if window.weekday not in range(len(WEEKDAYS)):
            raise ValidationFailed("Weekday must be between 0 (Sunday) and 6 (Saturday)")
        if window.weekday in seen:
            raise ValidationFailed(f"Duplicate availability for {WEEKDAYS[window.weekday]}")
        seen.add(window.weekday)
        try:
            start, end = parse_hhmm(window.start_time), parse_hhmm(window.end_time)
        except ValueError:
            raise ValidationFailed("Times must use HH:MM format")
        if window.is_available and start >= end:
            raise ValidationFailed(f"Start time must be before end time on {WEEKDAYS[window.weekday]}")

    await db.execute(delete(TrainerAvailability).where(TrainerAvailability.trainer_id == trainer.id))
    for window in windows:
        db.add(TrainerAvailability(
            trainer_id=trainer.id,
            weekday=window.weekday,
            is_available=window.is_available,
            start_time=window.start_time,
            end_time=window.end_time,
            notes=window.notes,
        ))
    await _commit(db)
    logger.info(f"Trainer {trainer.id} availability set for {len(windows)} days")
    return await get_availability(db, trainer.id)


async def get_trainer_members(db: AsyncSession, trainer_id: int) -> List[User]:
    """Members holding any non-cancelled booking in one of the trainer's classes"""
    member_ids = (
        select(Booking.member_id)
        .join(ClassSession, ClassSession.id == Booking.class_id)
        .where(ClassSession.trainer_id == trainer_id, Booking.status != "cancelled")
    )
    res = await db.execute(
        select(User).where(User.id.in_(member_ids)).order_by(User.name)
    )
    return list(res.scalars().all())


async def is_trainer_member(db: AsyncSession, *, trainer_id: int, member_id: int) -> bool:
    res = await db.execute(
        select(func.count(Booking.id))
        .join(ClassSession, ClassSession.id == Booking.class_id)
        .where(ClassSession.trainer_id == trainer_id, Booking.member_id == member_id)
    )
    return (res.scalar() or 0) > 0
