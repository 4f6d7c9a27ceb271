"""
Trainer content: workout plans, diet plans and member progress entries.
"""
from typing import Any, Dict, List, Optional, Type, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from fittrack.core.errors import NotFound, PermissionDenied, ValidationFailed
from fittrack.core.logging_config import get_logger
from fittrack.crud.membershipsCrud import get_active_subscription
from fittrack.crud.usersCrud import is_trainer_member
from fittrack.models import DietPlan, MemberProgress, User, WorkoutPlan

logger = get_logger("crud.content")

PlanModel = Union[WorkoutPlan, DietPlan]
PLAN_MODELS: Dict[str, Type] = {"workout": WorkoutPlan, "diet": DietPlan}
VISIBILITIES = ("public", "members_only")


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise


def _model(kind: str) -> Type:
    try:
        return PLAN_MODELS[kind]
    except KeyError:
        raise NotFound(f"Unknown plan type {kind}")


async def visible_visibilities(db: AsyncSession, user: Optional[User]) -> Optional[tuple]:
    """None means every plan is visible"""
    if user is not None and user.role in ("admin", "trainer"):
        return None
    if user is not None and await get_active_subscription(db, user.id):
        return VISIBILITIES
    return ("public",)


async def list_plans(
    db: AsyncSession,
    *,
    kind: str,
    user: Optional[User],
    trainer_id: Optional[int] = None,
    tag: Optional[str] = None,
) -> List[PlanModel]:
    """Public plans for everyone, members-only plans for subscribed members"""
    model = _model(kind)
    stmt = select(model).options(joinedload(model.trainer))
    allowed = await visible_visibilities(db, user)
    if allowed is not None:
        stmt = stmt.where(model.visibility.in_(allowed))
    if trainer_id:
        stmt = stmt.where(model.trainer_id == trainer_id)
    plans = list((await db.execute(stmt.order_by(model.uploaded_at.desc(), model.id.desc()))).scalars().all())
    if tag:
        plans = [p for p in plans if tag in (p.tags or [])]
    return plans


async def get_plan(db: AsyncSession, *, kind: str, plan_id: int, user: Optional[User]) -> PlanModel:
    model = _model(kind)
    plan = (await db.execute(
        select(model).options(joinedload(model.trainer)).where(model.id == plan_id)
    )).scalar_one_or_none()
    if not plan:
        raise NotFound("Plan not found")
    allowed = await visible_visibilities(db, user)
    if allowed is not None and plan.visibility not in allowed:
        raise PermissionDenied("An active subscription is required to view this plan")
    return plan


async def create_plan(
    db: AsyncSession,
    *,
    kind: str,
    trainer: User,
    values: Dict[str, Any],
) -> PlanModel:
    """Create a workout or diet plan record for an uploaded file"""
    model = _model(kind)
    if not values.get("title") or not values.get("description"):
        raise ValidationFailed("Title and description are required")
    if values.get("visibility", "members_only") not in VISIBILITIES:
        raise ValidationFailed("Visibility must be public or members_only")

    plan = model(trainer_id=trainer.id, **values)
    db.add(plan)
    await _commit(db)
    await db.refresh(plan)
    logger.info(f"Trainer {trainer.id} published {kind} plan {plan.id}")
    return plan


async def delete_plan(db: AsyncSession, *, kind: str, plan_id: int, user: User) -> str:
    """Delete a plan owned by ``user`` (or any plan for admins); returns the file path to remove"""
    model = _model(kind)
    plan = (await db.execute(select(model).where(model.id == plan_id))).scalar_one_or_none()
    if not plan:
        raise NotFound("Plan not found")
    if user.role != "admin" and plan.trainer_id != user.id:
        raise PermissionDenied("Not authorized to delete this plan")

    file_url = plan.file_url
    await db.delete(plan)
    await _commit(db)
    logger.info(f"Deleted {kind} plan {plan_id} by user {user.id}")
    return file_url


# ==================== PROGRESS ====================

async def record_progress(
    db: AsyncSession,
    *,
    trainer: User,
    member_id: int,
    values: Dict[str, Any],
) -> MemberProgress:
    member = (await db.execute(select(User).where(User.id == member_id))).scalar_one_or_none()
    if not member or member.role != "member":
        raise NotFound("Member not found")
    if trainer.role != "admin" and not await is_trainer_member(db, trainer_id=trainer.id, member_id=member_id):
        raise PermissionDenied("Member is not in any of your classes")
    if values.get("weight") is None or values["weight"] <= 0:
        raise ValidationFailed("Weight must be positive")

    entry = MemberProgress(member_id=member_id, trainer_id=trainer.id, **{k: v for k, v in values.items() if v is not None})
    db.add(entry)
    await _commit(db)
    await db.refresh(entry)
    return entry


async def list_progress(db: AsyncSession, *, member_id: int) -> List[MemberProgress]:
    res = await db.execute(
        select(MemberProgress)
        .where(MemberProgress.member_id == member_id)
        .order_by(MemberProgress.recorded_at.desc(), MemberProgress.id.desc())
    )
    return list(res.scalars().all())
