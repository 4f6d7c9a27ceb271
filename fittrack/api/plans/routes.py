from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.deps import get_optional_user, require_roles
from fittrack.api.plans.schemas import PlanIn, PlanOut, PlanUpdateIn
from fittrack.crud import membershipsCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User

router = APIRouter(prefix="/api/plans", tags=["plans"])

admin_only = require_roles("admin")


@router.get("", response_model=List[PlanOut])
async def list_plans(db: AsyncSession = Depends(get_db), user=Depends(get_optional_user)):
    """Active plans; admins also see retired ones"""
    include_inactive = user is not None and user.role == "admin"
    return await membershipsCrud.list_plans(db, include_inactive=include_inactive)


@router.get("/{plan_id}", response_model=PlanOut)
async def get_plan(plan_id: int, db: AsyncSession = Depends(get_db)):
    return await membershipsCrud.get_plan(db, plan_id)


@router.post("", response_model=PlanOut, status_code=status.HTTP_201_CREATED)
async def create_plan(data: PlanIn, db: AsyncSession = Depends(get_db), _: User = Depends(admin_only)):
    return await membershipsCrud.create_plan(db, values=data.model_dump())


@router.patch("/{plan_id}", response_model=PlanOut)
async def update_plan(
    plan_id: int,
    data: PlanUpdateIn,
    db: AsyncSession = Depends(get_db),
    _: User = Depends(admin_only),
):
    return await membershipsCrud.update_plan(db, plan_id=plan_id, changes=data.model_dump(exclude_unset=True))


@router.delete("/{plan_id}", response_model=PlanOut)
async def delete_plan(plan_id: int, db: AsyncSession = Depends(get_db), _: User = Depends(admin_only)):
    """Plans are retired, not deleted, so existing subscriptions keep their plan"""
    return await membershipsCrud.deactivate_plan(db, plan_id=plan_id)
