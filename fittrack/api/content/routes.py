from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from fittrack.api.content.schemas import ContentPlanOut, ContentPlanWithTrainerOut
from fittrack.api.deps import get_optional_user, require_roles
from fittrack.api.schemas import MessageOut
from fittrack.core.errors import FitTrackError, ValidationFailed
from fittrack.crud import contentCrud
from fittrack.db.postgresql import get_db
from fittrack.models import User
from fittrack.services.image_service import DocumentService

router = APIRouter(prefix="/api/content", tags=["content"])

PlanKind = Literal["workout", "diet"]
staff_only = require_roles("trainer", "admin")
trainer_only = require_roles("trainer")


@router.get("/{kind}", response_model=List[ContentPlanWithTrainerOut])
async def list_content(
    kind: PlanKind,
    trainer_id: Optional[int] = Query(None, alias="trainerId"),
    tag: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    """Public plans for everyone; members-only plans need an active subscription"""
    return await contentCrud.list_plans(db, kind=kind, user=user, trainer_id=trainer_id, tag=tag)


@router.get("/{kind}/{plan_id}", response_model=ContentPlanWithTrainerOut)
async def get_content(
    kind: PlanKind,
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    user: Optional[User] = Depends(get_optional_user),
):
    return await contentCrud.get_plan(db, kind=kind, plan_id=plan_id, user=user)


@router.post("/{kind}", response_model=ContentPlanOut, status_code=status.HTTP_201_CREATED)
async def upload_content(
    kind: PlanKind,
    title: str = Form(..., min_length=1, max_length=200),
    description: str = Form(..., min_length=1),
    visibility: Literal["public", "members_only"] = Form("members_only"),
    tags: str = Form(""),
    price: int = Form(0, ge=0),
    calories: int = Form(0, ge=0),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    trainer: User = Depends(trainer_only),
):
    service = DocumentService()
    file_data = await file.read()
    is_valid, error = service.validate_document(file_data, file.content_type)
    if not is_valid:
        raise ValidationFailed(error)

    values = {
        "title": title,
        "description": description,
        "visibility": visibility,
        "tags": [t.strip() for t in tags.split(",") if t.strip()],
        "file_type": file.content_type,
    }
    if kind == "workout":
        values["price"] = price
    else:
        values["calories"] = calories

    values["file_url"] = service.save_document(file_data, kind, file.filename or kind)
    try:
        return await contentCrud.create_plan(db, kind=kind, trainer=trainer, values=values)
    except FitTrackError:
        service.delete_file(values["file_url"])
        raise


@router.delete("/{kind}/{plan_id}", response_model=MessageOut)
async def delete_content(
    kind: PlanKind,
    plan_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(staff_only),
):
    file_url = await contentCrud.delete_plan(db, kind=kind, plan_id=plan_id, user=user)
    DocumentService().delete_file(file_url)
    return MessageOut(message="Plan deleted")
