"""
services/saved_property/router.py
Student bookmarks (favourites).
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import require_student
from shared.models.models import Property, SavedProperty, User
from shared.schemas.schemas import MessageResponse, PropertyResponse, SavedPropertyResponse

router = APIRouter(prefix="/saved-properties", tags=["Saved Properties"])


@router.post("/{property_id}", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def save_property(
    property_id: UUID,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Bookmark a property. Saving the same property twice is a conflict."""
    prop = await db.scalar(select(Property.id).where(Property.id == property_id))
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")

    existing = await db.scalar(
        select(SavedProperty).where(
            SavedProperty.student_id == current_user.id,
            SavedProperty.property_id == property_id,
        )
    )
    if existing:
        raise HTTPException(status_code=409, detail="Property already saved")

    db.add(SavedProperty(student_id=current_user.id, property_id=property_id))
    await db.commit()
    return MessageResponse(message="Property saved")


@router.get("", response_model=list[SavedPropertyResponse])
async def get_saved_properties(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Saved listings with their media, most recently saved first."""
    result = await db.execute(
        select(SavedProperty)
        .options(selectinload(SavedProperty.property).selectinload(Property.media))
        .execution_options(populate_existing=True)
        .where(SavedProperty.student_id == current_user.id)
        .order_by(SavedProperty.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [
        SavedPropertyResponse(
            saved_at=saved.created_at,
            property=PropertyResponse.model_validate(saved.property),
        )
        for saved in result.scalars()
    ]


@router.delete("/{property_id}", response_model=MessageResponse)
async def unsave_property(
    property_id: UUID,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    saved = await db.scalar(
        select(SavedProperty).where(
            SavedProperty.student_id == current_user.id,
            SavedProperty.property_id == property_id,
        )
    )
    if not saved:
        raise HTTPException(status_code=404, detail="Saved property not found")

    await db.delete(saved)
    await db.commit()
    return MessageResponse(message="Property removed from saved list")
