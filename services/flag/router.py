"""
services/flag/router.py
User-submitted reports against a listing or an account, reviewed in the admin queue.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import AdminFlag, Property, User
from shared.schemas.schemas import FlagCreateRequest, FlagResponse

router = APIRouter(prefix="/flags", tags=["Moderation"])


@router.post("", response_model=FlagResponse, status_code=status.HTTP_201_CREATED)
async def create_flag(
    data: FlagCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Flag exactly one property or one user for moderation."""
    if data.property_id is not None:
        target = await db.scalar(select(Property.id).where(Property.id == data.property_id))
        if not target:
            raise HTTPException(status_code=404, detail="Property not found")
    else:
        if data.user_id == current_user.id:
            raise HTTPException(status_code=400, detail="You cannot flag yourself")
        target = await db.scalar(select(User.id).where(User.id == data.user_id))
        if not target:
            raise HTTPException(status_code=404, detail="User not found")

    flag = AdminFlag(
        flagged_by_id=current_user.id,
        property_id=data.property_id,
        user_id=data.user_id,
        reason=data.reason,
    )
    db.add(flag)
    await db.commit()
    await db.refresh(flag)
    return FlagResponse.model_validate(flag)
