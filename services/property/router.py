"""
services/property/router.py
Listing management: search, detail, landlord CRUD, availability calendar and media.
"""

import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.settings import settings
from services.review.router import to_review_response
from shared.middleware.auth import require_landlord
from shared.middleware.policy import property_policy
from shared.models.models import (
    Availability,
    MediaType,
    Property,
    PropertyMedia,
    Review,
    RoomType,
    User,
)
from shared.schemas.schemas import (
    AvailabilityEntry,
    AvailabilityResponse,
    MessageResponse,
    PropertyCreateRequest,
    PropertyDetailResponse,
    PropertyMediaCreate,
    PropertyMediaResponse,
    PropertyResponse,
    PropertySearchResponse,
    PropertyUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/properties", tags=["Properties"])

_DECIMAL_FIELDS = {"price", "latitude", "longitude"}
_REQUIRED_FIELDS = {"title", "price", "room_type", "location"}


# ── Helpers ───────────────────────────────────────────────────

def _to_decimal(value: Optional[float]) -> Optional[Decimal]:
    return None if value is None else Decimal(str(value))


async def load_property(db: AsyncSession, property_id: UUID, *options) -> Optional[Property]:
    """Fetch a property with its media (and any extra loader options) refreshed."""
    result = await db.execute(
        select(Property)
        .options(selectinload(Property.media), *options)
        .where(Property.id == property_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _ensure_property_exists(db: AsyncSession, property_id: UUID) -> None:
    exists = await db.scalar(select(Property.id).where(Property.id == property_id))
    if not exists:
        raise HTTPException(status_code=404, detail="Property not found")


# ── Search & Detail ───────────────────────────────────────────

@router.get("", response_model=PropertySearchResponse)
async def search_properties(
    location: Optional[str] = Query(None, min_length=1, max_length=255),
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    room_type: Optional[RoomType] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
):
    """
    Public listing search. Every supplied filter must match:
    - location: case-insensitive substring
    - min_price / max_price: inclusive bounds
    - room_type: exact
    """
    query = select(Property)

    if location:
        query = query.where(
            func.lower(Property.location).contains(location.lower(), autoescape=True)
        )
    if min_price is not None:
        query = query.where(Property.price >= _to_decimal(min_price))
    if max_price is not None:
        query = query.where(Property.price <= _to_decimal(max_price))
    if room_type is not None:
        query = query.where(Property.room_type == room_type)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.options(selectinload(Property.media))
        .execution_options(populate_existing=True)
        .order_by(Property.created_at.desc(), Property.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return PropertySearchResponse(
        items=[PropertyResponse.model_validate(p) for p in result.scalars()],
        total=total or 0,
        page=page,
        page_size=page_size,
    )


@router.get("/{property_id}", response_model=PropertyDetailResponse)
async def get_property(
    property_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Public: a single listing with media, availability calendar and reviews."""
    prop = await load_property(
        db,
        property_id,
        selectinload(Property.availability),
        selectinload(Property.reviews).selectinload(Review.student),
    )
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")

    base = PropertyResponse.model_validate(prop)
    return PropertyDetailResponse(
        **base.model_dump(),
        availability=[AvailabilityResponse.model_validate(a) for a in prop.availability],
        reviews=[
            to_review_response(r)
            for r in sorted(prop.reviews, key=lambda r: r.created_at, reverse=True)
        ],
    )


# ── Landlord CRUD ─────────────────────────────────────────────

@router.post("", response_model=PropertyResponse, status_code=status.HTTP_201_CREATED)
async def create_property(
    data: PropertyCreateRequest,
    current_user: User = Depends(require_landlord),
    db: AsyncSession = Depends(get_db),
):
    prop = Property(
        landlord_id=current_user.id,
        title=data.title,
        description=data.description,
        price=_to_decimal(data.price),
        room_type=RoomType(data.room_type),
        location=data.location,
        latitude=_to_decimal(data.latitude),
        longitude=_to_decimal(data.longitude),
    )
    db.add(prop)
    await db.commit()

    logger.info(f"Landlord {current_user.id} created property {prop.id}")
    return PropertyResponse.model_validate(await load_property(db, prop.id))


@router.put("/{property_id}", response_model=PropertyResponse)
async def update_property(
    property_id: UUID,
    data: PropertyUpdateRequest,
    current_user: User = Depends(require_landlord),
    db: AsyncSession = Depends(get_db),
):
    """Partial update. Only the owning landlord may edit a listing."""
    prop = await property_policy.authorize(db, property_id, current_user, "manage")

    updates = data.model_dump(exclude_unset=True)
    for field, value in updates.items():
        if value is None and field in _REQUIRED_FIELDS:
            raise HTTPException(status_code=400, detail=f"{field} cannot be null")
        if field in _DECIMAL_FIELDS:
            value = _to_decimal(value)
        elif field == "room_type":
            value = RoomType(value)
        setattr(prop, field, value)

    await db.commit()
    return PropertyResponse.model_validate(await load_property(db, property_id))


@router.delete("/{property_id}", response_model=MessageResponse)
async def delete_property(
    property_id: UUID,
    current_user: User = Depends(require_landlord),
    db: AsyncSession = Depends(get_db),
):
    """Delete a listing along with its availability, media, reviews and viewing requests."""
    prop = await property_policy.authorize(db, property_id, current_user, "manage")
    await db.delete(prop)
    await db.commit()

    logger.info(f"Landlord {current_user.id} deleted property {property_id}")
    return MessageResponse(message="Property deleted")


# ── Availability ──────────────────────────────────────────────

@router.get("/{property_id}/availability", response_model=List[AvailabilityResponse])
async def get_availability(
    property_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    await _ensure_property_exists(db, property_id)
    result = await db.execute(
        select(Availability)
        .where(Availability.property_id == property_id)
        .order_by(Availability.date.asc())
    )
    return [AvailabilityResponse.model_validate(a) for a in result.scalars()]


@router.put("/{property_id}/availability", response_model=List[AvailabilityResponse])
async def replace_availability(
    property_id: UUID,
    entries: List[AvailabilityEntry] = Body(...),
    current_user: User = Depends(require_landlord),
    db: AsyncSession = Depends(get_db),
):
    """
    Replace the whole availability calendar.
    Delete and insert happen in one transaction: either the new calendar
    is stored in full or the old one is left untouched.
    """
    await property_policy.authorize(db, property_id, current_user, "manage")

    dates = [e.date for e in entries]
    if len(dates) != len(set(dates)):
        raise HTTPException(status_code=400, detail="Duplicate dates in availability list")

    await db.execute(delete(Availability).where(Availability.property_id == property_id))
    db.add_all([
        Availability(property_id=property_id, date=e.date, is_available=e.is_available)
        for e in entries
    ])
    await db.commit()

    result = await db.execute(
        select(Availability)
        .where(Availability.property_id == property_id)
        .order_by(Availability.date.asc())
    )
    return [AvailabilityResponse.model_validate(a) for a in result.scalars()]


# ── Media ─────────────────────────────────────────────────────

@router.post(
    "/{property_id}/media",
    response_model=PropertyMediaResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_media(
    property_id: UUID,
    data: PropertyMediaCreate,
    current_user: User = Depends(require_landlord),
    db: AsyncSession = Depends(get_db),
):
    """Attach an image or video URL to a listing. Files are hosted elsewhere."""
    await property_policy.authorize(db, property_id, current_user, "manage")

    media = PropertyMedia(
        property_id=property_id,
        url=str(data.url),
        type=MediaType(data.type),
    )
    db.add(media)
    await db.commit()
    await db.refresh(media)
    return PropertyMediaResponse.model_validate(media)
