"""
services/review/router.py
Property reviews written by students.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import require_student
from shared.models.models import Property, Review, User
from shared.schemas.schemas import ReviewCreateRequest, ReviewResponse

router = APIRouter(prefix="/reviews", tags=["Reviews"])


def to_review_response(review: Review) -> ReviewResponse:
    """Map a Review with its `student` relationship loaded."""
    return ReviewResponse(
        id=review.id,
        student_id=review.student_id,
        property_id=review.property_id,
        rating=review.rating,
        comment=review.comment,
        created_at=review.created_at,
        student_name=review.student.name if review.student else None,
    )


@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    data: ReviewCreateRequest,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """
    Submit a review for a property.
    - One review per (student, property), enforced by DB unique constraint
    - Landlords cannot review their own listings
    """
    result = await db.execute(select(Property).where(Property.id == data.property_id))
    prop = result.scalar_one_or_none()
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")
    if prop.landlord_id == current_user.id:
        raise HTTPException(status_code=403, detail="You cannot review your own property")

    existing = await db.execute(
        select(Review).where(
            Review.student_id == current_user.id,
            Review.property_id == data.property_id,
        )
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=409, detail="You have already reviewed this property")

    review = Review(
        student_id=current_user.id,
        property_id=data.property_id,
        rating=data.rating,
        comment=data.comment,
    )
    db.add(review)
    await db.commit()
    await db.refresh(review)

    return ReviewResponse(
        id=review.id,
        student_id=review.student_id,
        property_id=review.property_id,
        rating=review.rating,
        comment=review.comment,
        created_at=review.created_at,
        student_name=current_user.name,
    )


@router.get("/property/{property_id}", response_model=list[ReviewResponse])
async def get_property_reviews(
    property_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
):
    """Public: reviews for a property, newest first."""
    exists = await db.scalar(select(Property.id).where(Property.id == property_id))
    if not exists:
        raise HTTPException(status_code=404, detail="Property not found")

    result = await db.execute(
        select(Review)
        .options(selectinload(Review.student))
        .execution_options(populate_existing=True)
        .where(Review.property_id == property_id)
        .order_by(Review.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [to_review_response(r) for r in result.scalars()]


@router.get("/landlord/{landlord_id}", response_model=list[ReviewResponse])
async def get_landlord_reviews(
    landlord_id: UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    db: AsyncSession = Depends(get_db),
):
    """Public: reviews across every property a landlord lists."""
    result = await db.execute(
        select(Review)
        .join(Property, Property.id == Review.property_id)
        .options(selectinload(Review.student))
        .execution_options(populate_existing=True)
        .where(Property.landlord_id == landlord_id)
        .order_by(Review.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [to_review_response(r) for r in result.scalars()]
