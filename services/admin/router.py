"""
services/admin/router.py
Admin-only endpoints: flag queue, user moderation, content removal,
platform analytics, and immutable audit log.

ALL mutations are logged to AdminAuditLog before commit.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import require_admin
from shared.models.models import (
    AdminAuditLog,
    AdminFlag,
    Message,
    Property,
    Review,
    User,
    UserRole,
    ViewingRequest,
    ViewingRequestStatus,
)
from shared.schemas.schemas import (
    AdminAnalyticsResponse,
    AdminSuspendRequest,
    FlagResponse,
    MessageResponse,
    TopListing,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Helpers ────────────────────────────────────────────────────────────────────

async def _log(
    db: AsyncSession,
    admin: User,
    action: str,
    entity_type: str,
    entity_id: str,
    payload: dict | None = None,
    request: Request | None = None,
):
    """Append an immutable record to AdminAuditLog."""
    db.add(AdminAuditLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload=payload or {},
        ip_address=request.client.host if request and request.client else None,
    ))


async def _get_user_or_404(db: AsyncSession, user_id: UUID) -> User:
    user = await db.scalar(select(User).where(User.id == user_id))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# ── Flag Queue ─────────────────────────────────────────────────────────────────

@router.get("/flags", response_model=list[FlagResponse])
async def list_flags(
    resolved: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Flags, oldest first (FIFO queue). Filter on resolution state with ?resolved=."""
    query = select(AdminFlag).order_by(AdminFlag.created_at.asc())
    if resolved is not None:
        query = query.where(AdminFlag.resolved == resolved)

    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
    return [FlagResponse.model_validate(f) for f in result.scalars()]


@router.put("/flags/{flag_id}/resolve", response_model=FlagResponse)
async def resolve_flag(
    flag_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    flag = await db.scalar(select(AdminFlag).where(AdminFlag.id == flag_id))
    if not flag:
        raise HTTPException(status_code=404, detail="Flag not found")
    if flag.resolved:
        raise HTTPException(status_code=409, detail="Flag is already resolved")

    flag.resolved = True
    await _log(db, current_user, "RESOLVE_FLAG", "AdminFlag", str(flag_id), {}, request)
    await db.commit()
    await db.refresh(flag)
    return FlagResponse.model_validate(flag)


# ── User Moderation ────────────────────────────────────────────────────────────

@router.get("/users/spam")
async def get_spam_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Users with at least one unresolved flag, most-flagged first."""
    open_flags = func.count(AdminFlag.id).label("open_flags")
    query = (
        select(User, open_flags)
        .join(AdminFlag, AdminFlag.user_id == User.id)
        .where(AdminFlag.resolved == False)  # noqa: E712
        .group_by(User.id)
        .order_by(open_flags.desc(), User.id)
    )
    result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))

    return [
        {
            "id": str(user.id),
            "email": user.email,
            "name": user.name,
            "role": user.role.value,
            "is_active": user.is_active,
            "open_flags": count,
        }
        for user, count in result.all()
    ]


@router.post("/users/{user_id}/suspend", response_model=MessageResponse)
async def suspend_user(
    user_id: UUID,
    data: AdminSuspendRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate a user account. Admins cannot be suspended."""
    user = await _get_user_or_404(db, user_id)
    if user.role == UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Cannot suspend admin users")
    if not user.is_active:
        raise HTTPException(status_code=409, detail="User is already suspended")

    user.is_active = False
    await _log(db, current_user, "SUSPEND_USER", "User", str(user_id),
               {"reason": data.reason}, request)
    await db.commit()
    logger.info(f"Admin {current_user.id} suspended user {user_id}")
    return MessageResponse(message="User suspended")


@router.post("/users/{user_id}/reactivate", response_model=MessageResponse)
async def reactivate_user(
    user_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Re-activate a suspended user account."""
    user = await _get_user_or_404(db, user_id)
    if user.is_active:
        raise HTTPException(status_code=409, detail="User is not suspended")

    user.is_active = True
    await _log(db, current_user, "REACTIVATE_USER", "User", str(user_id), {}, request)
    await db.commit()
    return MessageResponse(message="User reactivated")


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Hard-delete an account and everything that references it."""
    user = await _get_user_or_404(db, user_id)
    if user.role == UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Cannot delete admin users")

    await _log(db, current_user, "DELETE_USER", "User", str(user_id),
               {"email": user.email, "role": user.role.value}, request)
    await db.delete(user)
    await db.commit()
    logger.info(f"Admin {current_user.id} deleted user {user_id}")
    return MessageResponse(message="User deleted")


# ── Content Removal ────────────────────────────────────────────────────────────

@router.delete("/properties/{property_id}", response_model=MessageResponse)
async def delete_property(
    property_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    prop = await db.scalar(select(Property).where(Property.id == property_id))
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")

    await _log(db, current_user, "DELETE_PROPERTY", "Property", str(property_id),
               {"title": prop.title, "landlord_id": str(prop.landlord_id)}, request)
    await db.delete(prop)
    await db.commit()
    return MessageResponse(message="Property deleted")


@router.delete("/reviews/{review_id}", response_model=MessageResponse)
async def delete_review(
    review_id: UUID,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    review = await db.scalar(select(Review).where(Review.id == review_id))
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")

    await _log(db, current_user, "DELETE_REVIEW", "Review", str(review_id),
               {"property_id": str(review.property_id), "rating": review.rating}, request)
    await db.delete(review)
    await db.commit()
    return MessageResponse(message="Review deleted")


# ── Analytics ─────────────────────────────────────────────────────────────────

@router.get("/analytics", response_model=AdminAnalyticsResponse)
async def get_analytics(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide counts plus the five most-reviewed listings."""
    role_rows = await db.execute(select(User.role, func.count(User.id)).group_by(User.role))
    users_by_role = {role.value: count for role, count in role_rows.all()}

    total_properties = await db.scalar(select(func.count(Property.id)))
    total_viewing_requests = await db.scalar(select(func.count(ViewingRequest.id)))
    pending_viewing_requests = await db.scalar(
        select(func.count(ViewingRequest.id))
        .where(ViewingRequest.status == ViewingRequestStatus.PENDING)
    )
    total_reviews = await db.scalar(select(func.count(Review.id)))
    total_messages = await db.scalar(select(func.count(Message.id)))
    open_flags = await db.scalar(
        select(func.count(AdminFlag.id)).where(AdminFlag.resolved == False)  # noqa: E712
    )

    review_count = func.count(Review.id).label("review_count")
    top_rows = await db.execute(
        select(Property.id, Property.title, review_count, func.avg(Review.rating))
        .outerjoin(Review, Review.property_id == Property.id)
        .group_by(Property.id, Property.title)
        .order_by(review_count.desc(), Property.title)
        .limit(5)
    )

    return AdminAnalyticsResponse(
        total_users=sum(users_by_role.values()),
        users_by_role=users_by_role,
        total_properties=total_properties or 0,
        total_viewing_requests=total_viewing_requests or 0,
        pending_viewing_requests=pending_viewing_requests or 0,
        total_reviews=total_reviews or 0,
        total_messages=total_messages or 0,
        open_flags=open_flags or 0,
        top_listings=[
            TopListing(
                id=pid,
                title=title,
                review_count=count,
                avg_rating=round(float(avg or 0), 2),
            )
            for pid, title, count, avg in top_rows.all()
        ],
    )


# ── Audit Log ─────────────────────────────────────────────────────────────────

@router.get("/audit-logs")
async def get_audit_logs(
    action: str = Query(None, description="Filter by action type e.g. SUSPEND_USER"),
    entity_type: str = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Immutable admin audit log, append-only, never editable."""
    filters = []
    if action:
        filters.append(AdminAuditLog.action == action.upper())
    if entity_type:
        filters.append(AdminAuditLog.entity_type == entity_type)

    total = await db.scalar(select(func.count(AdminAuditLog.id)).where(*filters))
    result = await db.execute(
        select(AdminAuditLog, User)
        .outerjoin(User, User.id == AdminAuditLog.admin_id)
        .where(*filters)
        .order_by(AdminAuditLog.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )

    return {
        "items": [
            {
                "id": str(log.id),
                "admin_name": admin.name if admin else None,
                "admin_email": admin.email if admin else None,
                "action": log.action,
                "entity_type": log.entity_type,
                "entity_id": log.entity_id,
                "payload": log.payload,
                "ip_address": log.ip_address,
                "created_at": log.created_at.isoformat(),
            }
            for log, admin in result.all()
        ],
        "total": total or 0,
        "page": page,
        "page_size": page_size,
    }
