"""
services/viewing_request/router.py
Viewing appointments: students request, landlords approve or reject.

State machine:
    PENDING → APPROVED
    PENDING → REJECTED
Either party may cancel (delete) a request at any point.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from config.settings import settings
from shared.middleware.auth import get_current_user, require_landlord, require_student
from shared.middleware.policy import viewing_request_policy
from shared.models.models import Property, User, UserRole, ViewingRequest, ViewingRequestStatus
from shared.schemas.schemas import (
    MessageResponse,
    UserSummary,
    ViewingRequestCreate,
    ViewingRequestDecision,
    ViewingRequestResponse,
)
from tasks.notification_tasks import enqueue, notify_viewing_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/viewing-requests", tags=["Viewing Requests"])


def _to_response(request: ViewingRequest, prop: Property, student: User) -> ViewingRequestResponse:
    return ViewingRequestResponse(
        id=request.id,
        student_id=request.student_id,
        property_id=request.property_id,
        requested_date=request.requested_date,
        message=request.message,
        status=request.status,
        created_at=request.created_at,
        property_title=prop.title,
        student=UserSummary.model_validate(student),
    )


@router.post("", response_model=ViewingRequestResponse, status_code=status.HTTP_201_CREATED)
async def create_viewing_request(
    data: ViewingRequestCreate,
    current_user: User = Depends(require_student),
    db: AsyncSession = Depends(get_db),
):
    """Book a viewing slot. The landlord is notified by email."""
    result = await db.execute(select(Property).where(Property.id == data.property_id))
    prop = result.scalar_one_or_none()
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")

    request = ViewingRequest(
        student_id=current_user.id,
        property_id=prop.id,
        requested_date=data.requested_date,
        message=data.message,
        status=ViewingRequestStatus.PENDING,
    )
    db.add(request)
    await db.commit()
    await db.refresh(request)

    enqueue(notify_viewing_request, str(request.id), "created")
    logger.info(f"Viewing request {request.id} created for property {prop.id}")

    return _to_response(request, prop, current_user)


@router.get("", response_model=list[ViewingRequestResponse])
async def list_viewing_requests(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Landlords see requests on the properties they own; students see their own.
    Ordered by requested date, soonest first.
    """
    query = select(ViewingRequest).execution_options(populate_existing=True).options(
        selectinload(ViewingRequest.property),
        selectinload(ViewingRequest.student),
    )

    if current_user.role == UserRole.LANDLORD:
        query = query.join(Property, Property.id == ViewingRequest.property_id).where(
            Property.landlord_id == current_user.id
        )
    elif current_user.role == UserRole.STUDENT:
        query = query.where(ViewingRequest.student_id == current_user.id)
    else:
        raise HTTPException(status_code=403, detail="Access denied")

    result = await db.execute(
        query.order_by(ViewingRequest.requested_date.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [_to_response(r, r.property, r.student) for r in result.scalars()]


@router.put("/{request_id}", response_model=ViewingRequestResponse)
async def decide_viewing_request(
    request_id: UUID,
    data: ViewingRequestDecision,
    current_user: User = Depends(require_landlord),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject a pending request on one of the caller's properties."""
    request = await viewing_request_policy.authorize(db, request_id, current_user, "decide")

    if request.status != ViewingRequestStatus.PENDING:
        raise HTTPException(
            status_code=409,
            detail=f"Viewing request is already {request.status.value}",
        )

    request.status = ViewingRequestStatus(data.status)
    await db.commit()

    enqueue(notify_viewing_request, str(request.id), request.status.value)
    return _to_response(request, request.property, request.student)


@router.delete("/{request_id}", response_model=MessageResponse)
async def cancel_viewing_request(
    request_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a request. Allowed for the requesting student and the owning landlord."""
    request = await viewing_request_policy.authorize(db, request_id, current_user, "cancel")
    await db.delete(request)
    await db.commit()
    return MessageResponse(message="Viewing request cancelled")
