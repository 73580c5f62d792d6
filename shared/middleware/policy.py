"""
shared/middleware/policy.py
Ownership gate applied to every mutation on a user-owned resource.

A ResourcePolicy maps capability names ("manage", "decide", "cancel", "read")
to a lookup returning the user ids allowed to exercise that capability on a
loaded resource. Handlers call `authorize()` instead of writing inline
`if resource.owner_id != user.id` checks.
"""

import uuid
from typing import Any, Callable, Iterable, Mapping, Sequence

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.models.models import Conversation, Property, User, ViewingRequest

OwnerLookup = Callable[[Any], Iterable[uuid.UUID]]


class ResourcePolicy:
    """
    Capability set for one resource type.

    conceal_missing=True answers a missing resource with the same 403 as a
    foreign one, so callers cannot discover ids they do not own.
    """

    def __init__(
        self,
        model: type,
        capabilities: Mapping[str, OwnerLookup],
        *,
        options: Sequence[Any] = (),
        not_found: str = "Resource not found",
        forbidden: str = "Not authorized to access this resource",
        conceal_missing: bool = False,
    ):
        self.model = model
        self.capabilities = dict(capabilities)
        self.options = tuple(options)
        self.not_found = not_found
        self.forbidden = forbidden
        self.conceal_missing = conceal_missing

    def allows(self, resource: Any, user: User, capability: str) -> bool:
        try:
            owners = self.capabilities[capability]
        except KeyError:
            raise ValueError(f"{self.model.__name__} has no capability '{capability}'")
        return user.id in set(owners(resource))

    async def load(self, db: AsyncSession, resource_id: uuid.UUID) -> Any:
        query = (
            select(self.model)
            .where(self.model.id == resource_id)
            .execution_options(populate_existing=True)
        )
        if self.options:
            query = query.options(*self.options)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def authorize(
        self,
        db: AsyncSession,
        resource_id: uuid.UUID,
        user: User,
        capability: str,
    ) -> Any:
        """Load the resource and return it if `user` holds `capability` on it."""
        resource = await self.load(db, resource_id)
        if resource is None:
            if self.conceal_missing:
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=self.forbidden)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=self.not_found)
        if not self.allows(resource, user, capability):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=self.forbidden)
        return resource


# ── Policies ──────────────────────────────────────────────────

property_policy = ResourcePolicy(
    Property,
    {"manage": lambda p: (p.landlord_id,)},
    options=(selectinload(Property.media),),
    forbidden="Unauthorized or property not found",
    conceal_missing=True,
)

viewing_request_policy = ResourcePolicy(
    ViewingRequest,
    {
        "decide": lambda r: (r.property.landlord_id,),
        "cancel": lambda r: (r.student_id, r.property.landlord_id),
    },
    options=(selectinload(ViewingRequest.property), selectinload(ViewingRequest.student)),
    not_found="Viewing request not found",
    forbidden="Not authorized to modify this viewing request",
)

conversation_policy = ResourcePolicy(
    Conversation,
    {"read": lambda c: (c.student_id, c.landlord_id)},
    forbidden="Access denied",
    conceal_missing=True,
)
