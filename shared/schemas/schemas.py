"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import re
import uuid
import datetime as dt
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AnyHttpUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from shared.models.models import MediaType, RoomType, UserRole, ViewingRequestStatus


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ── Auth ──────────────────────────────────────────────────────

PASSWORD_RULES = [
    (r"[a-z]", "Password must contain at least one lowercase letter"),
    (r"[A-Z]", "Password must contain at least one uppercase letter"),
    (r"\d", "Password must contain at least one number"),
    (r"[!@#$%^&*(),.?\":{}|<>]", "Password must contain at least one special character"),
]


class SignupRequest(BaseSchema):
    email: EmailStr
    password: str
    name: str = Field(..., min_length=2, max_length=255)
    role: Literal["student", "landlord"] = "student"

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters long")
        for pattern, message in PASSWORD_RULES:
            if not re.search(pattern, v):
                raise ValueError(message)
        return v


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenResponse(BaseSchema):
    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    refresh_token: Optional[str] = None


class LoginResponse(TokenResponse):
    user: "UserResponse"


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    id: uuid.UUID
    email: EmailStr
    name: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    role: UserRole
    is_verified: bool
    created_at: datetime


class UserSummary(BaseSchema):
    id: uuid.UUID
    name: str
    email: EmailStr


class UserUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^\+?[1-9]\d{6,14}$")
    avatar_url: Optional[AnyHttpUrl] = None


# ── Property ──────────────────────────────────────────────────

# Largest value a Numeric(10, 2) price column holds
MAX_PRICE = 99_999_999.99

class PropertyMediaCreate(BaseSchema):
    url: AnyHttpUrl
    type: MediaType = MediaType.IMAGE


class PropertyMediaResponse(BaseSchema):
    id: uuid.UUID
    url: str
    type: MediaType
    created_at: datetime


class AvailabilityEntry(BaseSchema):
    date: dt.date
    is_available: bool = True


class AvailabilityResponse(AvailabilityEntry):
    id: uuid.UUID


class PropertyCreateRequest(BaseSchema):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    price: float = Field(..., ge=0, le=MAX_PRICE)
    room_type: RoomType
    location: str = Field(..., min_length=1, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class PropertyUpdateRequest(BaseSchema):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    price: Optional[float] = Field(None, ge=0, le=MAX_PRICE)
    room_type: Optional[RoomType] = None
    location: Optional[str] = Field(None, min_length=1, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class PropertyResponse(BaseSchema):
    id: uuid.UUID
    landlord_id: uuid.UUID
    title: str
    description: Optional[str]
    price: float
    room_type: RoomType
    location: str
    latitude: Optional[float]
    longitude: Optional[float]
    created_at: datetime
    media: List[PropertyMediaResponse] = []


class PropertySearchResponse(BaseSchema):
    items: List[PropertyResponse]
    total: int
    page: int
    page_size: int


# ── Review ────────────────────────────────────────────────────

class ReviewCreateRequest(BaseSchema):
    property_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class ReviewResponse(BaseSchema):
    id: uuid.UUID
    student_id: uuid.UUID
    property_id: uuid.UUID
    rating: int
    comment: Optional[str]
    created_at: datetime
    student_name: Optional[str] = None


class PropertyDetailResponse(PropertyResponse):
    availability: List[AvailabilityResponse] = []
    reviews: List[ReviewResponse] = []


# ── Viewing Requests ──────────────────────────────────────────

class ViewingRequestCreate(BaseSchema):
    property_id: uuid.UUID
    requested_date: datetime
    message: Optional[str] = Field(None, max_length=1000)

    @field_validator("requested_date")
    @classmethod
    def validate_requested_date(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        if v <= datetime.now(timezone.utc):
            raise ValueError("Requested date must be in the future")
        return v


class ViewingRequestDecision(BaseSchema):
    status: Literal["approved", "rejected"]


class ViewingRequestResponse(BaseSchema):
    id: uuid.UUID
    student_id: uuid.UUID
    property_id: uuid.UUID
    requested_date: datetime
    message: Optional[str]
    status: ViewingRequestStatus
    created_at: datetime
    property_title: Optional[str] = None
    student: Optional[UserSummary] = None


# ── Saved Properties ──────────────────────────────────────────

class SavedPropertyResponse(BaseSchema):
    saved_at: datetime
    property: PropertyResponse


# ── Chat ──────────────────────────────────────────────────────

class MessageCreateRequest(BaseSchema):
    recipient_id: uuid.UUID
    content: str = Field(..., min_length=1, max_length=2000)

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message content cannot be blank")
        return v


class ChatMessageResponse(BaseSchema):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    content: str
    sent_at: datetime


class ConversationResponse(BaseSchema):
    id: uuid.UUID
    student: UserSummary
    landlord: UserSummary
    other_party: UserSummary
    last_message_at: datetime
    last_message: Optional[ChatMessageResponse] = None


# ── Moderation ────────────────────────────────────────────────

class FlagCreateRequest(BaseSchema):
    property_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    reason: str = Field(..., min_length=5, max_length=500)

    @model_validator(mode="after")
    def exactly_one_target(self) -> "FlagCreateRequest":
        if (self.property_id is None) == (self.user_id is None):
            raise ValueError("Flag exactly one of property_id or user_id")
        return self


class FlagResponse(BaseSchema):
    id: uuid.UUID
    flagged_by_id: uuid.UUID
    property_id: Optional[uuid.UUID]
    user_id: Optional[uuid.UUID]
    reason: str
    resolved: bool
    created_at: datetime


class AdminSuspendRequest(BaseSchema):
    reason: str = Field(..., min_length=5, max_length=500)


class TopListing(BaseSchema):
    id: uuid.UUID
    title: str
    review_count: int
    avg_rating: float


class AdminAnalyticsResponse(BaseSchema):
    total_users: int
    users_by_role: Dict[str, int]
    total_properties: int
    total_viewing_requests: int
    pending_viewing_requests: int
    total_reviews: int
    total_messages: int
    open_flags: int
    top_listings: List[TopListing]


# ── Generic ───────────────────────────────────────────────────

class MessageResponse(BaseSchema):
    message: str
    success: bool = True


class ErrorResponse(BaseSchema):
    error: str
    details: Optional[List[Dict[str, Any]]] = None
    request_id: Optional[str] = None


LoginResponse.model_rebuild()
