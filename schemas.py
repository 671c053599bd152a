# schemas.py
"""Request bodies and response projections (camelCase on the wire)."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from models import JobStatus, Role, Urgency


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ===== requests =====

class SignupRequest(CamelModel):
    role: Role
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    password: str = Field(..., min_length=6)
    confirm_password: str

    @field_validator("role")
    @classmethod
    def no_admin_signup(cls, v: Role) -> Role:
        if v == Role.ADMIN:
            raise ValueError("role must be requester or provider")
        return v


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class JobCreate(CamelModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    category_id: int = Field(..., gt=0)
    latitude: str
    longitude: str
    address: Optional[str] = None
    urgency: Urgency = Urgency.NORMAL
    preferred_time: Optional[datetime] = None
    photos: List[str] = Field(default_factory=list)

    @field_validator("title", "description")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class JobStatusUpdate(CamelModel):
    status: JobStatus


class MessageCreate(CamelModel):
    job_id: str
    message_text: str = ""
    attachments: Optional[List[str]] = None
    voice_note_url: Optional[str] = None

    @model_validator(mode="after")
    def has_content(self) -> "MessageCreate":
        if not self.message_text.strip() and not self.attachments and not self.voice_note_url:
            raise ValueError("Message cannot be empty")
        return self


class RatingCreate(CamelModel):
    job_id: str
    to_user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=2)
    phone: Optional[str] = None
    bio: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if len(v) < 2:
            raise ValueError("must have at least 2 characters")
        return v


class ProviderProfileUpdate(CamelModel):
    company_name: Optional[str] = None
    service_categories: Optional[List[int]] = None
    service_area_radius_meters: Optional[int] = Field(None, gt=0)
    is_online: Optional[bool] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


# ===== responses =====

class UserOut(CamelModel):
    id: str
    role: str
    name: str
    email: str
    phone: Optional[str] = None
    profile_photo_url: Optional[str] = None
    bio: Optional[str] = None
    is_verified: bool = False
    created_at: datetime
    updated_at: datetime


class ProviderProfileOut(CamelModel):
    user_id: str
    company_name: Optional[str] = None
    service_categories: List[int] = Field(default_factory=list)
    service_area_radius_meters: int
    average_response_time_seconds: Optional[int] = None
    rating_average: float = 0
    completed_jobs_count: int = 0
    is_online: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class MeOut(UserOut):
    provider_profile: Optional[ProviderProfileOut] = None


class AuthResponse(CamelModel):
    user: UserOut
    token: str


class CategoryOut(CamelModel):
    id: int
    name: str
    parent_id: Optional[int] = None
    description: Optional[str] = None
    icon: Optional[str] = None


class JobOut(CamelModel):
    """The one job projection returned by every endpoint that returns a job."""
    id: str
    requester_id: str
    provider_id: Optional[str] = None
    category_id: int
    title: str
    description: str
    photos: List[str] = Field(default_factory=list)
    latitude: str
    longitude: str
    address: Optional[str] = None
    urgency: str
    preferred_time: Optional[datetime] = None
    status: str
    price_agreed: Optional[float] = None
    price_paid: Optional[float] = None
    created_at: datetime
    updated_at: datetime

    requester: Optional[UserOut] = None
    provider: Optional[UserOut] = None
    category: Optional[CategoryOut] = None


class MessageOut(CamelModel):
    id: str
    job_id: str
    sender_id: str
    message_text: str
    attachments: Optional[List[str]] = None
    voice_note_url: Optional[str] = None
    created_at: datetime
    sender: Optional[UserOut] = None


class ConversationOut(CamelModel):
    job_id: str
    job_title: str
    other_user: Optional[UserOut] = None
    last_message: str
    last_message_time: datetime
    unread_count: int = 0


class RatingOut(CamelModel):
    id: str
    job_id: str
    from_user_id: str
    to_user_id: str
    rating: int
    comment: Optional[str] = None
    created_at: datetime
    from_user: Optional[UserOut] = None


class ProviderOut(UserOut):
    provider: ProviderProfileOut
    distance_meters: Optional[float] = None


class ProviderStats(CamelModel):
    total_earnings: float
    completed_jobs: int
    average_rating: float
    avg_response_time: int
