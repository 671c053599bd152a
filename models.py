# models.py
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """SQLAlchemy 2.0 declarative base."""
    pass


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    REQUESTER = "requester"
    PROVIDER = "provider"
    ADMIN = "admin"


class Urgency(str, enum.Enum):
    NORMAL = "normal"
    EMERGENCY = "emergency"


class JobStatus(str, enum.Enum):
    OPEN = "open"
    OFFERED = "offered"
    ACCEPTED = "accepted"
    ENROUTE = "enroute"
    ONSITE = "onsite"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # requester / provider / admin
    role: Mapped[str] = mapped_column(String(20), index=True)

    name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str] = mapped_column(String(120), unique=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    profile_photo_url: Mapped[Optional[str]] = mapped_column(String(400), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    provider_profile: Mapped[Optional["ProviderProfile"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        uselist=False,
    )


class ProviderProfile(Base):
    """
    Provider-only extension of a user, created at signup.
    rating_average is recomputed from all received ratings on every new rating.
    """
    __tablename__ = "providers"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    company_name: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    # category ids
    service_categories: Mapped[List[int]] = mapped_column(JSON, default=list)
    service_area_radius_meters: Mapped[int] = mapped_column(Integer, default=10000)
    average_response_time_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rating_average: Mapped[float] = mapped_column(Numeric(3, 2, asdecimal=False), default=0)
    completed_jobs_count: Mapped[int] = mapped_column(Integer, default=0)
    is_online: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    user: Mapped["User"] = relationship(back_populates="provider_profile")


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(80))
    parent_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    requester_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    # stays NULL while the job is open/offered
    provider_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"), index=True)

    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text)
    photos: Mapped[List[str]] = mapped_column(JSON, default=list)

    # decimal strings, as sent by the client
    latitude: Mapped[str] = mapped_column(String(32))
    longitude: Mapped[str] = mapped_column(String(32))
    address: Mapped[Optional[str]] = mapped_column(String(300), nullable=True)

    urgency: Mapped[str] = mapped_column(String(20), default=Urgency.NORMAL.value)
    preferred_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=JobStatus.OPEN.value, index=True)

    price_agreed: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)
    price_paid: Mapped[Optional[float]] = mapped_column(Numeric(10, 2, asdecimal=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    requester: Mapped["User"] = relationship(foreign_keys=[requester_id])
    provider: Mapped[Optional["User"]] = relationship(foreign_keys=[provider_id])
    category: Mapped["Category"] = relationship()


class Message(Base):
    """Append-only: rows are never updated or deleted."""
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), index=True)
    sender_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    message_text: Mapped[str] = mapped_column(Text, default="")
    attachments: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    voice_note_url: Mapped[Optional[str]] = mapped_column(String(400), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    sender: Mapped["User"] = relationship()


class Rating(Base):
    __tablename__ = "ratings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), index=True)
    from_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    to_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    rating: Mapped[int] = mapped_column(Integer)  # 1..5
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    from_user: Mapped["User"] = relationship(foreign_keys=[from_user_id])
