# app.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import lifecycle
import messaging
import providers
from auth import create_token, current_user, hash_password, verify_password
from config import SEED_CATEGORIES, configure_logging
from db import engine, get_session
from errors import AppError, InvalidCredentials, NotFound, ValidationFailed
from models import Base, Category, Role, User
from policy import authorize
from relay import ChatRelay, LocalRelay, store_message
from schemas import (
    AuthResponse,
    CategoryOut,
    ConversationOut,
    JobCreate,
    JobOut,
    JobStatusUpdate,
    LoginRequest,
    MeOut,
    MessageCreate,
    MessageOut,
    ProfileUpdate,
    ProviderOut,
    ProviderProfileOut,
    ProviderProfileUpdate,
    ProviderStats,
    RatingCreate,
    RatingOut,
    SignupRequest,
    UserOut,
)
from seed import seed_categories

logger = logging.getLogger(__name__)

app = FastAPI(title="JobTradeSasa")

chat = ChatRelay(LocalRelay())


@app.on_event("startup")
def on_startup() -> None:
    configure_logging()
    # Auto-create tables on startup
    Base.metadata.create_all(bind=engine)
    if SEED_CATEGORIES:
        seed_categories()


# ===== error rendering: {message, errors?} =====

def _field_path(loc) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or "body"


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [{"path": _field_path(e.get("loc", ())), "message": e.get("msg", "")} for e in exc.errors()]
    return JSONResponse({"message": "Validation failed", "errors": errors}, status_code=400)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"message": "Internal server error"}, status_code=500)


# ===== auth =====

@app.post("/api/auth/signup", response_model=AuthResponse)
def signup(body: SignupRequest):
    if body.password != body.confirm_password:
        raise ValidationFailed(
            "Passwords do not match.",
            errors=[{"path": "confirmPassword", "message": "Passwords do not match."}],
        )

    email_clean = body.email.strip().lower()

    with get_session() as s:
        exists = s.scalar(select(User).where(User.email == email_clean))
        if exists:
            raise ValidationFailed("User already exists")

        u = User(
            role=body.role.value,
            name=body.name.strip(),
            email=email_clean,
            phone=(body.phone or "").strip() or None,
            password_hash=hash_password(body.password),
        )
        s.add(u)
        try:
            s.flush()
            # provider profile is created with the account
            if u.role == Role.PROVIDER.value:
                s.add(providers.new_provider_profile(u))
            s.commit()
        except IntegrityError:
            # a concurrent signup took the email between the check and the insert
            s.rollback()
            raise ValidationFailed("User already exists")
        s.refresh(u)
        return AuthResponse(user=UserOut.model_validate(u), token=create_token(u))


@app.post("/api/auth/login", response_model=AuthResponse)
def login(body: LoginRequest):
    email_clean = body.email.strip().lower()
    with get_session() as s:
        u = s.scalar(select(User).where(User.email == email_clean))
        if (not u) or (not verify_password(body.password, u.password_hash)):
            raise InvalidCredentials()
        return AuthResponse(user=UserOut.model_validate(u), token=create_token(u))


# ===== profile =====

@app.get("/api/profile", response_model=MeOut)
def get_profile(user: User = Depends(current_user)):
    with get_session() as s:
        u = s.get(User, user.id)
        return MeOut(
            **UserOut.model_validate(u).model_dump(),
            provider_profile=ProviderProfileOut.model_validate(u.provider_profile) if u.provider_profile else None,
        )


@app.patch("/api/profile", response_model=UserOut)
def update_profile(body: ProfileUpdate, user: User = Depends(current_user)):
    changes = body.model_dump(exclude_unset=True)
    with get_session() as s:
        u = s.get(User, user.id)
        if not u:
            raise NotFound("User not found")
        if changes.get("name") is not None:
            u.name = changes["name"]
        if "phone" in changes:
            u.phone = (changes["phone"] or "").strip() or None
        if "bio" in changes:
            u.bio = (changes["bio"] or "").strip() or None
        u.updated_at = datetime.utcnow()
        s.commit()
        s.refresh(u)
        return UserOut.model_validate(u)


# ===== jobs =====

@app.get("/api/jobs", response_model=List[JobOut])
def jobs_list(
    category: Optional[str] = None,
    status: Optional[str] = None,
    sort: str = "recent",
    requester_id: Optional[str] = Query(None, alias="requesterId"),
    provider_id: Optional[str] = Query(None, alias="providerId"),
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    user: User = Depends(current_user),
):
    with get_session() as s:
        jobs = lifecycle.list_jobs(
            s,
            user,
            category=category,
            status=status,
            requester_id=requester_id,
            provider_id=provider_id,
            sort=sort,
            latitude=latitude,
            longitude=longitude,
        )
        return [JobOut.model_validate(j) for j in jobs]


@app.get("/api/jobs/{job_id}", response_model=JobOut)
def job_detail(job_id: str, user: User = Depends(current_user)):
    with get_session() as s:
        return JobOut.model_validate(lifecycle.view_job(s, user, job_id))


@app.post("/api/jobs", response_model=JobOut, status_code=201)
def post_job(body: JobCreate, user: User = Depends(current_user)):
    with get_session() as s:
        return JobOut.model_validate(lifecycle.create_job(s, user, body))


@app.patch("/api/jobs/{job_id}", response_model=JobOut)
def update_job_status(job_id: str, body: JobStatusUpdate, user: User = Depends(current_user)):
    with get_session() as s:
        return JobOut.model_validate(lifecycle.change_status(s, user, job_id, body.status))


@app.post("/api/jobs/{job_id}/accept", response_model=JobOut)
def accept_job(job_id: str, user: User = Depends(current_user)):
    with get_session() as s:
        return JobOut.model_validate(lifecycle.accept_job(s, user, job_id))


# ===== providers =====

@app.get("/api/providers", response_model=List[ProviderOut])
def providers_search(
    category_id: Optional[int] = Query(None, alias="categoryId"),
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: Optional[int] = Query(None, gt=0),
    user: User = Depends(current_user),
):
    with get_session() as s:
        return providers.search_providers(
            s, category_id=category_id, latitude=latitude, longitude=longitude, radius=radius
        )


@app.patch("/api/provider/profile", response_model=ProviderProfileOut)
def provider_profile_save(body: ProviderProfileUpdate, user: User = Depends(current_user)):
    with get_session() as s:
        return ProviderProfileOut.model_validate(providers.update_provider_profile(s, user, body))


@app.get("/api/provider/stats", response_model=ProviderStats)
def provider_stats(user: User = Depends(current_user)):
    with get_session() as s:
        return providers.provider_stats(s, user)


@app.get("/api/provider/recent-jobs", response_model=List[JobOut])
def provider_recent_jobs(user: User = Depends(current_user)):
    authorize(user, "provider.dashboard")
    with get_session() as s:
        jobs = lifecycle.list_jobs(s, user, provider_id=user.id, limit=10)
        return [JobOut.model_validate(j) for j in jobs]


# ===== messages =====

@app.get("/api/messages/conversations", response_model=List[ConversationOut])
def conversations(user: User = Depends(current_user)):
    with get_session() as s:
        return messaging.conversations(s, user)


@app.get("/api/messages/{job_id}", response_model=List[MessageOut])
def message_history(job_id: str, user: User = Depends(current_user)):
    with get_session() as s:
        return [MessageOut.model_validate(m) for m in messaging.history(s, user, job_id)]


@app.post("/api/messages", response_model=MessageOut, status_code=201)
async def send_message(body: MessageCreate, user: User = Depends(current_user)):
    stored, other = await run_in_threadpool(store_message, user, body)
    await chat.deliver(other, stored)
    return stored


@app.websocket("/ws")
async def chat_socket(ws: WebSocket):
    await chat.serve(ws)


# ===== categories =====

@app.get("/api/categories", response_model=List[CategoryOut])
def categories():
    with get_session() as s:
        return [CategoryOut.model_validate(c) for c in s.scalars(select(Category).order_by(Category.id)).all()]


# ===== ratings =====

@app.post("/api/ratings", response_model=RatingOut, status_code=201)
def create_rating(body: RatingCreate, user: User = Depends(current_user)):
    with get_session() as s:
        return RatingOut.model_validate(providers.submit_rating(s, user, body))


@app.get("/api/ratings/{provider_id}", response_model=List[RatingOut])
def ratings_for_provider(provider_id: str, user: User = Depends(current_user)):
    with get_session() as s:
        return [RatingOut.model_validate(r) for r in providers.provider_ratings(s, provider_id)]
