# providers.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session, selectinload

from errors import Conflict, NotFound, ValidationFailed
from geo import haversine_distance
from models import Category, Job, JobStatus, ProviderProfile, Rating, User
from policy import authorize
from schemas import (
    ProviderOut,
    ProviderProfileOut,
    ProviderProfileUpdate,
    ProviderStats,
    RatingCreate,
    UserOut,
)

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_METERS = 10000


def new_provider_profile(user: User) -> ProviderProfile:
    return ProviderProfile(
        user_id=user.id,
        service_categories=[],
        service_area_radius_meters=DEFAULT_RADIUS_METERS,
        rating_average=0,
        completed_jobs_count=0,
        is_online=False,
    )


def get_or_create_provider_profile(s: Session, user: User) -> ProviderProfile:
    prof = s.get(ProviderProfile, user.id)
    if prof:
        return prof
    prof = new_provider_profile(user)
    s.add(prof)
    s.commit()
    s.refresh(prof)
    return prof


def update_provider_profile(s: Session, user: User, data: ProviderProfileUpdate) -> ProviderProfile:
    authorize(user, "provider.dashboard")
    prof = get_or_create_provider_profile(s, user)
    changes = data.model_dump(exclude_unset=True)

    if "service_categories" in changes:
        seen = set()
        cleaned = []
        for cid in changes["service_categories"] or []:
            if cid not in seen:
                cleaned.append(cid)
                seen.add(cid)
        if cleaned:
            known = set(s.scalars(select(Category.id).where(Category.id.in_(cleaned))).all())
            unknown = [cid for cid in cleaned if cid not in known]
            if unknown:
                raise ValidationFailed(
                    errors=[{"path": "serviceCategories", "message": f"Unknown categories: {unknown}"}]
                )
        changes["service_categories"] = cleaned

    if "company_name" in changes:
        changes["company_name"] = (changes["company_name"] or "").strip()[:120] or None

    for field, value in changes.items():
        setattr(prof, field, value)
    s.commit()
    s.refresh(prof)
    return prof


def search_providers(
    s: Session,
    category_id: Optional[int] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    radius: Optional[int] = None,
) -> list[ProviderOut]:
    """Online providers, nearest first when a location is given."""
    profiles = s.scalars(
        select(ProviderProfile)
        .where(ProviderProfile.is_online.is_(True))
        .options(selectinload(ProviderProfile.user))
    ).all()

    located = latitude is not None and longitude is not None
    results = []
    for prof in profiles:
        if category_id is not None and category_id not in (prof.service_categories or []):
            continue

        distance = None
        if located:
            if prof.latitude is None or prof.longitude is None:
                continue
            distance = haversine_distance(latitude, longitude, prof.latitude, prof.longitude)
            if distance > (radius or prof.service_area_radius_meters):
                continue

        results.append(
            ProviderOut(
                **UserOut.model_validate(prof.user).model_dump(),
                provider=ProviderProfileOut.model_validate(prof),
                distance_meters=round(distance, 1) if distance is not None else None,
            )
        )

    if located:
        results.sort(key=lambda p: p.distance_meters)
    return results


def provider_stats(s: Session, user: User) -> ProviderStats:
    authorize(user, "provider.dashboard")
    prof = get_or_create_provider_profile(s, user)

    earnings = s.scalar(
        select(func.coalesce(func.sum(func.coalesce(Job.price_paid, Job.price_agreed, 0)), 0)).where(
            Job.provider_id == user.id,
            Job.status == JobStatus.COMPLETED.value,
        )
    )
    return ProviderStats(
        total_earnings=float(earnings or 0),
        completed_jobs=prof.completed_jobs_count,
        average_rating=round(float(prof.rating_average or 0), 2),
        avg_response_time=(prof.average_response_time_seconds or 0) // 60,
    )


# ===== ratings =====

def submit_rating(s: Session, user: User, data: RatingCreate) -> Rating:
    """
    Store a rating and recompute the provider's average over every rating
    they have received, in one transaction.

    There is no uniqueness per (job, rater): a second rating for the same
    job is stored and counted.
    """
    job = s.get(Job, data.job_id)
    if job is None:
        raise NotFound("Job not found")
    authorize(user, "rating.create", job)

    if job.status != JobStatus.COMPLETED.value:
        raise Conflict("Only completed jobs can be rated")
    if not job.provider_id or data.to_user_id != job.provider_id:
        raise ValidationFailed(errors=[{"path": "toUserId", "message": "Must be the provider assigned to the job"}])

    rating = Rating(
        job_id=job.id,
        from_user_id=user.id,
        to_user_id=data.to_user_id,
        rating=data.rating,
        comment=(data.comment or "").strip() or None,
    )
    s.add(rating)
    s.flush()

    average = s.scalar(select(func.avg(Rating.rating)).where(Rating.to_user_id == data.to_user_id))
    s.execute(
        update(ProviderProfile)
        .where(ProviderProfile.user_id == data.to_user_id)
        .values(rating_average=round(float(average), 2))
        .execution_options(synchronize_session=False)
    )
    s.commit()
    logger.debug("provider %s average now %.2f", data.to_user_id, average)

    return s.scalar(select(Rating).where(Rating.id == rating.id).options(selectinload(Rating.from_user)))


def provider_ratings(s: Session, provider_id: str) -> list[Rating]:
    if s.get(User, provider_id) is None:
        raise NotFound("Provider not found")
    return list(
        s.scalars(
            select(Rating)
            .where(Rating.to_user_id == provider_id)
            .options(selectinload(Rating.from_user))
            .order_by(desc(Rating.created_at))
        ).all()
    )
