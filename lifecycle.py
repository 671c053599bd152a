# lifecycle.py
"""Job creation, listing, accept and status transitions (conditional UPDATEs)."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import case, desc, or_, select, update
from sqlalchemy.orm import Session, selectinload

from errors import Conflict, NotFound, ValidationFailed
from geo import haversine_distance, parse_coord
from models import Category, Job, JobStatus, ProviderProfile, Role, Urgency, User
from policy import authorize
from schemas import JobCreate

logger = logging.getLogger(__name__)

FORWARD = {
    JobStatus.ACCEPTED: JobStatus.ENROUTE,
    JobStatus.ENROUTE: JobStatus.ONSITE,
    JobStatus.ONSITE: JobStatus.COMPLETED,
}
ACCEPTABLE = (JobStatus.OPEN, JobStatus.OFFERED)
TERMINAL = (JobStatus.COMPLETED, JobStatus.CANCELLED)

SORTS = ("recent", "urgent", "distance")

JOB_RELATIONS = (
    selectinload(Job.requester),
    selectinload(Job.provider),
    selectinload(Job.category),
)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    if current in TERMINAL:
        return False
    if target == JobStatus.CANCELLED:
        return True
    return FORWARD.get(current) == target


def get_job(s: Session, job_id: str) -> Job:
    job = s.scalar(select(Job).where(Job.id == job_id).options(*JOB_RELATIONS))
    if job is None:
        raise NotFound("Job not found")
    return job


def view_job(s: Session, user: User, job_id: str) -> Job:
    job = get_job(s, job_id)
    authorize(user, "job.view", job)
    return job


def create_job(s: Session, user: User, data: JobCreate) -> Job:
    authorize(user, "job.create")

    if s.get(Category, data.category_id) is None:
        raise ValidationFailed(errors=[{"path": "categoryId", "message": "Unknown category"}])

    now = datetime.utcnow()
    job = Job(
        requester_id=user.id,
        category_id=data.category_id,
        title=data.title,
        description=data.description,
        photos=list(data.photos),
        latitude=data.latitude.strip(),
        longitude=data.longitude.strip(),
        address=(data.address or "").strip() or None,
        urgency=data.urgency.value,
        preferred_time=data.preferred_time,
        status=JobStatus.OPEN.value,
        created_at=now,
        updated_at=now,
    )
    s.add(job)
    s.commit()
    logger.info("job %s created by %s", job.id, user.id)
    return get_job(s, job.id)


def list_jobs(
    s: Session,
    user: User,
    category: Optional[str] = None,
    status: Optional[str] = None,
    requester_id: Optional[str] = None,
    provider_id: Optional[str] = None,
    sort: str = "recent",
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    limit: Optional[int] = None,
) -> list[Job]:
    q = select(Job).options(*JOB_RELATIONS)

    if user.role != Role.ADMIN.value:
        q = q.where(
            or_(
                Job.status == JobStatus.OPEN.value,
                Job.requester_id == user.id,
                Job.provider_id == user.id,
            )
        )

    if category and category != "all":
        try:
            category_id = int(category)
        except ValueError:
            raise ValidationFailed(errors=[{"path": "category", "message": "Must be a category id"}])
        q = q.where(Job.category_id == category_id)
    if status:
        valid = {st.value for st in JobStatus}
        if status not in valid:
            raise ValidationFailed(errors=[{"path": "status", "message": f"Must be one of {sorted(valid)}"}])
        q = q.where(Job.status == status)
    if requester_id:
        q = q.where(Job.requester_id == requester_id)
    if provider_id:
        q = q.where(Job.provider_id == provider_id)

    if sort not in SORTS:
        raise ValidationFailed(errors=[{"path": "sort", "message": f"Must be one of {list(SORTS)}"}])

    if sort == "urgent":
        emergency_first = case((Job.urgency == Urgency.EMERGENCY.value, 0), else_=1)
        q = q.order_by(emergency_first, desc(Job.created_at))
    else:
        q = q.order_by(desc(Job.created_at))

    if limit:
        q = q.limit(limit)

    jobs = list(s.scalars(q).all())

    if sort == "distance" and latitude is not None and longitude is not None:
        # stable sort keeps recency order among equal/unknown distances
        def distance(job: Job) -> float:
            lat, lng = parse_coord(job.latitude), parse_coord(job.longitude)
            if lat is None or lng is None:
                return float("inf")
            return haversine_distance(latitude, longitude, lat, lng)

        jobs.sort(key=distance)

    return jobs


def accept_job(s: Session, user: User, job_id: str) -> Job:
    authorize(user, "job.accept")

    now = datetime.utcnow()
    result = s.execute(
        update(Job)
        .where(
            Job.id == job_id,
            Job.status.in_([st.value for st in ACCEPTABLE]),
            Job.provider_id.is_(None),
        )
        .values(provider_id=user.id, status=JobStatus.ACCEPTED.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        s.rollback()
        if s.get(Job, job_id) is None:
            raise NotFound("Job not found")
        logger.info("provider %s lost accept on job %s", user.id, job_id)
        raise Conflict("Job already accepted")

    s.commit()
    logger.info("job %s accepted by %s", job_id, user.id)
    return get_job(s, job_id)


def change_status(s: Session, user: User, job_id: str, target: JobStatus) -> Job:
    job = get_job(s, job_id)
    current = JobStatus(job.status)

    if target == JobStatus.CANCELLED:
        authorize(user, "job.cancel", job)
    else:
        authorize(user, "job.advance", job)

    if not can_transition(current, target):
        raise Conflict(f"Cannot move job from {current.value} to {target.value}")

    provider_id = job.provider_id
    result = s.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == current.value)
        .values(status=target.value, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        s.rollback()
        raise Conflict("Job status changed concurrently")

    if target == JobStatus.COMPLETED and provider_id:
        s.execute(
            update(ProviderProfile)
            .where(ProviderProfile.user_id == provider_id)
            .values(completed_jobs_count=ProviderProfile.completed_jobs_count + 1)
            .execution_options(synchronize_session=False)
        )

    s.commit()
    logger.info("job %s moved %s -> %s by %s", job_id, current.value, target.value, user.id)
    return get_job(s, job_id)
