# messaging.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import desc, func, or_, select
from sqlalchemy.orm import Session, selectinload

from errors import NotFound
from models import Job, Message, User
from policy import authorize
from schemas import ConversationOut, MessageCreate, UserOut

logger = logging.getLogger(__name__)


def counterpart_id(job: Job, user_id: str) -> Optional[str]:
    """The other participant of a job, or None while no provider is assigned."""
    if job.requester_id == user_id:
        return job.provider_id
    return job.requester_id


def _load_job(s: Session, job_id: str) -> Job:
    job = s.get(Job, job_id)
    if job is None:
        raise NotFound("Job not found")
    return job


def send_message(s: Session, sender: User, data: MessageCreate) -> tuple[Message, Optional[str]]:
    """
    Persist a message and return it with the id of the user it should be
    pushed to. Nothing is written when the job is missing or the sender is
    not a participant.
    """
    job = _load_job(s, data.job_id)
    authorize(sender, "message.send", job)

    msg = Message(
        job_id=job.id,
        sender_id=sender.id,
        message_text=data.message_text.strip(),
        attachments=data.attachments or None,
        voice_note_url=data.voice_note_url,
        created_at=datetime.utcnow(),
    )
    s.add(msg)
    s.commit()

    stored = s.scalar(select(Message).where(Message.id == msg.id).options(selectinload(Message.sender)))
    return stored, counterpart_id(job, sender.id)


def history(s: Session, user: User, job_id: str) -> list[Message]:
    job = _load_job(s, job_id)
    authorize(user, "message.read", job)
    return list(
        s.scalars(
            select(Message)
            .where(Message.job_id == job_id)
            .options(selectinload(Message.sender))
            .order_by(Message.created_at)
        ).all()
    )


def conversations(s: Session, user: User) -> list[ConversationOut]:
    my_jobs = select(Job.id).where(or_(Job.requester_id == user.id, Job.provider_id == user.id))
    ranked = (
        select(
            Message.job_id,
            Message.message_text,
            Message.created_at,
            func.row_number()
            .over(partition_by=Message.job_id, order_by=(desc(Message.created_at), desc(Message.id)))
            .label("rn"),
        )
        .where(Message.job_id.in_(my_jobs))
        .subquery()
    )

    rows = s.execute(
        select(
            Job.id,
            Job.title,
            Job.requester_id,
            Job.provider_id,
            ranked.c.message_text,
            ranked.c.created_at,
        )
        .join(ranked, ranked.c.job_id == Job.id)
        .where(ranked.c.rn == 1)
        .where(or_(Job.requester_id == user.id, Job.provider_id == user.id))
        .order_by(desc(ranked.c.created_at))
    ).all()

    other_ids = set()
    for row in rows:
        other = row.provider_id if row.requester_id == user.id else row.requester_id
        if other:
            other_ids.add(other)

    others: dict[str, User] = {}
    if other_ids:
        others = {u.id: u for u in s.scalars(select(User).where(User.id.in_(other_ids))).all()}

    out = []
    for row in rows:
        other = row.provider_id if row.requester_id == user.id else row.requester_id
        other_user = others.get(other) if other else None
        out.append(
            ConversationOut(
                job_id=row.id,
                job_title=row.title,
                other_user=UserOut.model_validate(other_user) if other_user else None,
                last_message=row.message_text,
                last_message_time=row.created_at,
                unread_count=0,
            )
        )
    return out
