# policy.py
"""Who may do what: action -> allowed roles and required job relation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from errors import PermissionDenied
from models import Job, JobStatus, Role, User

ANY_ROLE = frozenset(r.value for r in Role)


def is_requester(user: User, job: Job) -> bool:
    return job.requester_id == user.id


def is_assigned_provider(user: User, job: Job) -> bool:
    return job.provider_id is not None and job.provider_id == user.id


def is_participant(user: User, job: Job) -> bool:
    return is_requester(user, job) or is_assigned_provider(user, job)


def _open_or_participant(user: User, job: Job) -> bool:
    return job.status == JobStatus.OPEN.value or is_participant(user, job)


@dataclass(frozen=True)
class Rule:
    roles: frozenset
    relation: Optional[Callable[[User, Job], bool]] = None
    admin_bypass: bool = False


RULES: dict[str, Rule] = {
    "job.create": Rule(frozenset({Role.REQUESTER.value})),
    "job.accept": Rule(frozenset({Role.PROVIDER.value})),
    "job.view": Rule(ANY_ROLE, _open_or_participant, admin_bypass=True),
    "job.advance": Rule(frozenset({Role.PROVIDER.value}), is_assigned_provider),
    "job.cancel": Rule(frozenset({Role.REQUESTER.value, Role.PROVIDER.value}), is_participant),
    "message.read": Rule(ANY_ROLE, is_participant, admin_bypass=True),
    "message.send": Rule(ANY_ROLE, is_participant),
    "rating.create": Rule(frozenset({Role.REQUESTER.value}), is_requester),
    "provider.dashboard": Rule(frozenset({Role.PROVIDER.value})),
}


def allowed(user: User, action: str, job: Optional[Job] = None) -> bool:
    rule = RULES[action]
    if rule.admin_bypass and user.role == Role.ADMIN.value:
        return True
    if user.role not in rule.roles:
        return False
    if rule.relation is not None:
        if job is None:
            return False
        return rule.relation(user, job)
    return True


def authorize(user: User, action: str, job: Optional[Job] = None) -> None:
    if not allowed(user, action, job):
        raise PermissionDenied()
