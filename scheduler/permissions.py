"""Role-based access checks for project-scoped operations.

A global ADMIN passes every project check. Everyone else needs a
``ProjectMember`` row whose role is listed for the operation in
``PERMISSIONS``.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Collection, Dict, FrozenSet, Optional, Tuple

from sqlalchemy.orm import Session

from . import crud, models
from .errors import ForbiddenError, NotFoundError, UnauthenticatedError
from .models import Role
from .schemas import SessionUser

logger = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    READ = "read"
    TASK_WRITE = "task_write"
    ISSUE_WRITE = "issue_write"
    MILESTONE_WRITE = "milestone_write"
    PROJECT_WRITE = "project_write"
    MEMBER_MANAGE = "member_manage"


_MANAGERS = frozenset({Role.ADMIN, Role.MANAGER})
_CONTRIBUTORS = frozenset({Role.ADMIN, Role.MANAGER, Role.MEMBER})

PERMISSIONS: Dict[Operation, FrozenSet[Role]] = {
    Operation.READ: frozenset(Role),
    Operation.TASK_WRITE: _CONTRIBUTORS,
    Operation.ISSUE_WRITE: _CONTRIBUTORS,
    Operation.MILESTONE_WRITE: _MANAGERS,
    Operation.PROJECT_WRITE: _MANAGERS,
    Operation.MEMBER_MANAGE: _MANAGERS,
}


@dataclass(frozen=True)
class ProjectAccess:
    user: SessionUser
    role: Role


def require_user(user: Optional[SessionUser]) -> SessionUser:
    if user is None:
        raise UnauthenticatedError()
    return user


def ensure_global_role(user: Optional[SessionUser], allowed_roles: Collection[Role]) -> SessionUser:
    user = require_user(user)
    if user.global_role not in allowed_roles:
        logger.info("User %s with global role %s denied", user.id, user.global_role.value)
        raise ForbiddenError()
    return user


def ensure_project_role(
    db: Session,
    user: Optional[SessionUser],
    project_id: int,
    operation: Operation,
) -> ProjectAccess:
    user = require_user(user)
    if user.global_role == Role.ADMIN:
        return ProjectAccess(user=user, role=Role.ADMIN)

    membership = crud.get_membership(db, project_id, user.id)
    if membership is None or membership.role not in PERMISSIONS[operation]:
        logger.info(
            "User %s denied %s on project %s (role=%s)",
            user.id, operation.value, project_id, membership.role.value if membership else None,
        )
        raise ForbiddenError()
    return ProjectAccess(user=user, role=membership.role)


def require_task_mutation(
    db: Session,
    user: Optional[SessionUser],
    task_id: int,
) -> Tuple[models.Task, Role]:
    """Resolve a task the user may change. A MEMBER may only change tasks they own."""
    user = require_user(user)
    task = crud.get_task(db, task_id)
    if task is None:
        raise NotFoundError("Task not found")

    access = ensure_project_role(db, user, task.project_id, Operation.TASK_WRITE)
    if access.role == Role.MEMBER and task.owner_id != user.id:
        logger.info("Member %s denied mutation of task %s owned by %s", user.id, task_id, task.owner_id)
        raise ForbiddenError()
    return task, access.role


def can_manage_members(role: Role) -> bool:
    return role in (Role.ADMIN, Role.MANAGER)


def require_member_management(db: Session, user: Optional[SessionUser], project_id: int) -> ProjectAccess:
    access = ensure_project_role(db, user, project_id, Operation.MEMBER_MANAGE)
    if not can_manage_members(access.role):
        raise ForbiddenError()
    return access
