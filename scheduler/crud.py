import logging
import math
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from passlib.hash import bcrypt
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import NotFoundError, ValidationError
from .models import Role
from .task_dates import recalc_task_end_date

logger = logging.getLogger(__name__)


# USERS

def create_user(db: Session, user: schemas.UserCreate):
    """Register a user, or set the password of one that was invited by e-mail."""
    hashed = bcrypt.hash(user.password)
    db_user = get_user_by_email(db, user.email)
    if db_user is None:
        db_user = models.User(email=user.email, name=user.name, hashed_password=hashed, global_role=Role.MEMBER)
        db.add(db_user)
    else:
        db_user.hashed_password = hashed
        if user.name:
            db_user.name = user.name
    db.commit()
    db.refresh(db_user)
    logger.info("Registered user %s", db_user.id)
    return db_user

def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == email).first()

def get_user_by_id(db: Session, user_id: int):
    return db.query(models.User).filter(models.User.id == user_id).first()

def _upsert_user_by_email(db: Session, email: str, name: Optional[str]):
    user = get_user_by_email(db, email)
    if user is None:
        user = models.User(email=email, name=name, global_role=Role.MEMBER)
        db.add(user)
        db.flush()
    elif name:
        user.name = name
    return user


# AUDIT

def write_audit(db: Session, project_id: int, actor_id: Optional[int], entity_type: str, entity_id: int,
                action: str, payload: Optional[Dict[str, Any]] = None):
    entry = models.AuditLog(
        project_id=project_id,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        payload=payload,
    )
    db.add(entry)
    return entry

def get_audit_logs(db: Session, project_id: int, skip: int = 0, limit: int = 50):
    return (
        db.query(models.AuditLog)
        .filter(models.AuditLog.project_id == project_id)
        .order_by(models.AuditLog.created_at.desc(), models.AuditLog.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


# PROJECTS

def create_project(db: Session, project: schemas.ProjectCreate, creator_id: int):
    db_project = models.Project(**project.model_dump(), created_by_id=creator_id)
    db_project.members.append(models.ProjectMember(user_id=creator_id, role=Role.ADMIN))
    db.add(db_project)
    db.commit()
    db.refresh(db_project)
    logger.info("Project %s created by user %s", db_project.id, creator_id)
    return db_project

def get_user_memberships(db: Session, user_id: int):
    return (
        db.query(models.ProjectMember)
        .join(models.Project)
        .filter(models.ProjectMember.user_id == user_id)
        .order_by(models.Project.created_at.desc(), models.Project.id.desc())
        .all()
    )

def get_project(db: Session, project_id: int):
    return db.query(models.Project).filter(models.Project.id == project_id).first()

def update_project(db: Session, project: models.Project, project_update: schemas.ProjectUpdate):
    for field, value in project_update.model_dump(exclude_unset=True).items():
        setattr(project, field, value)
    db.commit()
    db.refresh(project)
    return project

def delete_project(db: Session, project: models.Project):
    db.delete(project)
    db.commit()
    logger.info("Project %s deleted", project.id)

def get_project_summary(project: models.Project, today: date) -> schemas.ProjectSummary:
    tasks = project.tasks
    milestones = sorted(project.milestones, key=lambda milestone: milestone.date)
    upcoming = [milestone for milestone in milestones if milestone.date >= today]
    average = math.floor(sum(task.progress for task in tasks) / len(tasks) + 0.5) if tasks else 0
    return schemas.ProjectSummary(
        project_id=project.id,
        task_count=len(tasks),
        completed_count=sum(1 for task in tasks if task.progress >= 100),
        average_progress=average,
        milestone_count=len(milestones),
        next_milestone=schemas.MilestoneOut.model_validate(upcoming[0]) if upcoming else None,
    )


# MEMBERS

def get_membership(db: Session, project_id: int, user_id: int):
    return db.query(models.ProjectMember).filter(
        models.ProjectMember.project_id == project_id,
        models.ProjectMember.user_id == user_id,
    ).first()

def get_members(db: Session, project_id: int):
    return db.query(models.ProjectMember).filter(models.ProjectMember.project_id == project_id).all()

def upsert_member(db: Session, project_id: int, member: schemas.MemberUpsert, actor_id: int):
    invitee = _upsert_user_by_email(db, member.email, member.name)
    membership = get_membership(db, project_id, invitee.id)
    if membership is None:
        membership = models.ProjectMember(project_id=project_id, user_id=invitee.id, role=member.role)
        db.add(membership)
    else:
        membership.role = member.role
    db.flush()
    write_audit(db, project_id, actor_id, "PROJECT_MEMBER", membership.id, "UPSERT",
                {"email": invitee.email, "role": member.role.value})
    db.commit()
    db.refresh(membership)
    logger.info("User %s is now %s on project %s", invitee.id, member.role.value, project_id)
    return membership

def remove_member(db: Session, project_id: int, user_id: int, actor_id: int):
    membership = get_membership(db, project_id, user_id)
    if membership is None:
        raise NotFoundError("Member not found")
    db.delete(membership)
    write_audit(db, project_id, actor_id, "PROJECT_MEMBER", user_id, "REMOVED")
    db.commit()
    logger.info("User %s removed from project %s", user_id, project_id)


# TASKS

def _validate_task_dates(start_date: date, end_date_original: date):
    if end_date_original < start_date:
        raise ValidationError("End date must be after start date")

def _validate_owner(db: Session, owner_id: Optional[int]):
    if owner_id is not None and get_user_by_id(db, owner_id) is None:
        raise ValidationError("Owner must be an existing user")

def _validate_parent(db: Session, project_id: int, parent_task_id: Optional[int], task_id: Optional[int] = None):
    if parent_task_id is None:
        return
    parent = get_task(db, parent_task_id)
    if parent is None or parent.project_id != project_id:
        raise ValidationError("Parent task must exist within the same project")
    if task_id is None:
        return
    # walk up from the new parent; meeting the task itself means a cycle
    seen = set()
    current = parent
    while current is not None and current.id not in seen:
        if current.id == task_id:
            raise ValidationError("Parent task would make the task its own ancestor")
        seen.add(current.id)
        current = current.parent

def create_task(db: Session, task: schemas.TaskCreate, actor_id: Optional[int]):
    _validate_task_dates(task.start_date, task.end_date_original)
    _validate_parent(db, task.project_id, task.parent_task_id)
    _validate_owner(db, task.owner_id)

    # end_date_final is filled in by recalc_task_end_date below
    db_task = models.Task(**task.model_dump(), end_date_final=task.end_date_original)
    db.add(db_task)
    db.flush()
    recalc_task_end_date(db, db_task.id)
    write_audit(db, task.project_id, actor_id, "TASK", db_task.id, "CREATED",
                {"title": db_task.title, "owner_id": db_task.owner_id})
    db.commit()
    db.refresh(db_task)
    logger.info("Task %s created in project %s", db_task.id, task.project_id)
    return db_task

def get_tasks_filtered(db: Session, user_id: int, skip: int = 0, limit: int = 100, project_id=None,
                       priority=None, owner_id=None):
    q = db.query(models.Task)
    if project_id:
        q = q.filter(models.Task.project_id == project_id)
    else:
        member_projects = db.query(models.ProjectMember.project_id).filter(models.ProjectMember.user_id == user_id)
        q = q.filter(models.Task.project_id.in_(member_projects))
    if priority is not None:
        q = q.filter(models.Task.priority == priority)
    if owner_id is not None:
        q = q.filter(models.Task.owner_id == owner_id)
    return q.order_by(models.Task.start_date.asc(), models.Task.id.asc()).offset(skip).limit(limit).all()

def get_task(db: Session, task_id: int):
    return db.query(models.Task).filter(models.Task.id == task_id).first()

def update_task(db: Session, task: models.Task, task_update: schemas.TaskUpdate, actor_id: Optional[int]):
    changes = task_update.model_dump(exclude_unset=True)
    _validate_task_dates(changes.get("start_date", task.start_date),
                         changes.get("end_date_original", task.end_date_original))
    if "parent_task_id" in changes:
        _validate_parent(db, task.project_id, changes["parent_task_id"], task.id)
    if "owner_id" in changes:
        _validate_owner(db, changes["owner_id"])

    for field, value in changes.items():
        setattr(task, field, value)
    db.flush()
    recalc_task_end_date(db, task.id)
    write_audit(db, task.project_id, actor_id, "TASK", task.id, "UPDATED",
                task_update.model_dump(mode="json", exclude_unset=True))
    db.commit()
    db.refresh(task)
    return task

def delete_task(db: Session, task: models.Task, actor_id: Optional[int]):
    task_id, project_id = task.id, task.project_id
    db.query(models.Task).filter(models.Task.parent_task_id == task_id).update({"parent_task_id": None})
    db.query(models.Milestone).filter(models.Milestone.related_task_id == task_id).update({"related_task_id": None})
    db.delete(task)
    write_audit(db, project_id, actor_id, "TASK", task_id, "DELETED")
    db.commit()
    logger.info("Task %s deleted from project %s", task_id, project_id)


# ISSUES

def get_issue(db: Session, issue_id: int):
    return db.query(models.Issue).filter(models.Issue.id == issue_id).first()

def get_issues_filtered(db: Session, user_id: int, task_id=None, project_id=None):
    q = db.query(models.Issue)
    if task_id:
        q = q.filter(models.Issue.task_id == task_id)
    elif project_id:
        q = q.join(models.Task).filter(models.Task.project_id == project_id)
    else:
        member_projects = db.query(models.ProjectMember.project_id).filter(models.ProjectMember.user_id == user_id)
        q = q.join(models.Task).filter(models.Task.project_id.in_(member_projects))
    return q.order_by(models.Issue.start_date.desc(), models.Issue.id.desc()).all()

def create_issue(db: Session, issue: schemas.IssueCreate, task: models.Task,
                 actor_id: Optional[int]) -> Tuple[models.Issue, models.Task]:
    db_issue = models.Issue(**issue.model_dump(), created_by_id=actor_id)
    db.add(db_issue)
    db.flush()
    updated_task = recalc_task_end_date(db, task.id)
    write_audit(db, task.project_id, actor_id, "ISSUE", db_issue.id, "CREATED",
                {"duration_days": issue.duration_days, "task_id": task.id})
    db.commit()
    db.refresh(db_issue)
    db.refresh(updated_task)
    logger.info("Issue %s delays task %s by %s day(s)", db_issue.id, task.id, issue.duration_days)
    return db_issue, updated_task

def update_issue(db: Session, issue: models.Issue, issue_update: schemas.IssueUpdate, actor_id: Optional[int]):
    for field, value in issue_update.model_dump(exclude_unset=True).items():
        setattr(issue, field, value)
    db.flush()
    updated_task = recalc_task_end_date(db, issue.task_id)
    write_audit(db, updated_task.project_id, actor_id, "ISSUE", issue.id, "UPDATED",
                issue_update.model_dump(mode="json", exclude_unset=True))
    db.commit()
    db.refresh(issue)
    db.refresh(updated_task)
    return updated_task

def delete_issue(db: Session, issue: models.Issue, actor_id: Optional[int]):
    issue_id, task_id = issue.id, issue.task_id
    db.delete(issue)
    db.flush()
    updated_task = recalc_task_end_date(db, task_id)
    write_audit(db, updated_task.project_id, actor_id, "ISSUE", issue_id, "DELETED")
    db.commit()
    db.refresh(updated_task)
    logger.info("Issue %s deleted; task %s recalculated", issue_id, task_id)
    return updated_task


# MILESTONES

def _validate_related_task(db: Session, project_id: int, related_task_id: Optional[int]):
    if related_task_id is None:
        return
    task = get_task(db, related_task_id)
    if task is None or task.project_id != project_id:
        raise ValidationError("Related task must exist within the same project")

def get_milestone(db: Session, milestone_id: int):
    return db.query(models.Milestone).filter(models.Milestone.id == milestone_id).first()

def get_milestones(db: Session, project_id: int) -> List[models.Milestone]:
    return (
        db.query(models.Milestone)
        .filter(models.Milestone.project_id == project_id)
        .order_by(models.Milestone.date.asc(), models.Milestone.id.asc())
        .all()
    )

def create_milestone(db: Session, milestone: schemas.MilestoneCreate, actor_id: Optional[int]):
    _validate_related_task(db, milestone.project_id, milestone.related_task_id)
    db_milestone = models.Milestone(**milestone.model_dump())
    db.add(db_milestone)
    db.flush()
    write_audit(db, milestone.project_id, actor_id, "MILESTONE", db_milestone.id, "CREATED",
                milestone.model_dump(mode="json"))
    db.commit()
    db.refresh(db_milestone)
    return db_milestone

def update_milestone(db: Session, milestone: models.Milestone, milestone_update: schemas.MilestoneUpdate,
                     actor_id: Optional[int]):
    changes = milestone_update.model_dump(exclude_unset=True)
    if "related_task_id" in changes:
        _validate_related_task(db, milestone.project_id, changes["related_task_id"])
    for field, value in changes.items():
        setattr(milestone, field, value)
    write_audit(db, milestone.project_id, actor_id, "MILESTONE", milestone.id, "UPDATED",
                milestone_update.model_dump(mode="json", exclude_unset=True))
    db.commit()
    db.refresh(milestone)
    return milestone

def delete_milestone(db: Session, milestone: models.Milestone, actor_id: Optional[int]):
    write_audit(db, milestone.project_id, actor_id, "MILESTONE", milestone.id, "DELETED")
    db.delete(milestone)
    db.commit()
