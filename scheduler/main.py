import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, HTTPException, Path, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from . import auth, crud, email_utils, models, schemas
from .auth import get_current_user, get_db, get_settings
from .celery_worker import send_email_async
from .config import Settings
from .config import get_settings as load_settings
from .database import init_db, make_engine, make_session_factory
from .errors import DomainError, ErrorKind, InvalidDateError, NotFoundError
from .logging_setup import setup_logging
from .permissions import (
    Operation,
    ensure_global_role,
    ensure_project_role,
    require_member_management,
    require_task_mutation,
    require_user,
)
from .sample_schedule import CONSTRUCTION_SCHEDULE, SCHEDULE_TASKS
from .schedule_analytics import (
    build_timeline,
    calculate_progress,
    find_overlaps,
    generate_alerts,
    schedule_tasks_from_project,
    suggest_resource_leveling,
    to_csv,
    to_gantt_dataset,
)

logger = logging.getLogger(__name__)

router = APIRouter()

CurrentUser = Optional[schemas.SessionUser]


async def domain_error_handler(request: Request, exc: DomainError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if exc.kind == ErrorKind.UNAUTHENTICATED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind.value},
        headers=headers,
    )


def _get_project_or_404(db: Session, project_id: int) -> models.Project:
    project = crud.get_project(db, project_id)
    if not project:
        raise NotFoundError("Project not found")
    return project

def _parse_reference_date(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise InvalidDateError(f"Invalid reference date '{value}'") from exc

def _schedule_report(tasks: List[schemas.ScheduleTask], reference: datetime, horizon_days: int,
                     resource: Optional[str], schedule: Optional[schemas.ConstructionSchedule] = None):
    horizon_days = max(horizon_days, 0)
    return schemas.ScheduleReport(
        schedule=schedule,
        tasks=tasks,
        timeline=build_timeline(tasks),
        overlaps=find_overlaps(tasks, resource),
        progress=calculate_progress(tasks),
        alerts=generate_alerts(tasks, reference, horizon_days),
        csv=to_csv(tasks),
        gantt=to_gantt_dataset(tasks),
        resource_recommendations=suggest_resource_leveling(tasks, resource),
    )

def _notify_new_owner(db: Session, task: models.Task, previous_owner_id: Optional[int], actor_id: Optional[int]):
    if not task.owner_id or task.owner_id in (previous_owner_id, actor_id):
        return
    owner = crud.get_user_by_id(db, task.owner_id)
    if owner:
        send_email_async.delay(owner.email, "Task Assigned", f"You have been assigned task: {task.title}")


# AUTH
@router.post("/register", response_model=schemas.UserOut)
def register(user: schemas.UserCreate, db: Session = Depends(get_db)):
    existing = crud.get_user_by_email(db, user.email)
    if existing and existing.hashed_password:
        raise HTTPException(status_code=400, detail="Email already registered")
    return crud.create_user(db, user)

@router.post("/login", response_model=schemas.TokenResponse)
def login(payload: schemas.LoginRequest, db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = auth.authenticate_user(db, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = auth.create_access_token(sub=user.email, settings=settings)
    return {"access_token": token, "token_type": "bearer"}

@router.get("/me", response_model=schemas.SessionUser)
def me(current_user: CurrentUser = Depends(get_current_user)):
    return require_user(current_user)


# PROJECTS
@router.post("/projects", response_model=schemas.ProjectOut, status_code=status.HTTP_201_CREATED)
def create_project(project: schemas.ProjectCreate, current_user: CurrentUser = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    user = ensure_global_role(current_user, {models.Role.ADMIN})
    return crud.create_project(db, project, user.id)

@router.get("/projects", response_model=List[schemas.ProjectListItem])
def get_projects(current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    user = require_user(current_user)
    return [
        schemas.ProjectListItem(
            id=membership.project.id,
            name=membership.project.name,
            description=membership.project.description,
            start_date=membership.project.start_date,
            end_date_target=membership.project.end_date_target,
            role=membership.role,
        )
        for membership in crud.get_user_memberships(db, user.id)
    ]

@router.get("/projects/{project_id}", response_model=schemas.ProjectOut)
def get_project_details(
    project_id: int = Path(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    ensure_project_role(db, current_user, project_id, Operation.READ)
    return _get_project_or_404(db, project_id)

@router.patch("/projects/{project_id}", response_model=schemas.ProjectOut)
def update_project(project_id: int, project: schemas.ProjectUpdate, current_user: CurrentUser = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    ensure_project_role(db, current_user, project_id, Operation.PROJECT_WRITE)
    return crud.update_project(db, _get_project_or_404(db, project_id), project)

@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(project_id: int, current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    ensure_project_role(db, current_user, project_id, Operation.PROJECT_WRITE)
    crud.delete_project(db, _get_project_or_404(db, project_id))
    return None

@router.get("/projects/{project_id}/summary", response_model=schemas.ProjectSummary)
def get_project_summary(project_id: int, current_user: CurrentUser = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    ensure_project_role(db, current_user, project_id, Operation.READ)
    project = _get_project_or_404(db, project_id)
    return crud.get_project_summary(project, datetime.now(timezone.utc).date())

@router.get("/projects/{project_id}/schedule", response_model=schemas.ScheduleReport)
def get_project_schedule(project_id: int, horizon_days: int = 3, resource: Optional[str] = None,
                         date: Optional[str] = None, current_user: CurrentUser = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    ensure_project_role(db, current_user, project_id, Operation.READ)
    project = _get_project_or_404(db, project_id)
    tasks = schedule_tasks_from_project(sorted(project.tasks, key=lambda task: (task.start_date, task.id)))
    return _schedule_report(tasks, _parse_reference_date(date), horizon_days, resource)

@router.get("/projects/{project_id}/audit-log", response_model=List[schemas.AuditLogOut])
def get_audit_log(project_id: int, skip: int = 0, limit: int = 50, current_user: CurrentUser = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    ensure_project_role(db, current_user, project_id, Operation.PROJECT_WRITE)
    return crud.get_audit_logs(db, project_id, skip=skip, limit=limit)


# MEMBERS
@router.get("/projects/{project_id}/members", response_model=List[schemas.MemberOut])
def get_members(project_id: int, current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    ensure_project_role(db, current_user, project_id, Operation.READ)
    return crud.get_members(db, project_id)

@router.post("/projects/{project_id}/members", response_model=schemas.MemberOut, status_code=status.HTTP_201_CREATED)
def upsert_member(project_id: int, member: schemas.MemberUpsert, current_user: CurrentUser = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    access = require_member_management(db, current_user, project_id)
    _get_project_or_404(db, project_id)
    return crud.upsert_member(db, project_id, member, access.user.id)

@router.delete("/projects/{project_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(project_id: int, user_id: int, current_user: CurrentUser = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    access = require_member_management(db, current_user, project_id)
    crud.remove_member(db, project_id, user_id, access.user.id)
    return None


# TASKS
@router.post("/tasks", response_model=schemas.TaskOut, status_code=status.HTTP_201_CREATED)
def create_task(task: schemas.TaskCreate, current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    access = ensure_project_role(db, current_user, task.project_id, Operation.TASK_WRITE)
    _get_project_or_404(db, task.project_id)
    created_task = crud.create_task(db, task, access.user.id)
    _notify_new_owner(db, created_task, None, access.user.id)
    return created_task

@router.get("/tasks", response_model=List[schemas.TaskOut])
def get_tasks(project_id: int = None, priority: models.Priority = None, owner_id: int = None,
              skip: int = 0, limit: int = 100,
              current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    user = require_user(current_user)
    if project_id:
        ensure_project_role(db, user, project_id, Operation.READ)
    return crud.get_tasks_filtered(db, user.id, skip=skip, limit=limit, project_id=project_id,
                                   priority=priority, owner_id=owner_id)

@router.get("/tasks/{task_id}", response_model=schemas.TaskOut)
def get_task_details(
    task_id: int = Path(...),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task = crud.get_task(db, task_id)
    if not task:
        raise NotFoundError("Task not found")
    ensure_project_role(db, current_user, task.project_id, Operation.READ)
    return task

@router.patch("/tasks/{task_id}", response_model=schemas.TaskOut)
def update_task(task_id: int, task_update: schemas.TaskUpdate, current_user: CurrentUser = Depends(get_current_user),
                db: Session = Depends(get_db)):
    db_task, _ = require_task_mutation(db, current_user, task_id)
    old_owner_id = db_task.owner_id
    updated = crud.update_task(db, db_task, task_update, current_user.id)
    _notify_new_owner(db, updated, old_owner_id, current_user.id)
    return updated

@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(task_id: int, current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    db_task, _ = require_task_mutation(db, current_user, task_id)
    crud.delete_task(db, db_task, current_user.id)
    return None


# ISSUES
@router.get("/issues", response_model=List[schemas.IssueOut])
def get_issues(task_id: int = None, project_id: int = None, current_user: CurrentUser = Depends(get_current_user),
               db: Session = Depends(get_db)):
    user = require_user(current_user)
    if task_id:
        task = crud.get_task(db, task_id)
        if not task:
            raise NotFoundError("Task not found")
        ensure_project_role(db, user, task.project_id, Operation.READ)
    elif project_id:
        ensure_project_role(db, user, project_id, Operation.READ)
    return crud.get_issues_filtered(db, user.id, task_id=task_id, project_id=project_id)

@router.post("/issues", response_model=schemas.IssueMutationOut, status_code=status.HTTP_201_CREATED)
def create_issue(issue: schemas.IssueCreate, background_tasks: BackgroundTasks,
                 current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db),
                 settings: Settings = Depends(get_settings)):
    task = crud.get_task(db, issue.task_id)
    if not task:
        raise NotFoundError("Task not found")
    access = ensure_project_role(db, current_user, task.project_id, Operation.ISSUE_WRITE)
    db_issue, updated_task = crud.create_issue(db, issue, task, access.user.id)
    if updated_task.owner and updated_task.owner_id != access.user.id:
        email_utils.send_email_background(
            background_tasks, settings, updated_task.owner.email, "Task Delayed",
            f"Issue '{db_issue.title}' moved the end of '{updated_task.title}' to {updated_task.end_date_final}",
        )
    return {"issue": db_issue, "task": updated_task}

@router.patch("/issues/{issue_id}", response_model=schemas.IssueMutationOut)
def update_issue(issue_id: int, issue_update: schemas.IssueUpdate, current_user: CurrentUser = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    issue = crud.get_issue(db, issue_id)
    if not issue:
        raise NotFoundError("Issue not found")
    access = ensure_project_role(db, current_user, issue.task.project_id, Operation.ISSUE_WRITE)
    updated_task = crud.update_issue(db, issue, issue_update, access.user.id)
    return {"issue": issue, "task": updated_task}

@router.delete("/issues/{issue_id}", response_model=schemas.IssueMutationOut)
def delete_issue(issue_id: int, current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    issue = crud.get_issue(db, issue_id)
    if not issue:
        raise NotFoundError("Issue not found")
    access = ensure_project_role(db, current_user, issue.task.project_id, Operation.ISSUE_WRITE)
    updated_task = crud.delete_issue(db, issue, access.user.id)
    return {"task": updated_task}


# MILESTONES
@router.get("/milestones", response_model=List[schemas.MilestoneOut])
def get_milestones(project_id: int, current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    ensure_project_role(db, current_user, project_id, Operation.READ)
    return crud.get_milestones(db, project_id)

@router.post("/milestones", response_model=schemas.MilestoneOut, status_code=status.HTTP_201_CREATED)
def create_milestone(milestone: schemas.MilestoneCreate, current_user: CurrentUser = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    access = ensure_project_role(db, current_user, milestone.project_id, Operation.MILESTONE_WRITE)
    _get_project_or_404(db, milestone.project_id)
    return crud.create_milestone(db, milestone, access.user.id)

@router.patch("/milestones/{milestone_id}", response_model=schemas.MilestoneOut)
def update_milestone(milestone_id: int, milestone_update: schemas.MilestoneUpdate,
                     current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    milestone = crud.get_milestone(db, milestone_id)
    if not milestone:
        raise NotFoundError("Milestone not found")
    access = ensure_project_role(db, current_user, milestone.project_id, Operation.MILESTONE_WRITE)
    return crud.update_milestone(db, milestone, milestone_update, access.user.id)

@router.delete("/milestones/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_milestone(milestone_id: int, current_user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    milestone = crud.get_milestone(db, milestone_id)
    if not milestone:
        raise NotFoundError("Milestone not found")
    access = ensure_project_role(db, current_user, milestone.project_id, Operation.MILESTONE_WRITE)
    crud.delete_milestone(db, milestone, access.user.id)
    return None


# CONSTRUCTION SCHEDULE
@router.get("/construction-schedule", response_model=schemas.ScheduleReport)
def get_construction_schedule(horizon_days: int = 3, resource: Optional[str] = None, date: Optional[str] = None):
    return _schedule_report(SCHEDULE_TASKS, _parse_reference_date(date), horizon_days, resource,
                            schedule=CONSTRUCTION_SCHEDULE)

@router.get("/construction-schedule.csv", response_class=PlainTextResponse)
def get_construction_schedule_csv():
    return PlainTextResponse(to_csv(SCHEDULE_TASKS), media_type="text/csv")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    init_db(engine)

    app = FastAPI(title="Project Scheduler API")
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.add_exception_handler(DomainError, domain_error_handler)
    app.include_router(router)
    logger.info("Scheduler API ready on %s", engine.url.render_as_string(hide_password=True))
    return app


app = create_app()
