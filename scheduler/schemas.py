import datetime as dt
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import Priority, Role


def _reject_null(value):
    # PATCH bodies may omit a required column but never null it
    if value is None:
        raise ValueError("may be omitted but not null")
    return value


# USERS / SESSION

class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: Optional[str] = None


class UserOut(BaseModel):
    id: int
    email: EmailStr
    name: Optional[str] = None
    global_role: Role
    class Config:
        from_attributes = True


class SessionUser(BaseModel):
    """The identity a request acts as."""
    id: int
    email: str
    name: Optional[str] = None
    global_role: Role
    class Config:
        from_attributes = True


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


# TASKS

class TaskBase(BaseModel):
    title: str = Field(min_length=3)
    description: Optional[str] = None
    start_date: date
    end_date_original: date
    delay_days: int = Field(default=0, ge=0)
    progress: int = Field(default=0, ge=0, le=100)
    priority: Priority = Priority.MEDIUM
    owner_id: Optional[int] = None
    parent_task_id: Optional[int] = None


class TaskCreate(TaskBase):
    project_id: int


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date_original: Optional[date] = None
    delay_days: Optional[int] = Field(default=None, ge=0)
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    priority: Optional[Priority] = None
    owner_id: Optional[int] = None
    parent_task_id: Optional[int] = None

    @field_validator("title", "start_date", "end_date_original", "delay_days", "progress", "priority")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class TaskOut(TaskBase):
    id: int
    project_id: int
    end_date_final: date
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    class Config:
        from_attributes = True


# ISSUES

class IssueCreate(BaseModel):
    task_id: int
    title: str = Field(min_length=3)
    start_date: date
    duration_days: int = Field(ge=1)
    description: Optional[str] = None


class IssueUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=3)
    start_date: Optional[date] = None
    duration_days: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None

    @field_validator("title", "start_date", "duration_days")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class IssueOut(BaseModel):
    id: int
    task_id: int
    title: str
    start_date: date
    duration_days: int
    description: Optional[str] = None
    created_by_id: Optional[int] = None
    class Config:
        from_attributes = True


class IssueMutationOut(BaseModel):
    issue: Optional[IssueOut] = None
    task: TaskOut


# MILESTONES

class MilestoneCreate(BaseModel):
    project_id: int
    name: str = Field(min_length=2)
    date: dt.date
    related_task_id: Optional[int] = None


class MilestoneUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    date: Optional[dt.date] = None
    related_task_id: Optional[int] = None

    @field_validator("name", "date")
    @classmethod
    def not_null(cls, value):
        return _reject_null(value)


class MilestoneOut(BaseModel):
    id: int
    project_id: int
    name: str
    date: dt.date
    related_task_id: Optional[int] = None
    class Config:
        from_attributes = True


# PROJECTS / MEMBERS

class ProjectBase(BaseModel):
    name: str = Field(min_length=3)
    description: Optional[str] = None
    start_date: date
    end_date_target: Optional[date] = None


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3)
    description: Optional[str] = None
    start_date: Optional[date] = None
    end_date_target: Optional[date] = None


class MemberUpsert(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    role: Role = Role.MEMBER


class MemberOut(BaseModel):
    id: int
    project_id: int
    user_id: int
    role: Role
    user: Optional[UserOut] = None
    class Config:
        from_attributes = True


class ProjectOut(ProjectBase):
    id: int
    created_by_id: Optional[int] = None
    members: List[MemberOut] = []
    tasks: List[TaskOut] = []
    milestones: List[MilestoneOut] = []
    class Config:
        from_attributes = True


class ProjectListItem(ProjectBase):
    id: int
    role: Role


class ProjectSummary(BaseModel):
    project_id: int
    task_count: int
    completed_count: int
    average_progress: int
    milestone_count: int
    next_milestone: Optional[MilestoneOut] = None


class AuditLogOut(BaseModel):
    id: int
    project_id: int
    actor_id: Optional[int] = None
    entity_type: str
    entity_id: int
    action: str
    payload: Optional[Dict[str, Any]] = None
    created_at: datetime
    class Config:
        from_attributes = True


# SCHEDULE ANALYTICS

class PhaseTask(BaseModel):
    id: str
    name: str
    start: str
    end: str
    dependencies: Optional[List[str]] = None
    resources: Optional[List[str]] = None
    crew_size: Optional[int] = None
    percent_complete: Optional[int] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = None


class ScheduleTask(PhaseTask):
    phase: str


class SchedulePhase(BaseModel):
    name: str
    tasks: List[PhaseTask] = []


class ConstructionSchedule(BaseModel):
    project: str
    baseline_start: str
    baseline_end: str
    timezone: str = "UTC"
    phases: List[SchedulePhase] = []


class PhaseSummary(BaseModel):
    start: str
    end: str
    duration_days: int
    task_count: int


class TimelineSummary(BaseModel):
    project_start: str = ""
    project_end: str = ""
    total_duration_days: int = 0
    phase_summaries: Dict[str, PhaseSummary] = {}


class Overlap(BaseModel):
    task_a: ScheduleTask
    task_b: ScheduleTask
    overlap_days: int
    shared_resources: List[str]


class ProgressSnapshot(BaseModel):
    overall: int
    by_phase: Dict[str, int]


class ScheduleAlert(BaseModel):
    task_id: str
    task_name: str
    type: Literal["start", "deadline"]
    due_in_days: int


class GanttDatasetItem(BaseModel):
    id: str
    name: str
    start: str
    end: str
    progress: int
    dependencies: str


class ResourceRecommendation(BaseModel):
    resource: str
    tasks: Tuple[str, str]
    overlap_days: int
    recommendation: str


class ScheduleReport(BaseModel):
    schedule: Optional[ConstructionSchedule] = None
    tasks: List[ScheduleTask]
    timeline: TimelineSummary
    overlaps: List[Overlap]
    progress: ProgressSnapshot
    alerts: List[ScheduleAlert]
    csv: str
    gantt: List[GanttDatasetItem]
    resource_recommendations: List[ResourceRecommendation]
