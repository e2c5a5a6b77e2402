"""Populate a database with a demo project.

    python -m scheduler.seed
"""
import logging
from datetime import date

from sqlalchemy.orm import Session

from . import crud, models, schemas
from .config import get_settings
from .database import Base, init_db, make_engine, make_session_factory
from .logging_setup import setup_logging

logger = logging.getLogger(__name__)


def seed(db: Session):
    admin = models.User(email="admin@example.com", name="Admin User", global_role=models.Role.ADMIN)
    manager = models.User(email="pm@example.com", name="Project Manager", global_role=models.Role.MANAGER)
    member = models.User(email="member@example.com", name="Team Member", global_role=models.Role.MEMBER)
    db.add_all([admin, manager, member])
    db.commit()

    project = crud.create_project(db, schemas.ProjectCreate(
        name="Alpha Expansion",
        description="Migration of the legacy planner to a multi-tenant system.",
        start_date=date(2025, 1, 1),
        end_date_target=date(2025, 4, 30),
    ), admin.id)
    crud.upsert_member(db, project.id, schemas.MemberUpsert(email=manager.email, role=models.Role.MANAGER), admin.id)
    crud.upsert_member(db, project.id, schemas.MemberUpsert(email=member.email, role=models.Role.MEMBER), admin.id)

    discovery = crud.create_task(db, schemas.TaskCreate(
        project_id=project.id,
        title="Discovery & Requirements",
        description="Interview stakeholders and define scope.",
        start_date=date(2025, 1, 2),
        end_date_original=date(2025, 1, 20),
        delay_days=2,
        owner_id=manager.id,
        progress=80,
        priority=models.Priority.HIGH,
    ), admin.id)
    implementation = crud.create_task(db, schemas.TaskCreate(
        project_id=project.id,
        title="Core Implementation",
        description="Build scheduling engine and Gantt UI.",
        start_date=date(2025, 1, 22),
        end_date_original=date(2025, 3, 1),
        owner_id=member.id,
        progress=25,
        priority=models.Priority.CRITICAL,
        parent_task_id=discovery.id,
    ), admin.id)

    crud.create_milestone(db, schemas.MilestoneCreate(
        project_id=project.id, name="Requirements Sign-off", date=date(2025, 1, 21), related_task_id=discovery.id,
    ), admin.id)
    crud.create_milestone(db, schemas.MilestoneCreate(
        project_id=project.id, name="MVP Complete", date=date(2025, 3, 5), related_task_id=implementation.id,
    ), admin.id)

    crud.create_issue(db, schemas.IssueCreate(
        task_id=implementation.id,
        title="API Contract Change",
        start_date=date(2025, 2, 10),
        duration_days=5,
        description="External dependency pushed a breaking change.",
    ), implementation, manager.id)
    return project


def main():
    settings = get_settings()
    setup_logging(settings.log_level)
    engine = make_engine(settings.database_url)
    Base.metadata.drop_all(bind=engine)
    init_db(engine)
    db = make_session_factory(engine)()
    try:
        project = seed(db)
        logger.info("Seeded project %s into %s", project.id, engine.url.render_as_string(hide_password=True))
    finally:
        db.close()


if __name__ == "__main__":
    main()
