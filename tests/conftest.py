"""Shared fixtures: an in-memory app per test and helpers to act as a user."""
import os

# must be set before scheduler.main builds its module-level app
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_BACKEND_URL"] = "cache+memory://"
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from scheduler import auth, crud, models, schemas
from scheduler.config import Settings
from scheduler.main import create_app


@pytest.fixture()
def settings() -> Settings:
    return Settings(database_url="sqlite://", secret_key="test-secret", celery_task_always_eager=True)


@pytest.fixture()
def app(settings):
    app = create_app(settings)
    yield app
    app.state.engine.dispose()


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db(app):
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(db):
    def _make_user(email: str, global_role: models.Role = models.Role.MEMBER, name: str = None) -> models.User:
        user = models.User(email=email, name=name, global_role=global_role)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture()
def headers_for(settings):
    def _headers_for(user: models.User) -> dict:
        token = auth.create_access_token(sub=user.email, settings=settings)
        return {"Authorization": f"Bearer {token}"}
    return _headers_for


@pytest.fixture()
def session_user():
    def _session_user(user: models.User) -> schemas.SessionUser:
        return schemas.SessionUser.model_validate(user)
    return _session_user


@pytest.fixture()
def team(make_user):
    """One user per role, plus an outsider with no membership."""
    return {
        "admin": make_user("admin@example.com", models.Role.ADMIN, "Admin User"),
        "manager": make_user("pm@example.com", models.Role.MANAGER, "Project Manager"),
        "member": make_user("member@example.com", models.Role.MEMBER, "Team Member"),
        "other_member": make_user("other@example.com", models.Role.MEMBER),
        "viewer": make_user("viewer@example.com", models.Role.VIEWER),
        "outsider": make_user("outsider@example.com", models.Role.MEMBER),
    }


@pytest.fixture()
def project(db, team):
    project = crud.create_project(db, schemas.ProjectCreate(
        name="Alpha Expansion",
        description="Planner migration",
        start_date=date(2025, 1, 1),
        end_date_target=date(2025, 4, 30),
    ), team["admin"].id)
    for key, role in (("manager", models.Role.MANAGER), ("member", models.Role.MEMBER),
                      ("other_member", models.Role.MEMBER), ("viewer", models.Role.VIEWER)):
        crud.upsert_member(db, project.id, schemas.MemberUpsert(email=team[key].email, role=role), team["admin"].id)
    return project


@pytest.fixture()
def make_task(db, project, team):
    def _make_task(title: str = "Core Implementation", owner: models.User = None, **overrides) -> models.Task:
        payload = dict(
            project_id=project.id,
            title=title,
            start_date=date(2025, 1, 1),
            end_date_original=date(2025, 1, 5),
            owner_id=owner.id if owner else None,
        )
        payload.update(overrides)
        return crud.create_task(db, schemas.TaskCreate(**payload), team["admin"].id)
    return _make_task
