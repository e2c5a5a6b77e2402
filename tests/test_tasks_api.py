from datetime import date

import pytest


def _task_payload(project_id, **overrides):
    payload = {
        "project_id": project_id,
        "title": "Example",
        "start_date": "2025-01-01",
        "end_date_original": "2025-01-05",
        "delay_days": 0,
        "progress": 0,
        "priority": "MEDIUM",
    }
    payload.update(overrides)
    return payload


def test_listing_tasks_requires_a_session(client):
    response = client.get("/tasks")

    assert response.status_code == 401
    assert response.json() == {"detail": "UNAUTHENTICATED", "kind": "UNAUTHENTICATED"}
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_invalid_token_is_treated_as_anonymous(client, project):
    response = client.post("/tasks", json=_task_payload(project.id), headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401


def test_create_task_computes_end_date_and_audits(client, project, team, headers_for):
    response = client.post("/tasks", json=_task_payload(project.id, delay_days=2), headers=headers_for(team["manager"]))

    assert response.status_code == 201
    body = response.json()
    assert body["title"] == "Example"
    assert body["end_date_final"] == "2025-01-07"

    log = client.get(f"/projects/{project.id}/audit-log", headers=headers_for(team["manager"])).json()
    assert (log[0]["entity_type"], log[0]["action"], log[0]["entity_id"]) == ("TASK", "CREATED", body["id"])
    assert log[0]["actor_id"] == team["manager"].id


def test_end_date_final_cannot_be_set_directly(client, project, team, headers_for):
    response = client.post("/tasks", json=_task_payload(project.id, end_date_final="2030-01-01"),
                           headers=headers_for(team["admin"]))

    assert response.status_code == 201
    assert response.json()["end_date_final"] == "2025-01-05"


def test_issue_lifecycle_recalculates_task(client, project, team, headers_for):
    headers = headers_for(team["manager"])
    task = client.post("/tasks", json=_task_payload(project.id), headers=headers).json()
    assert task["end_date_final"] == "2025-01-05"

    created = client.post("/issues", json={
        "task_id": task["id"], "title": "Supplier delay", "start_date": "2025-01-03", "duration_days": 5,
    }, headers=headers)
    assert created.status_code == 201
    assert created.json()["task"]["end_date_final"] == "2025-01-10"
    issue_id = created.json()["issue"]["id"]

    patched = client.patch(f"/issues/{issue_id}", json={"duration_days": 2}, headers=headers)
    assert patched.json()["task"]["end_date_final"] == "2025-01-07"

    deleted = client.delete(f"/issues/{issue_id}", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json()["task"]["end_date_final"] == "2025-01-05"
    assert client.get(f"/tasks/{task['id']}", headers=headers).json()["end_date_final"] == "2025-01-05"


def test_issue_duration_must_be_positive(client, project, team, headers_for, make_task):
    task = make_task()

    response = client.post("/issues", json={
        "task_id": task.id, "title": "Nothing", "start_date": "2025-01-03", "duration_days": 0,
    }, headers=headers_for(team["manager"]))

    assert response.status_code == 422


def test_issue_on_missing_task_is_not_found(client, team, headers_for, project):
    response = client.post("/issues", json={
        "task_id": 999, "title": "Ghost", "start_date": "2025-01-03", "duration_days": 1,
    }, headers=headers_for(team["admin"]))

    assert response.status_code == 404
    assert response.json()["kind"] == "NOT_FOUND"


def test_viewer_cannot_write_tasks_or_issues(client, project, team, headers_for, make_task):
    headers = headers_for(team["viewer"])
    task = make_task(owner=team["viewer"])

    assert client.post("/tasks", json=_task_payload(project.id), headers=headers).status_code == 403
    assert client.patch(f"/tasks/{task.id}", json={"progress": 10}, headers=headers).status_code == 403
    assert client.post("/issues", json={
        "task_id": task.id, "title": "Rain day", "start_date": "2025-01-03", "duration_days": 1,
    }, headers=headers).status_code == 403
    assert client.get(f"/tasks/{task.id}", headers=headers).status_code == 200


def test_member_patches_only_own_tasks(client, team, headers_for, make_task):
    headers = headers_for(team["member"])
    own = make_task("Own task", owner=team["member"])
    foreign = make_task("Foreign task", owner=team["other_member"])

    ok = client.patch(f"/tasks/{own.id}", json={"progress": 60, "delay_days": 1}, headers=headers)
    assert ok.status_code == 200
    assert ok.json()["progress"] == 60
    assert ok.json()["end_date_final"] == "2025-01-06"

    denied = client.patch(f"/tasks/{foreign.id}", json={"progress": 60}, headers=headers)
    assert denied.status_code == 403
    assert denied.json()["kind"] == "FORBIDDEN"


def test_global_admin_without_membership_can_write(client, project, make_user, headers_for):
    root = make_user("root@example.com", global_role="ADMIN")

    response = client.post("/tasks", json=_task_payload(project.id), headers=headers_for(root))

    assert response.status_code == 201


def test_outsider_cannot_read_project_tasks(client, project, team, headers_for, make_task):
    task = make_task()
    headers = headers_for(team["outsider"])

    assert client.get(f"/tasks/{task.id}", headers=headers).status_code == 403
    assert client.get("/tasks", params={"project_id": project.id}, headers=headers).status_code == 403
    assert client.get("/tasks", headers=headers).json() == []


def test_list_tasks_is_ordered_by_start(client, project, team, headers_for, make_task):
    make_task("Later", start_date=date(2025, 1, 3))
    make_task("Earlier", start_date=date(2024, 12, 20))

    titles = [t["title"] for t in client.get("/tasks", params={"project_id": project.id},
                                            headers=headers_for(team["viewer"])).json()]

    assert titles == ["Earlier", "Later"]


def test_end_before_start_is_rejected(client, project, team, headers_for):
    response = client.post("/tasks", json=_task_payload(project.id, start_date="2025-02-01"),
                           headers=headers_for(team["manager"]))

    assert response.status_code == 400
    assert response.json()["kind"] == "VALIDATION"


def test_negative_delay_is_rejected(client, project, team, headers_for):
    response = client.post("/tasks", json=_task_payload(project.id, delay_days=-1), headers=headers_for(team["manager"]))

    assert response.status_code == 422


def test_parent_must_live_in_same_project(client, db, project, team, headers_for):
    from scheduler import crud, schemas

    other = crud.create_project(db, schemas.ProjectCreate(name="Other project", start_date=date(2025, 1, 1)),
                                team["admin"].id)
    stranger = crud.create_task(db, schemas.TaskCreate(**_task_payload(other.id)), team["admin"].id)

    response = client.post("/tasks", json=_task_payload(project.id, parent_task_id=stranger.id),
                           headers=headers_for(team["admin"]))

    assert response.status_code == 400


def test_parent_chain_cannot_loop(client, team, headers_for, make_task):
    headers = headers_for(team["manager"])
    root = make_task("Root")
    child = make_task("Child", parent_task_id=root.id)
    grandchild = make_task("Grandchild", parent_task_id=child.id)

    assert client.patch(f"/tasks/{root.id}", json={"parent_task_id": grandchild.id}, headers=headers).status_code == 400
    assert client.patch(f"/tasks/{root.id}", json={"parent_task_id": root.id}, headers=headers).status_code == 400
    moved = client.patch(f"/tasks/{grandchild.id}", json={"parent_task_id": root.id}, headers=headers)
    assert moved.status_code == 200
    assert moved.json()["parent_task_id"] == root.id


def test_delete_task_detaches_children(client, team, headers_for, make_task):
    headers = headers_for(team["manager"])
    parent = make_task("Parent")
    child = make_task("Child", parent_task_id=parent.id)

    assert client.delete(f"/tasks/{parent.id}", headers=headers).status_code == 204
    assert client.get(f"/tasks/{parent.id}", headers=headers).status_code == 404
    assert client.get(f"/tasks/{child.id}", headers=headers).json()["parent_task_id"] is None


def test_assigning_an_owner_sends_mail(client, project, team, headers_for, monkeypatch):
    from types import SimpleNamespace

    from scheduler import main

    sent = []
    monkeypatch.setattr(main, "send_email_async", SimpleNamespace(delay=lambda *args: sent.append(args)))

    client.post("/tasks", json=_task_payload(project.id, owner_id=team["member"].id), headers=headers_for(team["manager"]))

    assert sent == [("member@example.com", "Task Assigned", "You have been assigned task: Example")]


@pytest.mark.parametrize("field", ["title", "start_date", "end_date_original", "delay_days", "progress", "priority"])
def test_task_patch_rejects_null_for_required_fields(client, team, headers_for, make_task, field):
    task = make_task()

    response = client.patch(f"/tasks/{task.id}", json={field: None}, headers=headers_for(team["admin"]))

    assert response.status_code == 422
    assert client.get(f"/tasks/{task.id}", headers=headers_for(team["admin"])).json()["end_date_final"] == "2025-01-05"


@pytest.mark.parametrize("field", ["title", "start_date", "duration_days"])
def test_issue_patch_rejects_null_for_required_fields(client, team, headers_for, make_task, field):
    headers = headers_for(team["admin"])
    task = make_task()
    issue = client.post("/issues", json={
        "task_id": task.id, "title": "Late delivery", "start_date": "2025-01-02", "duration_days": 2,
    }, headers=headers).json()["issue"]

    response = client.patch(f"/issues/{issue['id']}", json={field: None}, headers=headers)

    assert response.status_code == 422
    assert client.get(f"/tasks/{task.id}", headers=headers).json()["end_date_final"] == "2025-01-07"


@pytest.mark.parametrize("field", ["name", "date"])
def test_milestone_patch_rejects_null_for_required_fields(client, project, team, headers_for, field):
    headers = headers_for(team["admin"])
    milestone = client.post("/milestones", json={"project_id": project.id, "name": "Launch", "date": "2025-04-30"},
                            headers=headers).json()

    response = client.patch(f"/milestones/{milestone['id']}", json={field: None}, headers=headers)

    assert response.status_code == 422


def test_clearing_owner_and_parent_recalculates(client, project, team, headers_for, make_task):
    headers = headers_for(team["admin"])
    parent = make_task("Parent")
    child = make_task("Child", owner=team["member"], parent_task_id=parent.id, delay_days=1)
    client.post("/issues", json={
        "task_id": child.id, "title": "Permit wait", "start_date": "2025-01-02", "duration_days": 3,
    }, headers=headers)

    cleared = client.patch(f"/tasks/{child.id}", json={"owner_id": None, "parent_task_id": None}, headers=headers)

    assert cleared.status_code == 200
    body = cleared.json()
    assert body["owner_id"] is None
    assert body["parent_task_id"] is None
    assert body["end_date_final"] == "2025-01-09"

    log = client.get(f"/projects/{project.id}/audit-log", headers=headers).json()
    assert log[0]["action"] == "UPDATED"
    assert log[0]["payload"] == {"owner_id": None, "parent_task_id": None}


def test_update_schemas_allow_omission_but_not_null():
    from pydantic import ValidationError

    from scheduler import schemas

    assert schemas.TaskUpdate().model_dump(exclude_unset=True) == {}
    assert schemas.TaskUpdate(owner_id=None).model_dump(exclude_unset=True) == {"owner_id": None}
    with pytest.raises(ValidationError):
        schemas.TaskUpdate(delay_days=None)
    with pytest.raises(ValidationError):
        schemas.IssueUpdate(duration_days=None)
    with pytest.raises(ValidationError):
        schemas.MilestoneUpdate(date=None)
