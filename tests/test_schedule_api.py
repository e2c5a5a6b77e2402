from scheduler.schedule_analytics import CSV_HEADER


def test_construction_schedule_report(client):
    report = client.get("/construction-schedule", params={"date": "2025-11-09", "horizon_days": 1}).json()

    assert report["schedule"]["project"]
    assert len(report["tasks"]) == 10
    assert report["timeline"]["project_start"] == "2025-11-05"
    assert report["timeline"]["project_end"] == "2025-12-04"
    assert report["timeline"]["total_duration_days"] == 30
    assert {(a["task_id"], a["type"], a["due_in_days"]) for a in report["alerts"]} == {
        ("TEMP-CORE", "start", 0),
        ("PLAST-OUTER", "start", 0),
        ("TEMP-SCAF-CLEAN", "start", 1),
    }
    assert report["csv"].splitlines()[0] == CSV_HEADER
    assert len(report["gantt"]) == 10


def test_resource_filter_narrows_overlaps(client):
    report = client.get("/construction-schedule", params={"resource": "scaffolding", "date": "2025-11-01"}).json()

    assert all("scaffolding" in o["task_a"]["resources"] + o["task_b"]["resources"] for o in report["overlaps"])
    assert [(o["task_a"]["id"], o["task_b"]["id"], o["overlap_days"])
            for o in report["overlaps"] if o["shared_resources"]] == [("TEMP-SCAF-ASSY", "TEMP-SCAF-CLEAN", 12)]
    assert [r["resource"] for r in report["resource_recommendations"]] == ["scaffolding"]
    assert report["resource_recommendations"][0]["recommendation"] == (
        "Shift TEMP-SCAF-CLEAN by 12 day(s) or split crew for resource scaffolding"
    )


def test_invalid_reference_date(client):
    response = client.get("/construction-schedule", params={"date": "next tuesday"})

    assert response.status_code == 400
    assert response.json()["kind"] == "INVALID_DATE"


def test_construction_schedule_csv(client):
    response = client.get("/construction-schedule.csv")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    lines = response.text.split("\n")
    assert lines[0] == CSV_HEADER
    assert len(lines) == 11
    assert not response.text.endswith("\n")


def test_project_schedule_uses_stored_tasks(client, project, team, headers_for, make_task):
    root = make_task("Discovery", owner=team["member"], progress=40)
    make_task("Interviews", parent_task_id=root.id, start_date=root.start_date, delay_days=2)

    report = client.get(f"/projects/{project.id}/schedule", params={"date": "2025-01-04"},
                        headers=headers_for(team["viewer"])).json()

    assert [t["phase"] for t in report["tasks"]] == ["Discovery", "Discovery"]
    assert report["tasks"][0]["resources"] == ["member@example.com"]
    assert report["tasks"][1]["end"] == "2025-01-07"
    assert report["timeline"]["total_duration_days"] == 7
    assert report["schedule"] is None
    assert {(a["task_name"], a["type"], a["due_in_days"]) for a in report["alerts"]} == {
        ("Discovery", "deadline", 1),
        ("Interviews", "deadline", 3),
    }


def test_project_schedule_requires_membership(client, project, team, headers_for):
    response = client.get(f"/projects/{project.id}/schedule", headers=headers_for(team["outsider"]))

    assert response.status_code == 403
