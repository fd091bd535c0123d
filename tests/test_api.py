"""Test FastAPI endpoints (unit-level, no real LLM calls)."""

import pytest
from fastapi.testclient import TestClient

from helpers import TASK_ID, make_config, make_task, make_workspace

from marketeam.director import Director
from marketeam.models import TaskStatus
from marketeam.server import app, get_director, set_director


@pytest.fixture(autouse=True)
def director(tmp_path):
    d = Director(make_workspace(tmp_path), make_config())
    set_director(d)
    yield d
    set_director(None)


client = TestClient(app)


def test_create_goal():
    resp = client.post("/goals", json={"description": "Lift signup conversion", "category": "optimization"})
    assert resp.status_code == 200
    data = resp.json()
    goal_id = data["goal"]["id"]
    assert data["goal"]["priority"] == "P2"
    assert data["plan"]["goal_id"] == goal_id
    assert data["tasks"]
    assert all(t["goal_id"] == goal_id for t in data["tasks"])
    assert all(t["status"] == "pending" for t in data["tasks"])


def test_get_goal_and_plan():
    goal_id = client.post("/goals", json={"description": "Win back churned users", "category": "retention"}).json()[
        "goal"
    ]["id"]

    resp = client.get(f"/goals/{goal_id}")
    assert resp.status_code == 200
    assert resp.json()["category"] == "retention"

    plan = client.get(f"/goals/{goal_id}/plan").json()
    assert plan["goal_id"] == goal_id
    assert plan["phases"]

    assert [g["id"] for g in client.get("/goals").json()] == [goal_id]


def test_goal_not_found():
    resp = client.get("/goals/goal-missing")
    assert resp.status_code == 404
    assert "File not found" in resp.json()["detail"]


def test_bad_category():
    resp = client.post("/goals", json={"description": "x", "category": "vibes"})
    assert resp.status_code == 422


def test_list_pipelines():
    resp = client.get("/pipelines")
    assert resp.status_code == 200
    names = [p["name"] for p in resp.json()]
    assert len(names) == 8
    assert "Conversion Sprint" in names


def test_start_pipeline():
    resp = client.post("/pipelines", json={"template": "Outreach Campaign", "description": "Q3 prospects"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["run"]["pipeline_id"] == "outreach-campaign"
    assert [t["to"] for t in data["tasks"]] == ["cold-email"]


def test_start_unknown_pipeline():
    resp = client.post("/pipelines", json={"template": "Nope", "description": "x"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == 'Unknown pipeline template: "Nope"'


def test_list_tasks_filters(director):
    director.workspace.write_task(make_task(id="a", status=TaskStatus.PENDING))
    director.workspace.write_task(make_task(id="b", to="copywriting", status=TaskStatus.COMPLETED))

    assert len(client.get("/tasks").json()) == 2
    assert [t["id"] for t in client.get("/tasks", params={"status": "pending"}).json()] == ["a"]
    assert [t["id"] for t in client.get("/tasks", params={"skill": "copywriting"}).json()] == ["b"]
    assert client.get("/tasks/a").json()["to"] == "page-cro"
    assert client.get("/tasks/missing").status_code == 404


def test_review_task_without_output(director):
    director.workspace.write_task(make_task(status=TaskStatus.PENDING))

    resp = client.post(f"/tasks/{TASK_ID}/review")

    assert resp.status_code == 200
    assert resp.json()["action"] == "reject_reassign"
    assert director.workspace.read_task(TASK_ID).status == TaskStatus.FAILED
    assert len(client.get(f"/tasks/{TASK_ID}/reviews").json()) == 1


def test_review_terminal_task_conflicts(director):
    director.workspace.write_task(make_task(status=TaskStatus.APPROVED))
    resp = client.post(f"/tasks/{TASK_ID}/review")
    assert resp.status_code == 409


def test_execute_without_client(director):
    director.workspace.write_task(make_task(status=TaskStatus.PENDING))
    resp = client.post(f"/tasks/{TASK_ID}/execute")
    assert resp.status_code == 400
    assert "model client is required" in resp.json()["detail"]


def test_budget():
    data = client.get("/budget", params={"spent": 950}).json()
    assert data["level"] == "critical"
    assert data["allowed_priorities"] == ["P0"]
    assert data["model_override"] == "haiku"
    assert data["escalation"]["severity"] == "critical"

    assert client.get("/budget").json()["escalation"] is None


def _escalated(director, task_id=TASK_ID):
    director.workspace.write_task(make_task(id=task_id, revision_count=3))
    assert client.post(f"/tasks/{task_id}/review").json()["action"] == "escalate_human"
    return director.human_review.get_review_by_task_id(task_id)


def test_human_review_flow(director):
    item = _escalated(director)

    pending = client.get("/human-reviews").json()
    assert [i["id"] for i in pending] == [item.id]
    assert client.get(f"/human-reviews/{item.id}").json()["task_id"] == TASK_ID
    assert client.get("/human-reviews/stats").json()["pending"] == 1

    resp = client.post(f"/human-reviews/{item.id}/feedback", json={"decision": "approve", "reviewer": "dana"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["item"]["status"] == "resolved"
    assert [t["id"] for t in data["resumed_tasks"]] == [TASK_ID]
    assert director.workspace.read_task(TASK_ID).status == TaskStatus.PENDING
    assert client.get("/human-reviews").json() == []


def test_human_review_errors(director):
    item = _escalated(director)

    resp = client.post(f"/human-reviews/{item.id}/feedback", json={"decision": "revise", "reviewer": "dana"})
    assert resp.status_code == 400
    assert "Revision instructions are required" in resp.json()["detail"]

    assert client.get("/human-reviews/hr-missing").status_code == 404
    resp = client.post("/human-reviews/hr-missing/feedback", json={"decision": "approve", "reviewer": "dana"})
    assert resp.status_code == 404


def test_set_director_is_used(director):
    assert get_director() is director


def test_emit_event_starts_pipeline(director):
    resp = client.post("/events", json={"type": "conversion_drop", "data": {"percentageDrop": 15}, "id": "evt-1"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["event_id"] == "evt-1"
    assert data["pipelines_triggered"] == 1
    assert [t["to"] for t in data["tasks"]] == ["page-cro"]
    assert data["tasks"][0]["priority"] == "P0"

    again = client.post("/events", json={"type": "conversion_drop", "data": {"percentageDrop": 15}, "id": "evt-1"})
    assert again.json()["pipelines_triggered"] == 0
    assert again.json()["skipped_reasons"] == ["Duplicate event ID: evt-1"]

    events = client.get("/events").json()
    assert [e["id"] for e in events] == ["evt-1"]
    assert events[0]["data"] == {"percentageDrop": 15}


def test_emit_event_below_threshold():
    data = client.post("/events", json={"type": "conversion_drop", "data": {"percentageDrop": 5}}).json()
    assert data["pipelines_triggered"] == 0
    assert data["skipped_reasons"] == ["Condition not met for conversion_drop -> Conversion Sprint"]


def test_emit_unknown_event_type():
    assert client.post("/events", json={"type": "solar_flare"}).status_code == 422


def test_resume_pipeline(director):
    director.failures.record_failure(TASK_ID, "run-x")
    resp = client.post("/pipelines/run-x/resume")
    assert resp.status_code == 200
    assert resp.json() == {"pipeline_id": "run-x", "failures": 0}


def test_iterate_goal_with_active_tasks():
    goal_id = client.post("/goals", json={"description": "Lift signups", "category": "optimization"}).json()["goal"]["id"]
    resp = client.post(f"/goals/{goal_id}/iterate", json={"reason": "flat"})
    assert resp.status_code == 400
    assert "active task(s) in iteration 1" in resp.json()["detail"]
