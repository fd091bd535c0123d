"""FastAPI server — goals, pipelines, events, task review, budget, and the human review queue."""

from __future__ import annotations

import asyncio
import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from marketeam.catalog import load_registry
from marketeam.config import (
    HUMAN_REVIEW_EXPIRY_HOURS,
    MAX_CONCURRENT_WORKERS,
    SERVER_HOST,
    SERVER_PORT,
    SKILLS_FILE,
    WORKSPACE_DIR,
    DirectorConfig,
)
from marketeam.director import Director
from marketeam.errors import (
    BudgetBlockedError,
    InvalidTransitionError,
    MarketeamError,
    PipelinePausedError,
    WorkspaceError,
)
from marketeam.events import EventType, SystemEvent
from marketeam.models import GoalCategory, HumanDecision, HumanFeedback, Priority, TaskStatus
from marketeam.providers import create_client
from marketeam.workspace import FileWorkspace

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Marketeam", version="0.1.0", description="Marketing director decision engine")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_state: dict[str, Director] = {}
_execution_slots = asyncio.Semaphore(MAX_CONCURRENT_WORKERS)


def get_director() -> Director:
    """The process-wide director, built from settings on first use."""
    director = _state.get("director")
    if director is None:
        workspace = FileWorkspace(WORKSPACE_DIR)
        workspace.init()
        director = Director(
            workspace,
            DirectorConfig.from_settings(),
            client=create_client(),
            registry=load_registry(SKILLS_FILE),
            event_log=workspace.root / "metrics" / "events.jsonl",
        )
        _state["director"] = director
    return director


def set_director(director: Director | None):
    if director is None:
        _state.pop("director", None)
    else:
        _state["director"] = director


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def _status_for(error: MarketeamError) -> int:
    if isinstance(error, WorkspaceError):
        return 404
    if isinstance(error, (InvalidTransitionError, PipelinePausedError)):
        return 409
    if isinstance(error, BudgetBlockedError):
        return 402
    return 400


@app.exception_handler(MarketeamError)
async def marketeam_error_handler(request: Request, exc: MarketeamError) -> JSONResponse:
    status = _status_for(exc)
    logger.info(f"{request.method} {request.url.path} -> {status}: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------


class CreateGoalRequest(BaseModel):
    description: str
    category: GoalCategory
    priority: Priority | None = None
    deadline: str | None = None


class StartPipelineRequest(BaseModel):
    template: str
    description: str
    priority: Priority | None = None


class IterateGoalRequest(BaseModel):
    reason: str = ""


class EmitEventRequest(BaseModel):
    type: EventType
    source: str = "manual"
    data: dict = {}
    id: str | None = None


class FeedbackRequest(BaseModel):
    decision: HumanDecision
    reviewer: str
    notes: str = ""
    revision_instructions: str | None = None


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


@app.post("/goals")
async def create_goal(req: CreateGoalRequest) -> dict:
    """Create a goal, write its plan, and materialize the first phase."""
    director = get_director()
    goal = director.create_goal(req.description, req.category, req.priority, req.deadline)
    plan = director.decompose_goal(goal)
    tasks = director.plan_goal_tasks(plan, goal)
    return {"goal": goal.to_dict(), "plan": plan.to_dict(), "tasks": [t.to_dict() for t in tasks]}


@app.get("/goals")
async def list_goals() -> list[dict]:
    return [g.to_dict() for g in get_director().list_goals()]


@app.get("/goals/{goal_id}")
async def get_goal(goal_id: str) -> dict:
    return get_director().read_goal(goal_id).to_dict()


@app.get("/goals/{goal_id}/plan")
async def get_plan(goal_id: str) -> dict:
    return get_director().read_plan(goal_id).to_dict()


@app.post("/goals/{goal_id}/advance")
async def advance_goal(goal_id: str) -> dict:
    result = get_director().advance_goal(goal_id)
    if result == "complete":
        return {"status": "complete", "tasks": []}
    return {"status": "in_progress", "tasks": [t.to_dict() for t in result]}


@app.post("/goals/{goal_id}/iterate")
async def iterate_goal(goal_id: str, req: IterateGoalRequest) -> dict:
    """Start another pass at a goal whose target was missed, or escalate past the iteration limit."""
    return get_director().iterate_goal(goal_id, req.reason).to_dict()


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


@app.get("/pipelines")
async def list_pipelines() -> list[dict]:
    return [d.to_dict() for d in get_director().factory.definitions()]


@app.post("/pipelines")
async def start_pipeline(req: StartPipelineRequest) -> dict:
    return get_director().start_pipeline(req.template, req.description, req.priority).to_dict()


@app.post("/pipelines/{pipeline_id}/resume")
async def resume_pipeline(pipeline_id: str) -> dict:
    """Clear a pipeline's consecutive failures so its tasks can execute again."""
    director = get_director()
    director.resume_pipeline(pipeline_id)
    return {"pipeline_id": pipeline_id, "failures": director.failures.count(pipeline_id)}


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@app.post("/events")
async def emit_event(req: EmitEventRequest) -> dict:
    """Feed an external signal to the event bus; mapped events launch pipelines."""
    event = SystemEvent(type=req.type, source=req.source, data=req.data)
    if req.id:
        event.id = req.id
    return get_director().events.emit(event).to_dict()


@app.get("/events")
async def list_events(limit: int = 50, offset: int = 0) -> list[dict]:
    return [e.to_dict() for e in get_director().events.recent(limit, offset)]


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@app.get("/tasks")
async def list_tasks(status: TaskStatus | None = None, skill: str | None = None, goal_id: str | None = None) -> list[dict]:
    tasks = get_director().workspace.list_tasks(status=status, skill=skill, goal_id=goal_id)
    return [t.to_dict() for t in tasks]


@app.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict:
    return get_director().workspace.read_task(task_id).to_dict()


@app.get("/tasks/{task_id}/reviews")
async def get_task_reviews(task_id: str) -> list[dict]:
    return [r.to_dict() for r in get_director().workspace.list_reviews(task_id)]


@app.post("/tasks/{task_id}/review")
async def review_task(task_id: str) -> dict:
    """Structurally review a completed task and apply the decision."""
    return get_director().review_completed_task(task_id).to_dict()


@app.post("/tasks/{task_id}/execute")
async def execute_task(task_id: str, spent: float | None = None) -> dict:
    """Run a task through its skill, then review it semantically."""
    director = get_director()
    budget = director.compute_budget_state(spent) if spent is not None else None
    async with _execution_slots:
        result = await director.execute_and_review_task(task_id, budget)
    return {
        "task_id": task_id,
        "output_path": result.execution.output_path,
        "model_tier": result.execution.model_tier.value,
        "execution_cost": result.execution.cost,
        "review_cost": result.review_cost,
        "total_cost": result.total_cost,
        "decision": result.decision.to_dict(),
    }


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


@app.get("/budget")
async def get_budget(spent: float = 0.0) -> dict:
    director = get_director()
    state = director.compute_budget_state(spent)
    escalation = director.escalation.check_budget_escalation(state)
    return {**state.to_dict(), "escalation": escalation.to_dict() if escalation else None}


# ---------------------------------------------------------------------------
# Human Review
# ---------------------------------------------------------------------------


@app.get("/human-reviews")
async def list_human_reviews(urgency: str | None = None, skill: str | None = None, goal_id: str | None = None) -> list[dict]:
    items = get_director().human_review.get_pending_reviews(urgency=urgency, skill=skill, goal_id=goal_id)
    return [i.to_dict() for i in items]


@app.get("/human-reviews/stats")
async def human_review_stats() -> dict:
    return get_director().human_review.get_stats().to_dict()


@app.post("/human-reviews/expire")
async def expire_human_reviews(max_age_hours: float = HUMAN_REVIEW_EXPIRY_HOURS) -> list[dict]:
    return [i.to_dict() for i in get_director().human_review.expire_stale(max_age_hours * 3600)]


@app.get("/human-reviews/{review_id}")
async def get_human_review(review_id: str) -> dict:
    return get_director().human_review.get_review_item(review_id).to_dict()


@app.post("/human-reviews/{review_id}/feedback")
async def submit_feedback(review_id: str, req: FeedbackRequest) -> dict:
    feedback = HumanFeedback(
        decision=req.decision,
        reviewer=req.reviewer,
        notes=req.notes,
        revision_instructions=req.revision_instructions,
    )
    result = get_director().human_review.submit_feedback(review_id, feedback)
    return {"item": result.item.to_dict(), "resumed_tasks": [t.to_dict() for t in result.resumed_tasks]}


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------


def main():
    """Start the Marketeam server."""
    print(f"Starting Marketeam server on {SERVER_HOST}:{SERVER_PORT}")
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT, log_level="info")


if __name__ == "__main__":
    main()
