"""Test the Director: goal documents, goal lifecycle, pipelines, review application, execution."""

import asyncio

import pytest

from helpers import SAMPLE_OUTPUT, MockClient, make_config, make_goal, make_task, make_workspace

from marketeam.director import (
    DIRECTOR_SYSTEM_PROMPT,
    Director,
    build_system_prompt,
    deserialize_goal,
    deserialize_plan,
    serialize_goal,
    serialize_plan,
)
from marketeam.decomposer import decompose_goal
from marketeam.errors import (
    BudgetBlockedError,
    DirectorConfigError,
    GoalFormatError,
    InvalidTransitionError,
    MarketeamError,
    PipelinePausedError,
    UnknownTemplateError,
    WorkspaceError,
)
from marketeam.events import EventType
from marketeam.gates import GLOBAL_KEY
from marketeam.models import (
    DirectorAction,
    EscalationReason,
    GoalCategory,
    HumanDecision,
    HumanFeedback,
    HumanReviewStatus,
    LearningEntry,
    NextType,
    Priority,
    TaskStatus,
)
from marketeam.router import route_goal


def make_director(tmp_path, client=None, **config):
    return Director(make_workspace(tmp_path), make_config(**config), client=client)


def complete(director, task, output):
    """Simulate a skill finishing a task."""
    director.workspace.write_task_output(task, output)
    director.workspace.update_task_status(task.id, TaskStatus.IN_PROGRESS)
    director.workspace.update_task_status(task.id, TaskStatus.COMPLETED)


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


def test_system_prompt_lists_the_team():
    assert "Marketing Director" in DIRECTOR_SYSTEM_PROMPT
    assert "25 specialist" in DIRECTOR_SYSTEM_PROMPT
    assert "- page-cro: Audits pages for conversion issues" in DIRECTOR_SYSTEM_PROMPT
    assert build_system_prompt() == DIRECTOR_SYSTEM_PROMPT


def test_goal_round_trip_with_awkward_description():
    goal = make_goal(
        description="Launch: v2 pricing\n\n## Context\n\n- bullet: with colon\n---\nafter a rule",
        deadline="2026-03-01",
        metadata={"source": "ops: weekly", "recent_learnings": [{"learning": "a: b"}]},
    )
    assert deserialize_goal(serialize_goal(goal)) == goal


def test_goal_without_deadline():
    goal = make_goal()
    text = serialize_goal(goal)
    assert "deadline: none" in text
    assert deserialize_goal(text).deadline is None


def test_goal_format_errors():
    with pytest.raises(GoalFormatError, match="no frontmatter"):
        deserialize_goal("# Goal\n")
    with pytest.raises(GoalFormatError, match="missing id"):
        deserialize_goal("---\ncategory: content\n---\n")
    with pytest.raises(GoalFormatError, match='invalid category "branding"'):
        deserialize_goal(serialize_goal(make_goal()).replace("category: optimization", "category: branding"))
    with pytest.raises(GoalFormatError, match='invalid priority "P9"'):
        deserialize_goal(serialize_goal(make_goal()).replace("priority: P1", "priority: P9"))
    with pytest.raises(GoalFormatError, match="metadata"):
        deserialize_goal(serialize_goal(make_goal()).replace("metadata: {}", "metadata: {oops"))


def test_plan_round_trip():
    for category in GoalCategory:
        goal = make_goal(category=category)
        plan = decompose_goal(goal, route_goal(category))
        assert deserialize_plan(serialize_plan(plan)) == plan


def test_plan_document_layout():
    goal = make_goal(category=GoalCategory.MEASUREMENT)
    text = serialize_plan(decompose_goal(goal, route_goal(goal.category)))
    assert "pipeline_template: SEO Cycle" in text
    assert "## Phase 2: PHASE_2" in text
    assert "- **Parallel:** true" in text
    assert "- **Depends on:** Phase 1" in text
    assert "- **Skills:** programmatic-seo, schema-markup, content-strategy" in text


# ---------------------------------------------------------------------------
# Goals
# ---------------------------------------------------------------------------


def test_create_and_read_goal(tmp_path):
    director = make_director(tmp_path)
    goal = director.create_goal("Increase signup conversion rate by 20%", "optimization")

    assert goal.priority == Priority.P2
    assert director.workspace.file_exists(f"goals/{goal.id}.md")
    assert director.read_goal(goal.id) == goal
    assert [g.id for g in director.list_goals()] == [goal.id]


def test_read_missing_goal(tmp_path):
    with pytest.raises(WorkspaceError):
        make_director(tmp_path).read_goal("goal-nope")


def test_create_goal_attaches_recent_learnings(tmp_path):
    director = make_director(tmp_path)
    for i in range(7):
        director.workspace.append_learning(
            LearningEntry(
                agent="director",
                goal_id="g0",
                outcome="success",
                learning=f"CRO learning {i}",
                action_taken="noted",
                tags=["page-cro"],
                timestamp=f"2026-02-1{i}T00:00:00+00:00",
            )
        )
    director.workspace.append_learning(
        LearningEntry(agent="director", goal_id="g0", outcome="success", learning="unrelated", action_taken="x", tags=["cold-email"])
    )

    goal = director.create_goal("Lift signups", GoalCategory.OPTIMIZATION, Priority.P1)

    recent = goal.metadata["recent_learnings"]
    assert [e["learning"] for e in recent] == [f"CRO learning {i}" for i in (6, 5, 4, 3, 2)]
    assert director.read_goal(goal.id).metadata == goal.metadata


def test_optimization_goal_end_to_end(tmp_path):
    director = make_director(tmp_path)
    goal = director.create_goal("Increase signup conversion rate by 20%", GoalCategory.OPTIMIZATION, Priority.P1)

    routing = director.route_goal(goal.category)
    assert routing.routes[-1].squad.value == "measure"

    plan = director.decompose_goal(goal)
    assert plan.pipeline_template_name == "Conversion Sprint"

    tasks = director.plan_goal_tasks(plan, goal)
    assert director.read_plan(goal.id) == plan
    assert len(tasks) == 1
    task = tasks[0]
    assert task.to == "page-cro"
    assert task.goal_id == goal.id
    assert task.next.type == NextType.PIPELINE_CONTINUE
    assert director.workspace.read_task(task.id) == task

    # A 14-character output is sent back for revision
    complete(director, task, "Too short here")
    decision = director.review_completed_task(task.id)

    assert decision.action == DirectorAction.REVISE
    assert len(decision.next_tasks) == 1
    revision = decision.next_tasks[0]
    assert revision.revision_count == 1
    assert director.workspace.read_task(task.id).status == TaskStatus.REVISION
    assert director.workspace.read_task(revision.id).status == TaskStatus.PENDING
    assert len(director.workspace.list_reviews(task.id)) == 1

    # While the revision is open the goal does not advance; the revised original is not active
    assert [t.id for t in director.advance_goal(goal.id)] == [revision.id]

    complete(director, revision, SAMPLE_OUTPUT)
    decision = director.review_completed_task(revision.id)
    assert decision.action == DirectorAction.PIPELINE_NEXT
    assert director.workspace.read_task(revision.id).status == TaskStatus.APPROVED
    assert director.workspace.read_learnings()[-1].learning.startswith(f"Task {revision.id} completed by page-cro")

    next_tasks = director.advance_goal(goal.id)
    assert [t.to for t in next_tasks] == ["copywriting"]
    assert revision.output.path in [i.path for i in next_tasks[0].inputs]


def test_advance_goal_to_completion(tmp_path):
    director = make_director(tmp_path)
    goal = director.create_goal("Lift signups", GoalCategory.OPTIMIZATION)
    director.plan_goal_tasks(director.decompose_goal(goal), goal)

    for expected in ("copywriting", "ab-test-setup", "analytics-tracking"):
        for task in director.workspace.list_tasks(goal_id=goal.id, status=TaskStatus.PENDING):
            complete(director, task, SAMPLE_OUTPUT)
            director.review_completed_task(task.id)
        tasks = director.advance_goal(goal.id)
        assert [t.to for t in tasks] == [expected]

    for task in tasks:
        complete(director, task, SAMPLE_OUTPUT)
        decision = director.review_completed_task(task.id)
        assert decision.action == DirectorAction.GOAL_COMPLETE

    assert director.advance_goal(goal.id) == "complete"


def test_plan_without_phases_writes_nothing(tmp_path):
    director = make_director(tmp_path)
    goal = make_goal()
    plan = decompose_goal(goal, route_goal(goal.category))
    plan.phases = []
    assert director.plan_goal_tasks(plan, goal) == []
    assert director.workspace.list_tasks() == []


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


def test_start_and_advance_pipeline(tmp_path):
    director = make_director(tmp_path)
    launch = director.start_pipeline("Product Launch", "Launch v2")

    assert launch.run.status == "running"
    assert [t.to for t in launch.tasks] == ["launch-strategy"]
    assert launch.tasks[0].priority == Priority.P0
    assert launch.to_dict()["definition"]["id"] == "product-launch"

    first = launch.tasks[0]
    complete(director, first, SAMPLE_OUTPUT)
    director.review_completed_task(first.id)

    tasks = director.advance_pipeline(launch.run)
    assert [t.to for t in tasks] == ["copywriting", "email-sequence", "social-content", "paid-ads"]
    assert launch.run.current_step_index == 1
    for task in tasks:
        assert task.next.type == NextType.DIRECTOR_REVIEW
        assert first.output.path in [i.path for i in task.inputs]
        assert task.goal == "Launch v2"

    assert director.advance_pipeline(launch.run, [t.id for t in tasks]) == []
    assert launch.run.status == "completed"
    assert launch.run.completed_at is not None


def test_start_unknown_pipeline(tmp_path):
    with pytest.raises(UnknownTemplateError):
        make_director(tmp_path).start_pipeline("Nope", "anything")


# ---------------------------------------------------------------------------
# Review application
# ---------------------------------------------------------------------------


def test_empty_output_fails_task(tmp_path):
    director = make_director(tmp_path)
    task = make_task()
    director.workspace.write_task(task)

    decision = director.review_completed_task(task.id)

    assert decision.action == DirectorAction.REJECT_REASSIGN
    assert director.workspace.read_task(task.id).status == TaskStatus.FAILED
    assert director.workspace.read_review(task.id).verdict.value == "REJECT"


def test_revision_limit_escalates_to_human(tmp_path):
    director = make_director(tmp_path, max_revisions=3)
    task = make_task(revision_count=3)
    director.workspace.write_task(task)
    director.workspace.write_task_output(task, "short")

    decision = director.review_completed_task(task.id)

    assert decision.action == DirectorAction.ESCALATE_HUMAN
    assert director.workspace.read_task(task.id).status == TaskStatus.BLOCKED
    item = director.human_review.get_review_by_task_id(task.id)
    assert item.status == HumanReviewStatus.PENDING
    assert item.escalation_reason == "agent_loop_detected"


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def test_execute_requires_client(tmp_path):
    director = make_director(tmp_path)
    assert director.executor is None
    with pytest.raises(DirectorConfigError):
        asyncio.run(director.execute_and_review_task("anything"))


def test_execute_blocked_by_budget(tmp_path):
    client = MockClient()
    director = make_director(tmp_path, client=client)
    director.workspace.write_task(make_task(status=TaskStatus.PENDING, priority=Priority.P1))

    with pytest.raises(BudgetBlockedError) as exc:
        asyncio.run(director.execute_and_review_task(make_task().id, director.compute_budget_state(950)))

    assert exc.value.level == "critical"
    assert client.calls == []
    assert director.workspace.read_task(make_task().id).status == TaskStatus.PENDING


def test_execute_and_review(tmp_path):
    client = MockClient(
        [
            {"content": SAMPLE_OUTPUT, "input_tokens": 10000, "output_tokens": 5000},
            {"content": "[]", "input_tokens": 3000, "output_tokens": 1300},
        ]
    )
    director = make_director(tmp_path, client=client)
    task = make_task(status=TaskStatus.PENDING)
    director.workspace.write_task(task)

    result = asyncio.run(director.execute_and_review_task(task.id))

    assert result.execution.cost == pytest.approx(0.105)
    assert result.review_cost == pytest.approx(0.1425)
    assert result.total_cost == pytest.approx(0.2475)
    assert result.decision.action == DirectorAction.GOAL_COMPLETE
    assert director.workspace.read_task(task.id).status == TaskStatus.APPROVED
    assert director.workspace.read_task_output(task) == SAMPLE_OUTPUT
    assert len(client.calls) == 2


def test_execute_uses_budget_provider(tmp_path):
    client = MockClient()
    workspace = make_workspace(tmp_path)
    config = make_config()
    director = Director(workspace, config, client=client, budget_provider=lambda: director.compute_budget_state(960))
    workspace.write_task(make_task(status=TaskStatus.PENDING, priority=Priority.P2))

    with pytest.raises(BudgetBlockedError):
        asyncio.run(director.execute_and_review_task(make_task().id))


def test_illegal_review_writes_nothing(tmp_path):
    director = make_director(tmp_path)
    task = make_task(status=TaskStatus.PENDING)
    director.workspace.write_task(task)
    director.workspace.write_task_output(task, "# Audit\nShort.")

    for _ in range(2):
        with pytest.raises(InvalidTransitionError):
            director.review_completed_task(task.id)

    assert director.workspace.list_reviews(task.id) == []
    assert [t.id for t in director.workspace.list_tasks()] == [task.id]
    assert director.workspace.read_task(task.id).status == TaskStatus.PENDING


def test_goal_description_whitespace_survives(tmp_path):
    goal = make_goal(description="  indented first line\nlast line with trailing spaces   ")
    assert deserialize_goal(serialize_goal(goal)).description == goal.description

    director = make_director(tmp_path)
    created = director.create_goal("\tLift signups ", "optimization")
    assert director.read_goal(created.id).description == "\tLift signups "


# ---------------------------------------------------------------------------
# Failures, events and budget gating
# ---------------------------------------------------------------------------


def test_consecutive_failures_pause_the_pipeline(tmp_path):
    client = MockClient()
    director = make_director(tmp_path, client=client)
    for tid in ("t1", "t2", "t3"):
        director.workspace.write_task(make_task(id=tid, pipeline_id="run-x"))
        assert director.review_completed_task(tid).action == DirectorAction.REJECT_REASSIGN

    assert director.failures.count("run-x") == 3
    item = director.human_review.get_review_by_task_id("t3")
    assert item.escalation_reason == "cascading_failure"
    assert item.escalation_context == {"pipeline_id": "run-x", "failed_task_count": 3}
    types = [e.type for e in director.events.recent()]
    assert types == [EventType.AGENT_FAILURE] * 3 + [EventType.PIPELINE_BLOCKED]

    director.workspace.write_task(make_task(id="t4", pipeline_id="run-x", status=TaskStatus.PENDING))
    with pytest.raises(PipelinePausedError) as exc:
        asyncio.run(director.execute_and_review_task("t4"))
    assert exc.value.failures == 3
    assert client.calls == []

    result = director.human_review.submit_feedback(
        item.id, HumanFeedback(decision=HumanDecision.APPROVE, reviewer="dana")
    )
    assert result.resumed_tasks == []
    assert director.workspace.read_task("t3").status == TaskStatus.FAILED

    director.resume_pipeline("run-x")
    result = asyncio.run(director.execute_and_review_task("t4"))
    assert result.decision.action == DirectorAction.GOAL_COMPLETE
    assert director.failures.count("run-x") == 0


def test_failures_in_other_pipelines_do_not_pause(tmp_path):
    director = make_director(tmp_path)
    for i, run in enumerate(("run-a", "run-a", "run-b")):
        director.workspace.write_task(make_task(id=f"t{i}", pipeline_id=run))
        director.review_completed_task(f"t{i}")

    assert director.failures.count("run-a") == 2
    assert director.failures.count("run-b") == 1
    assert director.human_review.get_pending_reviews() == []


def test_model_failure_is_counted(tmp_path):
    director = make_director(tmp_path, client=MockClient(RuntimeError("model down")))
    director.workspace.write_task(make_task(status=TaskStatus.PENDING))

    with pytest.raises(RuntimeError):
        asyncio.run(director.execute_and_review_task(make_task().id))

    assert director.workspace.read_task(make_task().id).status == TaskStatus.FAILED
    assert director.failures.count(GLOBAL_KEY) == 1
    assert director.events.recent()[-1].data["taskId"] == make_task().id


def test_exhausted_budget_emits_event(tmp_path):
    director = make_director(tmp_path, client=MockClient())
    director.workspace.write_task(make_task(status=TaskStatus.PENDING, priority=Priority.P0))

    with pytest.raises(BudgetBlockedError) as exc:
        asyncio.run(director.execute_and_review_task(make_task().id, director.compute_budget_state(1000)))

    assert exc.value.level == "exhausted"
    event = director.events.recent()[-1]
    assert event.type == EventType.BUDGET_CRITICAL
    assert event.data["percentUsed"] == 100.0


# ---------------------------------------------------------------------------
# Goal iteration
# ---------------------------------------------------------------------------


def _cancel_all(director, goal_id):
    for task in director.workspace.list_tasks(goal_id=goal_id, status=TaskStatus.PENDING):
        director.workspace.update_task_status(task.id, TaskStatus.CANCELLED)


def test_iterate_goal_until_limit(tmp_path):
    director = make_director(tmp_path)
    goal = director.create_goal("Lift signups", GoalCategory.OPTIMIZATION)
    first = director.plan_goal_tasks(director.decompose_goal(goal), goal)

    with pytest.raises(MarketeamError, match="active task"):
        director.iterate_goal(goal.id, "Signups flat")

    _cancel_all(director, goal.id)
    second = director.iterate_goal(goal.id, "Signups flat")
    assert second.iteration == 2
    assert second.escalation is None
    assert [t.to for t in second.tasks] == [t.to for t in first]
    assert all(t.metadata["goal_iteration"] == 2 for t in second.tasks)
    assert "Previous iteration: Signups flat" in second.tasks[0].goal
    assert director.read_goal(goal.id).metadata["iteration"] == 2
    assert director.workspace.read_learnings()[-1].action_taken == "goal_iterate"
    assert sorted(t.id for t in director.advance_goal(goal.id)) == sorted(t.id for t in second.tasks)

    _cancel_all(director, goal.id)
    assert director.iterate_goal(goal.id).iteration == 3

    _cancel_all(director, goal.id)
    final = director.iterate_goal(goal.id, "Still flat")
    assert final.tasks == []
    assert final.escalation.reason == EscalationReason.GOAL_UNMET_AFTER_MAX_ITERATIONS
    assert final.escalation.context == {"goal_id": goal.id, "iteration": 3, "reason": "Still flat"}
    assert director.read_goal(goal.id).metadata["iteration"] == 3
    assert director.workspace.read_learnings()[-1].outcome == "failure"
