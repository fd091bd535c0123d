"""Director — goal lifecycle, pipeline launches, and applying review decisions.

The Director composes the router, decomposer, pipeline factory, review engine,
escalation engine and human review manager. It is the only component that
performs side effects for a review: the decision is computed first, then
written (review, follow-up tasks, status change, learning, escalation).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from marketeam.catalog import SkillRegistry, default_registry
from marketeam.config import DirectorConfig
from marketeam.decomposer import decompose_goal
from marketeam.errors import (
    BudgetBlockedError,
    DirectorConfigError,
    GoalFormatError,
    MarketeamError,
    PipelinePausedError,
)
from marketeam.escalation import EscalationEngine
from marketeam.events import EventBus, EventType
from marketeam.executor import ExecutionResult, SkillExecutor
from marketeam.gates import GLOBAL_KEY, BudgetDecision, BudgetGate, FailureTracker
from marketeam.human_review import HumanReviewManager
from marketeam.models import (
    BudgetState,
    DirectorAction,
    Escalation,
    Goal,
    GoalCategory,
    GoalPhase,
    GoalPlan,
    LearningEntry,
    PipelineDefinition,
    PipelineRun,
    Priority,
    ReviewDecision,
    RoutingDecision,
    Task,
    TaskStatus,
    generate_goal_id,
    now_iso,
)
from marketeam.pipeline_factory import PipelineFactory, create_run, goal_plan_to_definition
from marketeam.providers.base import ModelClient
from marketeam.quality import QualityScorer
from marketeam.review import ReviewEngine
from marketeam.router import route_goal, select_skills
from marketeam.state_machine import is_terminal, validate_transition
from marketeam.workspace import FileWorkspace

logger = logging.getLogger(__name__)

MAX_RECENT_LEARNINGS = 5

STATUS_AFTER_ACTION: dict[DirectorAction, TaskStatus] = {
    DirectorAction.APPROVE: TaskStatus.APPROVED,
    DirectorAction.GOAL_COMPLETE: TaskStatus.APPROVED,
    DirectorAction.PIPELINE_NEXT: TaskStatus.APPROVED,
    DirectorAction.REVISE: TaskStatus.REVISION,
    DirectorAction.REJECT_REASSIGN: TaskStatus.FAILED,
    DirectorAction.ESCALATE_HUMAN: TaskStatus.BLOCKED,
}


# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

_SQUAD_ROLES = {
    "strategy": "decides what to do and why",
    "creative": "writes the content and copy",
    "convert": "optimizes conversion touchpoints",
    "activate": "turns signups into retained users",
    "measure": "closes the feedback loop",
}


def build_system_prompt(registry: SkillRegistry | None = None) -> str:
    registry = registry or default_registry()
    team = []
    for squad in registry.squad_names:
        team.append(f"### {squad.title()} squad ({_SQUAD_ROLES.get(squad, 'specialists')})")
        for skill in registry.squad_skills(squad):
            definition = registry.get(skill)
            team.append(f"- {skill}: {definition.description if definition else ''}")
        team.append("")
    team_text = "\n".join(team)

    return f"""You are the Marketing Director. You coordinate a team of {len(registry.skill_names) - 1} specialist \
marketing agents grouped into {len(registry.squad_names)} squads, and you are accountable for everything they ship.

You break operator goals into tasks, assign each task to the right agent, review what comes back, and decide \
whether to approve it, send it back for revision, or escalate it to a human.

## Team

{team_text}
## Routing rules

1. Strategic goals (positioning, pricing, launches) go to the Strategy squad.
2. Content goals go to the Creative squad, fed by Strategy output.
3. Optimization goals start with a Convert audit, then Creative execution, then Measure for testing.
4. Retention goals (churn, activation, upgrades) go to the Activate squad.
5. Competitive goals go to Strategy for research, then Creative for the response.
6. The Measure squad always runs last, and its results are written back to memory.
7. If measurement shows the target was missed, plan another iteration with the new data.

## Reviewing output

Judge every output on completeness against the task requirements, specificity and structure, alignment with \
the brand voice in the product marketing context, evidence behind each recommendation, and whether the next \
agent or a human can act on it.

- APPROVE when the output meets every requirement.
- REVISE when the problems are fixable; list the exact changes you need.
- REJECT when the output is off track and the task must be reassigned or re-scoped.

## When to escalate to a human

- Spend beyond the planned budget threshold
- Changes to brand voice, positioning or pricing
- Legal or compliance questions
- An agent revised three or more times without approval
- Three or more consecutive agent failures in one pipeline

## Memory

Read the product marketing context and past learnings before planning new work. After a goal finishes, record \
what worked, what failed, and what to try next time.
"""


DIRECTOR_SYSTEM_PROMPT = build_system_prompt()


# ---------------------------------------------------------------------------
# Goal and plan documents
# ---------------------------------------------------------------------------

_FRONTMATTER = re.compile(r"^---\n([\s\S]*?)\n---")
_DESCRIPTION = re.compile(r"## Description\n\n([\s\S]*?)$")
_PHASE = re.compile(
    r"^## Phase (\d+): (.+)\n\n([\s\S]*?)\n\n"
    r"- \*\*Parallel:\*\* (true|false)\n"
    r"- \*\*Depends on:\*\* (.+)\n"
    r"- \*\*Skills:\*\* (.*)$",
    re.MULTILINE,
)


def _parse_frontmatter(markdown: str, kind: str) -> dict[str, str]:
    match = _FRONTMATTER.match(markdown)
    if not match:
        raise GoalFormatError(f"Invalid {kind} file: no frontmatter")
    fields = {}
    for line in match.group(1).split("\n"):
        key, sep, value = line.partition(":")
        if sep and key.strip():
            fields[key.strip()] = value.strip()
    return fields


def serialize_goal(goal: Goal) -> str:
    lines = [
        "---",
        f"id: {goal.id}",
        f"category: {goal.category.value}",
        f"priority: {goal.priority.value}",
        f"created_at: {goal.created_at}",
        f"deadline: {goal.deadline or 'none'}",
        f"metadata: {json.dumps(goal.metadata)}",
        "---",
        "",
        f"# Goal: {goal.id}",
        "",
        "## Description",
        "",
        goal.description,
        "",
    ]
    return "\n".join(lines)


def deserialize_goal(markdown: str) -> Goal:
    fm = _parse_frontmatter(markdown, "goal")
    if not fm.get("id"):
        raise GoalFormatError("Invalid goal file: missing id")
    if not fm.get("created_at"):
        raise GoalFormatError("Invalid goal file: missing created_at")

    category = fm.get("category", "")
    if category not in {c.value for c in GoalCategory}:
        raise GoalFormatError(f'Invalid goal file: invalid category "{category}"')
    priority = fm.get("priority", "")
    if priority not in {p.value for p in Priority}:
        raise GoalFormatError(f'Invalid goal file: invalid priority "{priority}"')

    try:
        metadata = json.loads(fm.get("metadata") or "{}")
    except json.JSONDecodeError as e:
        raise GoalFormatError(f"Invalid goal file: metadata is not valid JSON ({e})") from e

    body = _DESCRIPTION.search(markdown)
    deadline = fm.get("deadline")
    return Goal(
        id=fm["id"],
        description=body.group(1) if body else "",
        category=GoalCategory(category),
        priority=Priority(priority),
        created_at=fm["created_at"],
        deadline=None if not deadline or deadline == "none" else deadline,
        metadata=metadata,
    )


def serialize_plan(plan: GoalPlan) -> str:
    lines = [
        "---",
        f"goal_id: {plan.goal_id}",
        f"estimated_task_count: {plan.estimated_task_count}",
        f"pipeline_template: {plan.pipeline_template_name or 'none'}",
        "---",
        "",
        f"# Goal Plan: {plan.goal_id}",
        "",
    ]
    for i, phase in enumerate(plan.phases):
        depends = f"Phase {phase.depends_on_phase + 1}" if phase.depends_on_phase is not None else "none"
        lines += [
            f"## Phase {i + 1}: {phase.name}",
            "",
            phase.description,
            "",
            f"- **Parallel:** {str(phase.parallel).lower()}",
            f"- **Depends on:** {depends}",
            f"- **Skills:** {', '.join(phase.skills)}",
            "",
        ]
    return "\n".join(lines)


def deserialize_plan(markdown: str) -> GoalPlan:
    fm = _parse_frontmatter(markdown, "plan")
    if not fm.get("goal_id"):
        raise GoalFormatError("Invalid plan file: missing goal_id")

    phases = []
    for match in _PHASE.finditer(markdown):
        _, name, description, parallel, depends, skills = match.groups()
        depends = depends.strip()
        phases.append(
            GoalPhase(
                name=name.strip(),
                description=description.strip(),
                skills=[s.strip() for s in skills.split(",") if s.strip()],
                parallel=parallel == "true",
                depends_on_phase=None if depends == "none" else int(depends.removeprefix("Phase ")) - 1,
            )
        )

    template = fm.get("pipeline_template")
    return GoalPlan(
        goal_id=fm["goal_id"],
        phases=phases,
        estimated_task_count=int(fm.get("estimated_task_count") or sum(len(p.skills) for p in phases)),
        pipeline_template_name=None if not template or template == "none" else template,
    )


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class PipelineLaunch:
    definition: PipelineDefinition
    run: PipelineRun
    tasks: list[Task] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "definition": self.definition.to_dict(),
            "run": self.run.to_dict(),
            "tasks": [t.to_dict() for t in self.tasks],
        }


@dataclass
class ExecutionReview:
    execution: ExecutionResult
    decision: ReviewDecision
    review_cost: float
    total_cost: float


@dataclass
class GoalIteration:
    iteration: int
    tasks: list[Task] = field(default_factory=list)
    escalation: Escalation | None = None

    def to_dict(self) -> dict:
        return {
            "iteration": self.iteration,
            "tasks": [t.to_dict() for t in self.tasks],
            "escalation": self.escalation.to_dict() if self.escalation else None,
        }


def goal_iteration(goal: Goal) -> int:
    return int(goal.metadata.get("iteration", 1))


def _active_tasks(tasks: list[Task]) -> list[Task]:
    """Non-terminal tasks, minus revision-status tasks that already have a replacement."""
    superseded = {t.metadata.get("revision_of") for t in tasks} - {None}
    return [
        t
        for t in tasks
        if not is_terminal(t.status) and not (t.status == TaskStatus.REVISION and t.id in superseded)
    ]


# ---------------------------------------------------------------------------
# Director
# ---------------------------------------------------------------------------


class Director:
    def __init__(
        self,
        workspace: FileWorkspace,
        config: DirectorConfig | None = None,
        client: ModelClient | None = None,
        registry: SkillRegistry | None = None,
        quality_scorer: QualityScorer | None = None,
        executor: SkillExecutor | None = None,
        budget_provider: Callable[[], BudgetState] | None = None,
        event_log: Path | None = None,
    ):
        self.workspace = workspace
        self.config = config or DirectorConfig()
        self.client = client
        self.registry = registry or default_registry()
        self.budget_provider = budget_provider

        self.factory = PipelineFactory(self.registry)
        self.review_engine = ReviewEngine(self.config, client, quality_scorer)
        self.escalation = EscalationEngine(self.config)
        self.human_review = HumanReviewManager(workspace, self.config)
        self.events = EventBus(self, log_file=event_log)
        self.budget_gate = BudgetGate(budget_provider, on_event=self.events.emit)
        self.failures = FailureTracker(escalation=self.escalation)
        if executor is None and client is not None:
            executor = SkillExecutor(workspace, client, self.registry)
        self.executor = executor

    @property
    def system_prompt(self) -> str:
        return DIRECTOR_SYSTEM_PROMPT

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    def create_goal(
        self,
        description: str,
        category: GoalCategory | str,
        priority: Priority | str | None = None,
        deadline: str | None = None,
    ) -> Goal:
        goal = Goal(
            id=generate_goal_id(),
            description=description,
            category=GoalCategory(category),
            priority=Priority(priority) if priority else self.config.default_priority,
            deadline=deadline,
        )
        recent = self._recent_learnings(select_skills(route_goal(goal.category)))
        if recent:
            goal.metadata["recent_learnings"] = [e.to_dict() for e in recent]

        self.workspace.write_file(f"goals/{goal.id}.md", serialize_goal(goal))
        logger.info(f"Created goal {goal.id} ({goal.category.value}, {goal.priority.value})")
        return goal

    def _recent_learnings(self, skills: list[str]) -> list[LearningEntry]:
        relevant = set(skills)
        matches = [
            e for e in self.workspace.read_learnings() if e.agent in relevant or relevant.intersection(e.tags)
        ]
        matches.sort(key=lambda e: e.timestamp, reverse=True)
        return matches[:MAX_RECENT_LEARNINGS]

    def read_goal(self, goal_id: str) -> Goal:
        return deserialize_goal(self.workspace.read_file(f"goals/{goal_id}.md"))

    def list_goals(self) -> list[Goal]:
        names = [n for n in self.workspace.list_files("goals") if n.endswith(".md") and not n.endswith("-plan.md")]
        goals = [self.read_goal(n[: -len(".md")]) for n in names]
        return sorted(goals, key=lambda g: g.created_at)

    def route_goal(self, category: GoalCategory | str) -> RoutingDecision:
        return route_goal(category)

    def decompose_goal(self, goal: Goal) -> GoalPlan:
        return decompose_goal(goal, route_goal(goal.category), self.registry)

    def read_plan(self, goal_id: str) -> GoalPlan:
        return deserialize_plan(self.workspace.read_file(f"goals/{goal_id}-plan.md"))

    def plan_goal_tasks(self, plan: GoalPlan, goal: Goal) -> list[Task]:
        """Persist the plan and materialize the tasks of its first phase."""
        self.workspace.write_file(f"goals/{plan.goal_id}-plan.md", serialize_plan(plan))
        if not plan.phases:
            return []

        definition = goal_plan_to_definition(plan, goal)
        run = create_run(definition, goal.id)
        tasks = self.factory.create_tasks_for_step(
            definition.steps[0], 0, len(definition.steps), run, goal.description, goal.priority, []
        )
        for task in tasks:
            self.workspace.write_task(task)
        logger.info(f"Planned goal {goal.id}: {len(plan.phases)} phase(s), {len(tasks)} task(s) in phase 1")
        return tasks

    def advance_goal(self, goal_id: str) -> list[Task] | str:
        """Materialize the next phase of a goal, or return "complete" when every phase is done.

        While any task of the goal is still active, those tasks are returned unchanged.
        A task in revision whose replacement task exists no longer counts as active.
        Only tasks of the goal's current iteration count toward phase completion.
        """
        goal = self.read_goal(goal_id)
        iteration = goal_iteration(goal)
        goal_tasks = [
            t for t in self.workspace.list_tasks(goal_id=goal_id) if t.metadata.get("goal_iteration", 1) == iteration
        ]
        active = _active_tasks(goal_tasks)
        if active:
            return active

        plan = self.decompose_goal(goal)
        approved = [t for t in goal_tasks if t.status == TaskStatus.APPROVED]
        approved_by_skill: dict[str, int] = {}
        for t in approved:
            approved_by_skill[t.to] = approved_by_skill.get(t.to, 0) + 1

        # A skill that appears in several phases needs one approved task per phase
        consumed: dict[str, int] = {}
        next_index = None
        for i, phase in enumerate(plan.phases):
            if not all(approved_by_skill.get(s, 0) > consumed.get(s, 0) for s in phase.skills):
                next_index = i
                break
            for s in phase.skills:
                consumed[s] = consumed.get(s, 0) + 1

        if next_index is None:
            logger.info(f"Goal {goal_id} complete")
            return "complete"

        definition = goal_plan_to_definition(plan, goal)
        run = create_run(definition, goal_id)
        run.current_step_index = next_index
        tasks = self.factory.create_tasks_for_step(
            definition.steps[next_index],
            next_index,
            len(definition.steps),
            run,
            goal.description,
            goal.priority,
            [self.workspace.task_output_path(t) for t in approved],
        )
        for task in tasks:
            task.metadata["goal_iteration"] = iteration
            self.workspace.write_task(task)
        logger.info(f"Advanced goal {goal_id} to phase {next_index + 1} with {len(tasks)} task(s)")
        return tasks

    def iterate_goal(self, goal_id: str, reason: str = "") -> GoalIteration:
        """Run the plan again when measurement shows the goal's target was missed.

        Approved outputs of the previous pass feed the first phase of the new one.
        At the iteration limit no tasks are created and the escalation is returned instead.
        """
        goal = self.read_goal(goal_id)
        iteration = goal_iteration(goal)
        previous = [
            t for t in self.workspace.list_tasks(goal_id=goal_id) if t.metadata.get("goal_iteration", 1) == iteration
        ]
        active = _active_tasks(previous)
        if active:
            raise MarketeamError(f"Goal {goal_id} still has {len(active)} active task(s) in iteration {iteration}")

        escalation = self.escalation.check_iteration_escalation(goal_id, iteration, reason)
        if escalation is not None:
            logger.warning(escalation.message)
            self.workspace.append_learning(
                LearningEntry(
                    agent="director",
                    goal_id=goal_id,
                    outcome="failure",
                    learning=f"Goal missed its target after {iteration} iteration(s). {reason}".strip(),
                    action_taken=DirectorAction.ESCALATE_HUMAN.value,
                    tags=["goal-iteration"],
                )
            )
            return GoalIteration(iteration=iteration, escalation=escalation)

        goal.metadata["iteration"] = iteration + 1
        self.workspace.write_file(f"goals/{goal.id}.md", serialize_goal(goal))

        plan = self.decompose_goal(goal)
        definition = goal_plan_to_definition(plan, goal)
        run = create_run(definition, goal_id)
        description = goal.description if not reason else f"{goal.description}\n\nPrevious iteration: {reason}"
        tasks = self.factory.create_tasks_for_step(
            definition.steps[0],
            0,
            len(definition.steps),
            run,
            description,
            goal.priority,
            [self.workspace.task_output_path(t) for t in previous if t.status == TaskStatus.APPROVED],
        )
        for task in tasks:
            task.metadata["goal_iteration"] = iteration + 1
            self.workspace.write_task(task)

        self.workspace.append_learning(
            LearningEntry(
                agent="director",
                goal_id=goal_id,
                outcome="partial",
                learning=f"Goal missed its target on iteration {iteration}. {reason}".strip(),
                action_taken=DirectorAction.GOAL_ITERATE.value,
                tags=["goal-iteration"],
            )
        )
        logger.info(f"Goal {goal_id} iteration {iteration + 1} started with {len(tasks)} task(s)")
        return GoalIteration(iteration=iteration + 1, tasks=tasks)

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def start_pipeline(
        self,
        template_name: str,
        goal_description: str,
        priority: Priority | str | None = None,
        goal_id: str | None = None,
    ) -> PipelineLaunch:
        definition, run, tasks = self.factory.instantiate(
            template_name, goal_description, goal_id, Priority(priority) if priority else None
        )
        for task in tasks:
            self.workspace.write_task(task)
        run.status = "running"
        return PipelineLaunch(definition, run, tasks)

    def _definition_for_run(self, run: PipelineRun) -> PipelineDefinition:
        for definition in self.factory.definitions():
            if definition.id == run.pipeline_id:
                return definition
        raise MarketeamError(f"No pipeline definition for run {run.id} ({run.pipeline_id})")

    def advance_pipeline(self, run: PipelineRun, completed_task_ids: list[str] | None = None) -> list[Task]:
        """Materialize the next step of a template run; marks the run completed after its last step."""
        definition = self._definition_for_run(run)
        if completed_task_ids is None:
            completed = [
                t
                for t in self.workspace.list_tasks(status=TaskStatus.APPROVED, pipeline_id=run.id)
                if t.metadata.get("step_index") == run.current_step_index
            ]
        else:
            completed = [self.workspace.read_task(tid) for tid in completed_task_ids]
        input_paths = [self.workspace.task_output_path(t) for t in completed if t.status == TaskStatus.APPROVED]

        goal_description = completed[0].goal if completed else definition.description
        priority = completed[0].priority if completed else definition.default_priority

        index = run.current_step_index + 1
        while index < len(definition.steps):
            tasks = self.factory.create_tasks_for_step(
                definition.steps[index], index, len(definition.steps), run, goal_description, priority, input_paths
            )
            if tasks:
                for task in tasks:
                    self.workspace.write_task(task)
                run.current_step_index = index
                run.task_ids.extend(t.id for t in tasks)
                run.status = "running"
                logger.info(f"Run {run.id} advanced to step {index + 1}/{len(definition.steps)}")
                return tasks
            index += 1

        run.current_step_index = len(definition.steps) - 1
        run.status = "completed"
        run.completed_at = now_iso()
        logger.info(f"Run {run.id} completed")
        return []

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review_completed_task(self, task_id: str) -> ReviewDecision:
        task = self.workspace.read_task(task_id)
        output = self.workspace.read_task_output(task)
        decision = self.review_engine.evaluate_task(task, output, self.workspace.list_reviews(task_id))
        self.apply_decision(task, decision)
        return decision

    def apply_decision(self, task: Task, decision: ReviewDecision):
        """Write everything a review decision implies.

        The status change is checked against the stored task first, so an illegal
        transition raises before any review or follow-up task reaches the workspace.
        """
        status = STATUS_AFTER_ACTION.get(decision.action)
        if status is not None:
            current = self.workspace.read_task(task.id)
            validate_transition(task.id, current.status, status)

        if decision.review:
            self.workspace.write_review(decision.review)
        for next_task in decision.next_tasks:
            self.workspace.write_task(next_task)
        if status is not None:
            self.workspace.update_task_status(task.id, status)

        if decision.learning:
            self.workspace.append_learning(decision.learning)
        if decision.escalation:
            self.human_review.escalate_to_human(task, decision.escalation)
        self._track_outcome(task, status)

    def _track_outcome(self, task: Task, status: TaskStatus | None):
        """Feed the failure tracker; the threshold pauses the pipeline and raises a cascading escalation."""
        if status == TaskStatus.APPROVED:
            self.failures.record_success(task.id, task.pipeline_id)
        elif status == TaskStatus.FAILED:
            self._record_failure(task)

    def _record_failure(self, task: Task):
        count = self.failures.record_failure(task.id, task.pipeline_id)
        self.events.emit_simple(
            EventType.AGENT_FAILURE, "director", taskId=task.id, skill=task.to, pipelineId=task.pipeline_id
        )
        escalation = self.failures.check_escalation(task.pipeline_id)
        if escalation is None or count != self.failures.threshold:
            return
        logger.warning(escalation.message)
        self.human_review.escalate_to_human(task, escalation)
        self.events.emit_simple(
            EventType.PIPELINE_BLOCKED, "director", pipelineId=task.pipeline_id or GLOBAL_KEY, failures=count
        )

    def resume_pipeline(self, pipeline_id: str | None):
        """Clear the consecutive-failure count so a paused pipeline can execute again."""
        self.failures.reset(pipeline_id or GLOBAL_KEY)
        logger.info(f"Resumed pipeline {pipeline_id or GLOBAL_KEY}")

    async def execute_and_review_task(
        self, task_id: str, budget_state: BudgetState | None = None
    ) -> ExecutionReview:
        if self.client is None or self.executor is None:
            raise DirectorConfigError("A model client is required to execute tasks")

        task = self.workspace.read_task(task_id)
        pipeline_key = task.pipeline_id or GLOBAL_KEY
        if self.failures.should_pause(pipeline_key):
            raise PipelinePausedError(pipeline_key, self.failures.count(pipeline_key))
        if budget_state is None and self.budget_provider is not None:
            budget_state = self.budget_provider()
        if budget_state is not None and self.budget_gate.check(task, budget_state) != BudgetDecision.ALLOW:
            raise BudgetBlockedError(task.id, task.priority.value, budget_state.level.value)

        try:
            execution = await self.executor.execute(task, budget_state)
        except Exception:
            if self.workspace.read_task(task_id).status == TaskStatus.FAILED:
                self._record_failure(task)
            raise
        task = self.workspace.read_task(task_id)
        result = await self.review_engine.evaluate_task_semantic(
            task, execution.content, self.workspace.list_reviews(task_id), budget_state
        )
        self.apply_decision(task, result.decision)

        total = execution.cost + result.review_cost
        logger.info(f"Executed and reviewed {task_id}: {result.decision.action.value}, cost ${total:.4f}")
        return ExecutionReview(execution, result.decision, result.review_cost, total)

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def compute_budget_state(self, spent: float) -> BudgetState:
        return self.escalation.compute_budget_state(spent)

    def should_execute_task(self, task: Task, budget_state: BudgetState) -> bool:
        return self.escalation.should_execute_task(task, budget_state)
