"""Pipeline factory — compiles templates and goal plans into definitions, runs, and tasks."""

from __future__ import annotations

import logging
import re
import secrets
import time

from marketeam.catalog import (
    CONTEXT_PATH,
    PIPELINE_TEMPLATES,
    SkillRegistry,
    default_registry,
    get_template,
)
from marketeam.errors import SkillRegistryError, UnknownTemplateError
from marketeam.models import (
    Goal,
    GoalPlan,
    PipelineDefinition,
    PipelineRun,
    PipelineStep,
    PipelineTemplate,
    PipelineTrigger,
    Priority,
    Task,
    TaskInput,
    TaskNext,
    TaskOutput,
    generate_task_id,
)

logger = logging.getLogger(__name__)

OUTPUT_FORMAT = "Markdown per SKILL.md specification"

TRIGGER_SCHEDULES = {
    "weekly": "0 0 * * 1",
    "monthly": "0 0 1 * *",
    "daily": "0 6 * * *",
}


def pipeline_id_for(name: str) -> str:
    return re.sub(r"\s+", "-", name.lower())


def parse_trigger(text: str) -> PipelineTrigger:
    lowered = text.lower()
    for keyword, cron in TRIGGER_SCHEDULES.items():
        if keyword in lowered:
            return PipelineTrigger(kind="schedule", cron=cron)
    return PipelineTrigger(kind="manual")


def template_to_definition(template: PipelineTemplate) -> PipelineDefinition:
    steps = [
        PipelineStep(kind="parallel", skills=list(step))
        if isinstance(step, tuple)
        else PipelineStep(kind="sequential", skills=[step])
        for step in template.steps
    ]
    return PipelineDefinition(
        id=pipeline_id_for(template.name),
        name=template.name,
        description=template.description,
        steps=steps,
        trigger=parse_trigger(template.trigger),
        default_priority=template.default_priority,
    )


def goal_plan_to_definition(plan: GoalPlan, goal: Goal) -> PipelineDefinition:
    steps = []
    for phase in plan.phases:
        if len(phase.skills) == 1:
            steps.append(PipelineStep(kind="sequential", skills=list(phase.skills)))
        else:
            # A multi-skill phase becomes one parallel step whether or not it was flagged parallel
            steps.append(PipelineStep(kind="parallel", skills=list(phase.skills)))
    return PipelineDefinition(
        id=f"goal-plan-{goal.id}",
        name=f"Plan for: {goal.description[:60]}",
        description=goal.description,
        steps=steps,
        trigger=PipelineTrigger(kind="manual"),
        default_priority=goal.priority,
    )


def create_run(definition: PipelineDefinition, goal_id: str | None = None) -> PipelineRun:
    return PipelineRun(
        id=f"run-{definition.id}-{int(time.time() * 1000)}-{secrets.token_hex(3)}",
        pipeline_id=definition.id,
        goal_id=goal_id,
    )


def output_path_for(skill: str, task_id: str, registry: SkillRegistry | None = None) -> str:
    registry = registry or default_registry()
    if not registry.is_valid_skill(skill):
        raise SkillRegistryError([f'Unknown skill "{skill}"'])
    squad = registry.squad_of(skill)
    return f"outputs/{squad or 'foundation'}/{skill}/{task_id}.md"


class PipelineFactory:
    """Builds pipeline definitions, runs and step tasks against one skill registry."""

    def __init__(self, registry: SkillRegistry | None = None):
        self.registry = registry or default_registry()
        self._definitions: dict[str, PipelineDefinition] = {
            t.name: template_to_definition(t) for t in PIPELINE_TEMPLATES
        }

    def definitions(self) -> list[PipelineDefinition]:
        return list(self._definitions.values())

    def get_definition(self, template_name: str) -> PipelineDefinition:
        definition = self._definitions.get(template_name)
        if definition is None:
            raise UnknownTemplateError(template_name)
        return definition

    def create_tasks_for_step(
        self,
        step: PipelineStep,
        step_index: int,
        total_steps: int,
        run: PipelineRun,
        goal_description: str,
        priority: Priority,
        input_paths: list[str] | None = None,
    ) -> list[Task]:
        if step.kind == "review":
            return []
        skills = step.skills[:1] if step.kind == "sequential" else step.skills
        unknown = [s for s in skills if not self.registry.is_valid_skill(s)]
        if unknown:
            raise SkillRegistryError(
                [f'Step {step_index + 1} of "{run.pipeline_id}" uses unregistered skill "{s}"' for s in unknown]
            )
        is_last = step_index >= total_steps - 1
        return [
            self._build_task(skill, step_index, is_last, run, goal_description, priority, input_paths or [])
            for skill in skills
        ]

    def _build_task(
        self,
        skill: str,
        step_index: int,
        is_last: bool,
        run: PipelineRun,
        goal_description: str,
        priority: Priority,
        input_paths: list[str],
    ) -> Task:
        task_id = generate_task_id(skill)
        inputs = [TaskInput(CONTEXT_PATH, "Product context")]
        inputs += [TaskInput(path, "Output from previous pipeline step") for path in input_paths]
        return Task(
            id=task_id,
            from_="director",
            to=skill,
            priority=priority,
            goal=goal_description,
            goal_id=run.goal_id,
            pipeline_id=run.id,
            inputs=inputs,
            requirements=(
                f'Complete {skill} work as part of pipeline "{run.pipeline_id}" for goal: {goal_description}'
            ),
            output=TaskOutput(path=output_path_for(skill, task_id, self.registry), format=OUTPUT_FORMAT),
            next=TaskNext.director_review() if is_last else TaskNext.pipeline_continue(run.id),
            tags=[run.pipeline_id, skill],
            metadata={"step_index": step_index, "pipeline_run_id": run.id},
        )

    def instantiate(
        self,
        template_name: str,
        goal_description: str,
        goal_id: str | None = None,
        priority: Priority | None = None,
    ) -> tuple[PipelineDefinition, PipelineRun, list[Task]]:
        """Create a run for a template and the tasks of its first step."""
        if get_template(template_name) is None:
            raise UnknownTemplateError(template_name)
        definition = self.get_definition(template_name)
        run = create_run(definition, goal_id)
        tasks = self.create_tasks_for_step(
            definition.steps[0],
            0,
            len(definition.steps),
            run,
            goal_description,
            priority or definition.default_priority,
        )
        run.task_ids.extend(t.id for t in tasks)
        logger.info(f"Instantiated pipeline {definition.id} as {run.id} with {len(tasks)} task(s)")
        return definition, run, tasks
