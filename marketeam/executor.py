"""Skill executor — runs one task through the model and writes its output."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from marketeam.catalog import SkillRegistry, default_registry
from marketeam.config import MODEL_TIMEOUT_MS
from marketeam.models import BudgetState, ModelTier, Task, TaskStatus
from marketeam.providers.base import MessageRequest, ModelClient
from marketeam.providers.tiers import estimate_cost, model_for, select_model_tier
from marketeam.workspace import FileWorkspace

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 8192


@dataclass
class ExecutionResult:
    task_id: str
    skill: str
    content: str
    output_path: str
    model_tier: ModelTier
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    duration_ms: int = 0


def build_system_prompt(task: Task, registry: SkillRegistry) -> str:
    skill = registry.get(task.to)
    squad = registry.squad_of(task.to) or "foundation"
    description = skill.description if skill else ""
    return (
        f"You are the {task.to} specialist on the {squad} squad of a marketing team. {description}.\n\n"
        "Work only from the product context and upstream inputs you are given. "
        "Structure your output as markdown with a heading for every required section. "
        "Be specific and actionable; back recommendations with data or established principles."
    )


def build_user_message(task: Task, product_context: str | None, upstream: list[tuple[str, str, str]]) -> str:
    sections = ["## Product Context"]
    sections.append(
        product_context
        or "No product marketing context available. Work with the information provided in the task."
    )
    sections.append(
        "\n".join(
            [
                "## Task Assignment\n",
                f"- **Task ID:** {task.id}",
                f"- **From:** {task.from_}",
                f"- **Priority:** {task.priority.value}",
                f"- **Goal:** {task.goal}",
            ]
        )
    )
    sections.append("## Upstream Inputs")
    if upstream:
        for path, description, content in upstream:
            sections.append(f"### Input: {description}\nSource: {path}\n\n{content}")
    else:
        sections.append("No upstream inputs for this task.")
    sections.append(f"## Requirements\n\n{task.requirements}")
    if task.revision_count > 0:
        sections.append(
            "## Revision Context\n\n"
            f"This is revision #{task.revision_count}. Previous output was reviewed and changes were requested. "
            "See the previous output in the upstream inputs above."
        )
    sections.append(
        "## Output Instructions\n\n"
        "- Write your complete output below\n"
        f"- Format: {task.output.format}\n"
        "- Be thorough and follow the skill guidelines above"
    )
    return "\n\n".join(sections)


class SkillExecutor:
    """Executes a task with the model tier its skill and the budget call for."""

    def __init__(self, workspace: FileWorkspace, client: ModelClient, registry: SkillRegistry | None = None):
        self.workspace = workspace
        self.client = client
        self.registry = registry or default_registry()

    async def execute(self, task: Task, budget_state: BudgetState | None = None) -> ExecutionResult:
        tier = select_model_tier(task.to, budget_state, registry=self.registry)
        self.workspace.update_task_status(task.id, TaskStatus.IN_PROGRESS)

        product_context = self.workspace.read_context() if self.workspace.context_exists() else None
        upstream = []
        for item in task.inputs:
            if item.path.startswith("context/") or not self.workspace.file_exists(item.path):
                continue
            upstream.append((item.path, item.description, self.workspace.read_file(item.path)))

        logger.info(f"Executing {task.id} ({task.to}) on {tier.value} with {len(upstream)} upstream input(s)")
        try:
            result = await self.client.create_message(
                MessageRequest(
                    model=model_for(tier),
                    system=build_system_prompt(task, self.registry),
                    messages=[{"role": "user", "content": build_user_message(task, product_context, upstream)}],
                    max_tokens=MAX_OUTPUT_TOKENS,
                    timeout_ms=MODEL_TIMEOUT_MS,
                )
            )
        except Exception:
            self.workspace.update_task_status(task.id, TaskStatus.FAILED)
            logger.error(f"Execution of {task.id} failed")
            raise

        path = self.workspace.write_task_output(task, result.content)
        self.workspace.update_task_status(task.id, TaskStatus.COMPLETED)
        return ExecutionResult(
            task_id=task.id,
            skill=task.to,
            content=result.content,
            output_path=path,
            model_tier=tier,
            input_tokens=result.input_tokens,
            output_tokens=result.output_tokens,
            cost=estimate_cost(tier, result.input_tokens, result.output_tokens),
            duration_ms=result.duration_ms,
        )
