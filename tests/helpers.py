"""Shared fixtures for marketeam tests: sample records, sample output, and a scripted model client."""

from __future__ import annotations

from marketeam.config import BudgetConfig, DirectorConfig
from marketeam.models import (
    BudgetLevel,
    BudgetState,
    Goal,
    GoalCategory,
    ModelTier,
    Priority,
    Task,
    TaskInput,
    TaskNext,
    TaskOutput,
    TaskStatus,
)
from marketeam.providers.base import MessageRequest, MessageResult, ModelClient
from marketeam.providers.tiers import MODEL_MAP
from marketeam.workspace import FileWorkspace

TASK_ID = "page-cro-20260219-abc123"
GOAL_ID = "goal-20260219-abc123"

SAMPLE_OUTPUT = """# Page CRO Audit

## Executive Summary

This audit evaluates the signup page for conversion optimization opportunities.
We identified several key areas for improvement based on CRO best practices.

## Findings

### Above the Fold
- Headline clarity: The current headline does not communicate the core value proposition
- CTA button: Low contrast, positioned below the fold on mobile

### Form Analysis
- Too many required fields (7 fields; best practice is 3-5)
- No inline validation feedback
- Missing progress indicator

## Recommendations

1. Simplify the form to 3 essential fields (name, email, password)
2. Move CTA above the fold with high-contrast design
3. Add inline validation and progress indicators
4. Implement social proof near the CTA

## Expected Impact

Estimated conversion lift: 15-25% based on similar optimizations.
"""


def make_workspace(tmp_path) -> FileWorkspace:
    workspace = FileWorkspace(tmp_path / "ws")
    workspace.init()
    return workspace


def make_goal(**overrides) -> Goal:
    fields = dict(
        id=GOAL_ID,
        description="Increase signup conversion rate by 20%",
        category=GoalCategory.OPTIMIZATION,
        priority=Priority.P1,
        created_at="2026-02-19T00:00:00+00:00",
    )
    fields.update(overrides)
    return Goal(**fields)


def make_task(**overrides) -> Task:
    fields = dict(
        id=TASK_ID,
        created_at="2026-02-19T00:00:00+00:00",
        updated_at="2026-02-19T00:00:00+00:00",
        from_="director",
        to="page-cro",
        priority=Priority.P1,
        status=TaskStatus.COMPLETED,
        goal_id=GOAL_ID,
        goal="Increase signup conversion rate by 20%",
        inputs=[TaskInput("context/product-marketing-context.md", "Product context")],
        requirements="Audit the signup page for conversion issues",
        output=TaskOutput(f"outputs/convert/page-cro/{TASK_ID}.md", "Markdown per SKILL.md specification"),
        next=TaskNext.director_review(),
        tags=["page-cro"],
    )
    fields.update(overrides)
    return Task(**fields)


def make_config(max_revisions: int = 3, total_budget: float = 1000.0) -> DirectorConfig:
    return DirectorConfig(max_revisions_per_task=max_revisions, budget=BudgetConfig(total_monthly=total_budget))


def make_budget(**overrides) -> BudgetState:
    fields = dict(
        total_budget=1000.0,
        spent=0.0,
        percent_used=0.0,
        level=BudgetLevel.NORMAL,
        allowed_priorities=[Priority.P0, Priority.P1, Priority.P2, Priority.P3],
        model_override=None,
    )
    fields.update(overrides)
    return BudgetState(**fields)


class MockClient(ModelClient):
    """Records every request and answers from a script.

    The script is a single response reused for every call, a list consumed in
    order, or a callable taking (request, call_index). A response is the
    content string, a dict of MessageResult fields, or an exception to raise.
    """

    def __init__(self, handler=None):
        self.handler = SAMPLE_OUTPUT if handler is None else handler
        self.calls: list[MessageRequest] = []

    async def create_message(self, request: MessageRequest) -> MessageResult:
        index = len(self.calls)
        self.calls.append(request)

        if callable(self.handler):
            response = self.handler(request, index)
        elif isinstance(self.handler, list):
            response = self.handler[index]
        else:
            response = self.handler

        if isinstance(response, Exception):
            raise response
        result = dict(
            content=SAMPLE_OUTPUT,
            model=MODEL_MAP[ModelTier.SONNET],
            input_tokens=1000,
            output_tokens=500,
            stop_reason="end_turn",
            duration_ms=2500,
        )
        if isinstance(response, str):
            result["content"] = response
        else:
            result.update(response)
        return MessageResult(**result)
