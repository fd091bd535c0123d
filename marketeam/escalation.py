"""Escalation engine — budget state, admission checks, and escalation signals."""

from __future__ import annotations

import logging

from marketeam.config import DirectorConfig
from marketeam.models import (
    BudgetLevel,
    BudgetState,
    Escalation,
    EscalationReason,
    EscalationSeverity,
    ModelTier,
    Priority,
    Task,
)

logger = logging.getLogger(__name__)

CASCADING_FAILURE_THRESHOLD = 3

ALLOWED_PRIORITIES: dict[BudgetLevel, list[Priority]] = {
    BudgetLevel.NORMAL: [Priority.P0, Priority.P1, Priority.P2, Priority.P3],
    BudgetLevel.WARNING: [Priority.P0, Priority.P1, Priority.P2],
    BudgetLevel.THROTTLE: [Priority.P0, Priority.P1],
    BudgetLevel.CRITICAL: [Priority.P0],
    BudgetLevel.EXHAUSTED: [],
}


class EscalationEngine:
    """Pure decisions over spend, revision counts and failure counts. Holds no state."""

    def __init__(self, config: DirectorConfig | None = None):
        self.config = config or DirectorConfig()

    def compute_budget_state(self, spent: float) -> BudgetState:
        budget = self.config.budget
        total = budget.total_monthly
        percent = spent * 100 / total if total > 0 else 0.0

        if percent >= 100:
            level = BudgetLevel.EXHAUSTED
        elif percent >= budget.critical_at:
            level = BudgetLevel.CRITICAL
        elif percent >= budget.throttle_at:
            level = BudgetLevel.THROTTLE
        elif percent >= budget.warning_at:
            level = BudgetLevel.WARNING
        else:
            level = BudgetLevel.NORMAL

        return BudgetState(
            total_budget=total,
            spent=spent,
            percent_used=percent,
            level=level,
            allowed_priorities=list(ALLOWED_PRIORITIES[level]),
            model_override=ModelTier.HAIKU if level == BudgetLevel.CRITICAL else None,
        )

    def should_execute_task(self, task: Task, state: BudgetState) -> bool:
        return task.priority in state.allowed_priorities

    def check_budget_escalation(self, state: BudgetState) -> Escalation | None:
        if state.level == BudgetLevel.NORMAL:
            return None
        severity = (
            EscalationSeverity.CRITICAL
            if state.level in (BudgetLevel.CRITICAL, BudgetLevel.EXHAUSTED)
            else EscalationSeverity.WARNING
        )
        allowed = ", ".join(p.value for p in state.allowed_priorities) or "NONE"
        escalation = Escalation(
            reason=EscalationReason.BUDGET_THRESHOLD,
            severity=severity,
            message=(
                f"Budget at {state.percent_used:.1f}% ({state.level.value}). Allowed priorities: {allowed}."
            ),
            context={"spent": state.spent, "total": state.total_budget, "level": state.level.value},
        )
        logger.warning(escalation.message)
        return escalation

    def check_revision_escalation(self, task: Task) -> Escalation | None:
        limit = self.config.max_revisions_per_task
        if task.revision_count < limit:
            return None
        return Escalation(
            reason=EscalationReason.AGENT_LOOP_DETECTED,
            severity=EscalationSeverity.WARNING,
            message=(
                f"Task {task.id} has been revised {task.revision_count} times (max: {limit}). "
                "Requires human decision."
            ),
            context={"task_id": task.id, "skill": task.to, "revision_count": task.revision_count},
        )

    def check_cascading_failure(self, failed_count: int, pipeline_id: str) -> Escalation | None:
        if failed_count < CASCADING_FAILURE_THRESHOLD:
            return None
        return Escalation(
            reason=EscalationReason.CASCADING_FAILURE,
            severity=EscalationSeverity.CRITICAL,
            message=(
                f"Pipeline {pipeline_id} has {failed_count} consecutive failures. "
                "System may need human intervention."
            ),
            context={"pipeline_id": pipeline_id, "failed_task_count": failed_count},
        )

    def check_iteration_escalation(self, goal_id: str, iteration: int, reason: str = "") -> Escalation | None:
        limit = self.config.max_iterations_per_goal
        if iteration < limit:
            return None
        return Escalation(
            reason=EscalationReason.GOAL_UNMET_AFTER_MAX_ITERATIONS,
            severity=EscalationSeverity.WARNING,
            message=(
                f"Goal {goal_id} missed its target after {iteration} iteration(s) (max: {limit}). "
                "Requires human decision."
            ),
            context={"goal_id": goal_id, "iteration": iteration, "reason": reason},
        )
