"""Dispatch gates — budget admission and consecutive-failure tracking for the worker side."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from marketeam.escalation import CASCADING_FAILURE_THRESHOLD, EscalationEngine
from marketeam.events import EventType, SystemEvent
from marketeam.models import BudgetLevel, BudgetState, Escalation, Task

logger = logging.getLogger(__name__)

GLOBAL_KEY = "GLOBAL"


class BudgetDecision(str, Enum):
    ALLOW = "allow"
    DEFER = "defer"
    BLOCK = "block"


@dataclass
class BatchSplit:
    allowed: list[Task] = field(default_factory=list)
    deferred: list[Task] = field(default_factory=list)


class BudgetGate:
    """Admission control for dispatch. Budget state is fetched fresh on every check."""

    def __init__(
        self,
        budget_provider: Callable[[], BudgetState] | None = None,
        on_event: Callable[[SystemEvent], object] | None = None,
    ):
        self.budget_provider = budget_provider
        self.on_event = on_event

    def _current(self, budget: BudgetState | None) -> BudgetState:
        if budget is not None:
            return budget
        if self.budget_provider is None:
            raise ValueError("BudgetGate needs a budget state or a budget provider")
        return self.budget_provider()

    def check(self, task: Task, budget: BudgetState | None = None) -> BudgetDecision:
        budget = self._current(budget)
        if budget.level == BudgetLevel.EXHAUSTED:
            logger.warning(f"Budget exhausted ({budget.percent_used:.1f}%), blocking {task.id}")
            self._emit(EventType.BUDGET_CRITICAL, budget)
            return BudgetDecision.BLOCK
        if task.priority not in budget.allowed_priorities:
            logger.info(f"Deferring {task.id} ({task.priority.value}) at budget level {budget.level.value}")
            return BudgetDecision.DEFER
        if budget.level != BudgetLevel.NORMAL:
            logger.warning(
                f"Allowing {task.id} ({task.priority.value}) at budget level {budget.level.value} "
                f"({budget.percent_used:.1f}% used)"
            )
            self._emit(EventType.BUDGET_WARNING, budget)
        return BudgetDecision.ALLOW

    def filter_batch(self, tasks: list[Task], budget: BudgetState | None = None) -> BatchSplit:
        budget = self._current(budget)
        split = BatchSplit()
        for task in tasks:
            if self.check(task, budget) == BudgetDecision.ALLOW:
                split.allowed.append(task)
            else:
                split.deferred.append(task)
        return split

    def _emit(self, event_type: EventType, budget: BudgetState):
        if self.on_event is None:
            return
        self.on_event(
            SystemEvent(
                type=event_type,
                source="budget-gate",
                data={
                    "level": budget.level.value,
                    "percentUsed": budget.percent_used,
                    "spent": budget.spent,
                    "totalBudget": budget.total_budget,
                },
            )
        )


class FailureTracker:
    """Consecutive failures per pipeline. Any success resets that pipeline's count."""

    def __init__(self, threshold: int = CASCADING_FAILURE_THRESHOLD, escalation: EscalationEngine | None = None):
        self.threshold = threshold
        self.escalation = escalation or EscalationEngine()
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def record_failure(self, task_id: str, pipeline_id: str | None) -> int:
        key = pipeline_id or GLOBAL_KEY
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1
            count = self._counts[key]
        logger.warning(f"Task {task_id} failed ({count} consecutive in {key})")
        return count

    def record_success(self, task_id: str, pipeline_id: str | None):
        with self._lock:
            self._counts[pipeline_id or GLOBAL_KEY] = 0

    def count(self, pipeline_id: str | None) -> int:
        with self._lock:
            return self._counts.get(pipeline_id or GLOBAL_KEY, 0)

    def should_pause(self, pipeline_id: str | None = None) -> bool:
        """With a pipeline id, check that pipeline; without one, check every pipeline."""
        with self._lock:
            if pipeline_id is not None:
                return self._counts.get(pipeline_id, 0) >= self.threshold
            return any(c >= self.threshold for c in self._counts.values())

    def check_escalation(self, pipeline_id: str | None) -> Escalation | None:
        key = pipeline_id or GLOBAL_KEY
        return self.escalation.check_cascading_failure(self.count(pipeline_id), key)

    def reset(self, pipeline_id: str | None = None):
        with self._lock:
            if pipeline_id is None:
                self._counts.clear()
            else:
                self._counts.pop(pipeline_id, None)
