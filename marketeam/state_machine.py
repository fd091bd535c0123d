"""Task state machine — the fixed table of legal status transitions."""

from __future__ import annotations

from marketeam.errors import InvalidTransitionError
from marketeam.models import TaskStatus

S = TaskStatus

TERMINAL_STATUSES: frozenset[TaskStatus] = frozenset({S.APPROVED, S.FAILED, S.CANCELLED})

VALID_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    S.PENDING: frozenset({S.ASSIGNED, S.IN_PROGRESS, S.BLOCKED, S.DEFERRED, S.FAILED, S.CANCELLED}),
    S.ASSIGNED: frozenset({S.IN_PROGRESS, S.PENDING, S.BLOCKED, S.FAILED, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.FAILED, S.BLOCKED, S.CANCELLED}),
    S.COMPLETED: frozenset({S.IN_REVIEW, S.APPROVED, S.REVISION, S.FAILED, S.BLOCKED}),
    S.IN_REVIEW: frozenset({S.APPROVED, S.REVISION, S.FAILED, S.BLOCKED}),
    S.REVISION: frozenset({S.IN_PROGRESS, S.PENDING, S.FAILED, S.CANCELLED}),
    S.BLOCKED: frozenset({S.PENDING, S.FAILED, S.CANCELLED}),
    S.DEFERRED: frozenset({S.PENDING, S.FAILED, S.CANCELLED}),
    S.APPROVED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}


def is_terminal(status: TaskStatus) -> bool:
    return TaskStatus(status) in TERMINAL_STATUSES


def is_valid_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """Staying in the same status counts as valid; leaving a terminal status never does."""
    from_status, to_status = TaskStatus(from_status), TaskStatus(to_status)
    if from_status == to_status:
        return True
    return to_status in VALID_TRANSITIONS[from_status]


def validate_transition(task_id: str, from_status: TaskStatus, to_status: TaskStatus) -> None:
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransitionError(task_id, TaskStatus(from_status).value, TaskStatus(to_status).value)
