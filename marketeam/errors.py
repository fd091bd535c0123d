"""Exception hierarchy for marketeam."""

from __future__ import annotations


class MarketeamError(Exception):
    """Base class for every error raised by marketeam."""


class SkillRegistryError(MarketeamError):
    """The skill catalog failed validation. `errors` lists every problem found."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        lines = "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(f"Skill registry validation failed with {len(self.errors)} error(s):\n{lines}")


class UnknownTemplateError(MarketeamError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f'Unknown pipeline template: "{name}"')


class InvalidTransitionError(MarketeamError):
    """A task status change that the transition table does not allow."""

    def __init__(self, task_id: str, from_status: str, to_status: str):
        self.task_id = task_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition for task {task_id}: {from_status} -> {to_status}")


class GoalFormatError(MarketeamError):
    """A goal or plan document could not be parsed."""


class HumanReviewError(MarketeamError):
    """Human feedback was submitted in a way the review item cannot accept."""


class BudgetBlockedError(MarketeamError):
    def __init__(self, task_id: str, priority: str, level: str):
        self.task_id = task_id
        self.priority = priority
        self.level = level
        super().__init__(f"Task {task_id} ({priority}) is blocked by budget (level: {level})")


class DirectorConfigError(MarketeamError):
    """The Director was asked to do something it has no collaborator for."""


class WorkspaceError(MarketeamError):
    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class PipelinePausedError(MarketeamError):
    """Too many consecutive failures in one pipeline; execution waits for a resume."""

    def __init__(self, pipeline_id: str, failures: int):
        self.pipeline_id = pipeline_id
        self.failures = failures
        super().__init__(f"Pipeline {pipeline_id} is paused after {failures} consecutive failure(s)")
