"""File-backed workspace — tasks, reviews, outputs, learnings, and human review items on disk."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from marketeam.catalog import CONTEXT_PATH, FOUNDATION_SKILL
from marketeam.errors import WorkspaceError
from marketeam.models import (
    HumanReviewItem,
    LearningEntry,
    Review,
    Task,
    TaskStatus,
    now_iso,
)
from marketeam.state_machine import validate_transition

logger = logging.getLogger(__name__)

WORKSPACE_DIRS = ("context", "tasks", "reviews", "outputs", "goals", "memory", "metrics", "human-review")
LEARNINGS_FILE = "memory/learnings.jsonl"


class FileWorkspace:
    """One directory tree per workspace. All writes are atomic and serialized by a lock."""

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self):
        for name in WORKSPACE_DIRS:
            (self.root / name).mkdir(parents=True, exist_ok=True)
        logger.info(f"Workspace initialized at {self.root}")

    def is_initialized(self) -> bool:
        return all((self.root / name).is_dir() for name in WORKSPACE_DIRS)

    # ------------------------------------------------------------------
    # Raw files
    # ------------------------------------------------------------------

    def _resolve(self, relative_path: str) -> Path:
        path = (self.root / relative_path).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise WorkspaceError(f"Path escapes workspace: {relative_path}", relative_path)
        return path

    def read_file(self, relative_path: str) -> str:
        path = self._resolve(relative_path)
        if not path.is_file():
            raise WorkspaceError(f"File not found: {relative_path}", relative_path)
        return path.read_text(encoding="utf-8")

    def write_file(self, relative_path: str, content: str):
        path = self._resolve(relative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp, path)
            except OSError:
                Path(tmp).unlink(missing_ok=True)
                raise

    def file_exists(self, relative_path: str) -> bool:
        return self._resolve(relative_path).is_file()

    def list_files(self, relative_dir: str) -> list[str]:
        path = self._resolve(relative_dir)
        if not path.is_dir():
            return []
        return sorted(p.name for p in path.iterdir() if p.is_file() and not p.name.startswith("."))

    def delete_file(self, relative_path: str):
        path = self._resolve(relative_path)
        if not path.is_file():
            raise WorkspaceError(f"File not found: {relative_path}", relative_path)
        path.unlink()

    def _read_json(self, relative_path: str) -> dict:
        try:
            return json.loads(self.read_file(relative_path))
        except json.JSONDecodeError as e:
            raise WorkspaceError(f"Corrupt record {relative_path}: {e}", relative_path) from e

    def _write_json(self, relative_path: str, data: dict):
        self.write_file(relative_path, json.dumps(data, indent=2) + "\n")

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def write_task(self, task: Task):
        self._write_json(f"tasks/{task.id}.json", task.to_dict())

    def read_task(self, task_id: str) -> Task:
        return Task.from_dict(self._read_json(f"tasks/{task_id}.json"))

    def list_tasks(
        self,
        status: TaskStatus | list[TaskStatus] | None = None,
        skill: str | None = None,
        goal_id: str | None = None,
        pipeline_id: str | None = None,
    ) -> list[Task]:
        statuses = [status] if isinstance(status, TaskStatus) else status
        tasks = []
        for name in self.list_files("tasks"):
            if not name.endswith(".json"):
                continue
            task = self.read_task(name[: -len(".json")])
            if statuses and task.status not in statuses:
                continue
            if skill and task.to != skill:
                continue
            if goal_id and task.goal_id != goal_id:
                continue
            if pipeline_id and task.pipeline_id != pipeline_id:
                continue
            tasks.append(task)
        return sorted(tasks, key=lambda t: t.created_at)

    def update_task_status(self, task_id: str, status: TaskStatus) -> Task:
        """Move a task to a new status. Illegal transitions raise InvalidTransitionError."""
        task = self.read_task(task_id)
        validate_transition(task_id, task.status, status)
        task.status = status
        task.updated_at = now_iso()
        self.write_task(task)
        return task

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def write_review(self, review: Review):
        index = review.id.rsplit("-", 1)[-1]
        self._write_json(f"reviews/{review.task_id}/review-{index}.json", review.to_dict())

    def read_review(self, task_id: str, review_index: int | None = None) -> Review:
        reviews = self.list_reviews(task_id)
        if not reviews:
            raise WorkspaceError(f"No reviews for task {task_id}", f"reviews/{task_id}")
        if review_index is None:
            return reviews[-1]
        return Review.from_dict(self._read_json(f"reviews/{task_id}/review-{review_index}.json"))

    def list_reviews(self, task_id: str) -> list[Review]:
        names = [n for n in self.list_files(f"reviews/{task_id}") if n.startswith("review-") and n.endswith(".json")]
        names.sort(key=lambda n: int(n[len("review-") : -len(".json")]))
        return [Review.from_dict(self._read_json(f"reviews/{task_id}/{n}")) for n in names]

    # ------------------------------------------------------------------
    # Outputs and context
    # ------------------------------------------------------------------

    @staticmethod
    def output_path(squad: str | None, skill: str, task_id: str) -> str:
        if skill == FOUNDATION_SKILL:
            return CONTEXT_PATH
        return f"outputs/{squad or 'foundation'}/{skill}/{task_id}.md"

    def write_output(self, squad: str | None, skill: str, task_id: str, content: str):
        self.write_file(self.output_path(squad, skill, task_id), content)

    def read_output(self, squad: str | None, skill: str, task_id: str) -> str:
        return self.read_file(self.output_path(squad, skill, task_id))

    @staticmethod
    def task_output_path(task: Task) -> str:
        """Where a task's output lives; the foundation skill always writes the shared context file."""
        return CONTEXT_PATH if task.to == FOUNDATION_SKILL else task.output.path

    def write_task_output(self, task: Task, content: str) -> str:
        path = self.task_output_path(task)
        self.write_file(path, content)
        return path

    def read_task_output(self, task: Task) -> str:
        """The task's output, or an empty string when nothing has been written yet."""
        path = self.task_output_path(task)
        if not self.file_exists(path):
            return ""
        return self.read_file(path)

    def read_context(self) -> str:
        return self.read_file(CONTEXT_PATH)

    def context_exists(self) -> bool:
        return self.file_exists(CONTEXT_PATH)

    # ------------------------------------------------------------------
    # Learnings
    # ------------------------------------------------------------------

    def append_learning(self, entry: LearningEntry):
        path = self._resolve(LEARNINGS_FILE)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")

    def read_learnings(self) -> list[LearningEntry]:
        if not self.file_exists(LEARNINGS_FILE):
            return []
        entries = []
        for line in self.read_file(LEARNINGS_FILE).splitlines():
            if line.strip():
                entries.append(LearningEntry.from_dict(json.loads(line)))
        return entries

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def write_metrics_report(self, date: str, content: str):
        self.write_file(f"metrics/{date}.md", content)

    def read_metrics_report(self, date: str) -> str:
        return self.read_file(f"metrics/{date}.md")

    # ------------------------------------------------------------------
    # Human review
    # ------------------------------------------------------------------

    def write_human_review(self, item: HumanReviewItem):
        self._write_json(f"human-review/{item.id}.json", item.to_dict())

    def read_human_review(self, review_id: str) -> HumanReviewItem:
        return HumanReviewItem.from_dict(self._read_json(f"human-review/{review_id}.json"))

    def list_human_reviews(
        self,
        status: str | list[str] | None = None,
        urgency: str | list[str] | None = None,
        skill: str | None = None,
        goal_id: str | None = None,
    ) -> list[HumanReviewItem]:
        statuses = {status} if isinstance(status, str) else set(status or [])
        urgencies = {urgency} if isinstance(urgency, str) else set(urgency or [])
        items = []
        for name in self.list_files("human-review"):
            if not name.endswith(".json"):
                continue
            item = self.read_human_review(name[: -len(".json")])
            if statuses and item.status.value not in statuses:
                continue
            if urgencies and item.urgency.value not in urgencies:
                continue
            if skill and item.skill != skill:
                continue
            if goal_id and item.goal_id != goal_id:
                continue
            items.append(item)
        return sorted(items, key=lambda i: i.created_at)

    def update_human_review(self, review_id: str, **changes) -> HumanReviewItem:
        item = self.read_human_review(review_id)
        for key, value in changes.items():
            if not hasattr(item, key):
                raise WorkspaceError(f"Unknown human review field: {key}", f"human-review/{review_id}.json")
            setattr(item, key, value)
        self.write_human_review(item)
        return item
