"""Human review manager — escalated items, their lifecycle, and applying human feedback."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from marketeam.config import DirectorConfig
from marketeam.errors import HumanReviewError
from marketeam.models import (
    Escalation,
    EscalationSeverity,
    HumanDecision,
    HumanFeedback,
    HumanReviewItem,
    HumanReviewStatus,
    LearningEntry,
    Task,
    TaskInput,
    TaskStatus,
    Urgency,
    generate_human_review_id,
    generate_task_id,
    now_iso,
)
from marketeam.state_machine import is_terminal
from marketeam.workspace import FileWorkspace

logger = logging.getLogger(__name__)

OPEN_STATUSES = (HumanReviewStatus.PENDING, HumanReviewStatus.IN_REVIEW)

_PAST_TENSE = {
    HumanDecision.APPROVE: "approved",
    HumanDecision.OVERRIDE_APPROVE: "override-approved",
    HumanDecision.REVISE: "requested revision of",
    HumanDecision.REJECT: "rejected",
    HumanDecision.CANCEL: "cancelled",
}


@dataclass
class HumanReviewStats:
    total: int = 0
    pending: int = 0
    in_review: int = 0
    resolved: int = 0
    expired: int = 0
    by_urgency: dict[str, int] = field(default_factory=lambda: {u.value: 0 for u in Urgency})
    average_resolution_time_ms: float | None = None

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "in_review": self.in_review,
            "resolved": self.resolved,
            "expired": self.expired,
            "by_urgency": self.by_urgency,
            "average_resolution_time_ms": self.average_resolution_time_ms,
        }


@dataclass
class FeedbackResult:
    item: HumanReviewItem
    resumed_tasks: list[Task]


def urgency_for(severity: EscalationSeverity) -> Urgency:
    if severity == EscalationSeverity.CRITICAL:
        return Urgency.CRITICAL
    if severity == EscalationSeverity.WARNING:
        return Urgency.HIGH
    return Urgency.NORMAL


class HumanReviewManager:
    def __init__(self, workspace: FileWorkspace, config: DirectorConfig | None = None):
        self.workspace = workspace
        self.config = config or DirectorConfig()

    def escalate_to_human(self, task: Task, escalation: Escalation) -> HumanReviewItem:
        item = HumanReviewItem(
            id=generate_human_review_id(task.id),
            task_id=task.id,
            goal_id=task.goal_id,
            pipeline_id=task.pipeline_id,
            skill=task.to,
            urgency=urgency_for(escalation.severity),
            escalation_reason=escalation.reason.value,
            escalation_message=escalation.message,
            escalation_context=dict(escalation.context),
        )
        self.workspace.write_human_review(item)
        logger.info(f"Escalated {task.id} to human review as {item.id} ({item.urgency.value})")
        return item

    def get_pending_reviews(
        self,
        urgency: str | list[str] | None = None,
        skill: str | None = None,
        goal_id: str | None = None,
        status: str | list[str] | None = None,
    ) -> list[HumanReviewItem]:
        return self.workspace.list_human_reviews(
            status=status or HumanReviewStatus.PENDING.value,
            urgency=urgency,
            skill=skill,
            goal_id=goal_id,
        )

    def get_review_item(self, review_id: str) -> HumanReviewItem:
        return self.workspace.read_human_review(review_id)

    def get_review_by_task_id(self, task_id: str) -> HumanReviewItem | None:
        return next((i for i in self.workspace.list_human_reviews() if i.task_id == task_id), None)

    def get_stats(self) -> HumanReviewStats:
        items = self.workspace.list_human_reviews()
        stats = HumanReviewStats(total=len(items))
        durations = []
        for item in items:
            if item.status == HumanReviewStatus.PENDING:
                stats.pending += 1
            elif item.status == HumanReviewStatus.IN_REVIEW:
                stats.in_review += 1
            elif item.status == HumanReviewStatus.RESOLVED:
                stats.resolved += 1
                if item.resolved_at:
                    delta = datetime.fromisoformat(item.resolved_at) - datetime.fromisoformat(item.created_at)
                    if delta.total_seconds() >= 0:
                        durations.append(delta.total_seconds() * 1000)
            elif item.status == HumanReviewStatus.EXPIRED:
                stats.expired += 1
            stats.by_urgency[item.urgency.value] += 1
        if durations:
            stats.average_resolution_time_ms = sum(durations) / len(durations)
        return stats

    def mark_in_review(self, review_id: str) -> HumanReviewItem:
        item = self.workspace.read_human_review(review_id)
        if item.status != HumanReviewStatus.PENDING:
            raise HumanReviewError(
                f'Cannot start review {review_id}: status is "{item.status.value}", expected "pending"'
            )
        return self.workspace.update_human_review(review_id, status=HumanReviewStatus.IN_REVIEW)

    def expire_stale(self, max_age_seconds: float) -> list[HumanReviewItem]:
        """Mark open items older than max_age_seconds as expired."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
        expired = []
        for item in self.workspace.list_human_reviews(status=[s.value for s in OPEN_STATUSES]):
            if datetime.fromisoformat(item.created_at) < cutoff:
                expired.append(
                    self.workspace.update_human_review(
                        item.id, status=HumanReviewStatus.EXPIRED, resolved_at=now_iso()
                    )
                )
        if expired:
            logger.warning(f"Expired {len(expired)} stale human review item(s)")
        return expired

    def submit_feedback(self, review_id: str, feedback: HumanFeedback) -> FeedbackResult:
        item = self.workspace.read_human_review(review_id)
        if item.status not in OPEN_STATUSES:
            raise HumanReviewError(
                f'Cannot submit feedback for review {review_id}: status is "{item.status.value}", '
                'expected "pending" or "in_review"'
            )
        if feedback.decision == HumanDecision.REVISE and not feedback.revision_instructions:
            raise HumanReviewError('Revision instructions are required when decision is "revise"')

        task = self.workspace.read_task(item.task_id)
        # Cascading-failure items point at a task that already failed; its status stays put
        settled = is_terminal(task.status)
        decision = feedback.decision
        if decision in (HumanDecision.APPROVE, HumanDecision.OVERRIDE_APPROVE):
            resumed = [] if settled else [self.workspace.update_task_status(task.id, TaskStatus.PENDING)]
        elif decision == HumanDecision.REVISE:
            if not settled:
                self.workspace.update_task_status(task.id, TaskStatus.FAILED)
            revision = self._revision_task(task, feedback.revision_instructions)
            self.workspace.write_task(revision)
            resumed = [revision]
        elif decision in (HumanDecision.REJECT, HumanDecision.CANCEL):
            if not settled:
                self.workspace.update_task_status(task.id, TaskStatus.FAILED)
            resumed = []
        else:
            raise ValueError(f"Unhandled human decision: {decision}")

        resolved_at = now_iso()
        self.workspace.update_human_review(
            review_id, status=HumanReviewStatus.RESOLVED, feedback=feedback, resolved_at=resolved_at
        )
        failed = decision in (HumanDecision.REJECT, HumanDecision.CANCEL)
        self.workspace.append_learning(
            LearningEntry(
                timestamp=resolved_at,
                agent="director",
                goal_id=item.goal_id or "unknown",
                outcome="failure" if failed else "success",
                learning=(
                    f"Human reviewer ({feedback.reviewer}) {_PAST_TENSE[decision]} task {item.task_id} "
                    f"({item.skill}). Notes: {feedback.notes}"
                ),
                action_taken=f"Applied human decision: {decision.value}",
                tags=[item.skill, "human-review"],
            )
        )
        logger.info(f"Human review {review_id} resolved: {decision.value} by {feedback.reviewer}")
        return FeedbackResult(self.workspace.read_human_review(review_id), resumed)

    @staticmethod
    def _revision_task(task: Task, instructions: str) -> Task:
        now = now_iso()
        return Task(
            id=generate_task_id(task.to),
            created_at=now,
            updated_at=now,
            from_="director",
            to=task.to,
            priority=task.priority,
            deadline=task.deadline,
            status=TaskStatus.PENDING,
            revision_count=task.revision_count + 1,
            goal_id=task.goal_id,
            pipeline_id=task.pipeline_id,
            goal=task.goal,
            inputs=[*task.inputs, TaskInput(task.output.path, "Previous output to revise")],
            requirements=f"HUMAN REVISION REQUESTED:\n{instructions}\n\nOriginal requirements: {task.requirements}",
            output=task.output,
            next=task.next,
            tags=[*task.tags, "revision", "human-requested"],
            metadata={
                **task.metadata,
                "original_task_id": task.id,
                "revision_of": task.id,
                "human_reviewed": True,
            },
        )
