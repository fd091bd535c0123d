"""Core data structures for marketeam."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _date_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d")


def generate_task_id(skill: str) -> str:
    """`{skill}-{YYYYMMDD}-{6 hex}`, e.g. copywriting-20260219-a1b2c3."""
    return f"{skill}-{_date_stamp()}-{secrets.token_hex(3)}"


def generate_goal_id() -> str:
    return f"goal-{_date_stamp()}-{secrets.token_hex(3)}"


def generate_review_id(task_id: str, index: int) -> str:
    return f"review-{task_id}-{index}"


def generate_human_review_id(task_id: str) -> str:
    return f"hr-{task_id}-{secrets.token_hex(2)}"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Squad(str, Enum):
    STRATEGY = "strategy"
    CREATIVE = "creative"
    CONVERT = "convert"
    ACTIVATE = "activate"
    MEASURE = "measure"


class GoalCategory(str, Enum):
    STRATEGIC = "strategic"
    CONTENT = "content"
    OPTIMIZATION = "optimization"
    RETENTION = "retention"
    COMPETITIVE = "competitive"
    MEASUREMENT = "measurement"


class Priority(str, Enum):
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class TaskStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    IN_REVIEW = "in_review"
    REVISION = "revision"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    APPROVED = "approved"
    FAILED = "failed"
    CANCELLED = "cancelled"


class NextType(str, Enum):
    AGENT = "agent"
    PIPELINE_CONTINUE = "pipeline_continue"
    DIRECTOR_REVIEW = "director_review"
    COMPLETE = "complete"


class Verdict(str, Enum):
    APPROVE = "APPROVE"
    REVISE = "REVISE"
    REJECT = "REJECT"


class DirectorAction(str, Enum):
    APPROVE = "approve"
    REVISE = "revise"
    REJECT_REASSIGN = "reject_reassign"
    ESCALATE_HUMAN = "escalate_human"
    PIPELINE_NEXT = "pipeline_next"
    GOAL_COMPLETE = "goal_complete"
    GOAL_ITERATE = "goal_iterate"


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    SUGGESTION = "suggestion"


class BudgetLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    THROTTLE = "throttle"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


class EscalationReason(str, Enum):
    BUDGET_THRESHOLD = "budget_threshold"
    BRAND_CHANGE = "brand_change"
    LEGAL_RISK = "legal_risk"
    PRICING_CHANGE = "pricing_change"
    AGENT_LOOP_DETECTED = "agent_loop_detected"
    CASCADING_FAILURE = "cascading_failure"
    GOAL_UNMET_AFTER_MAX_ITERATIONS = "goal_unmet_after_max_iterations"
    MANUAL_APPROVAL_REQUIRED = "manual_approval_required"


class EscalationSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class ModelTier(str, Enum):
    OPUS = "opus"
    SONNET = "sonnet"
    HAIKU = "haiku"


class QualityDimension(str, Enum):
    COMPLETENESS = "completeness"
    CLARITY = "clarity"
    ACTIONABILITY = "actionability"
    BRAND_ALIGNMENT = "brand_alignment"
    DATA_DRIVEN = "data_driven"
    TECHNICAL_ACCURACY = "technical_accuracy"
    CREATIVITY = "creativity"


class Urgency(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"


class HumanReviewStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    EXPIRED = "expired"


class HumanDecision(str, Enum):
    APPROVE = "approve"
    REVISE = "revise"
    REJECT = "reject"
    OVERRIDE_APPROVE = "override_approve"
    CANCEL = "cancel"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Skill:
    name: str
    squad: str | None  # None only for the foundation skill
    description: str = ""


@dataclass(frozen=True)
class PipelineTemplate:
    """Reusable sequence of steps. A step is a skill name or a tuple of skills run in parallel."""

    name: str
    description: str
    steps: tuple[str | tuple[str, ...], ...]
    trigger: str
    default_priority: Priority


# ---------------------------------------------------------------------------
# Goals and plans
# ---------------------------------------------------------------------------


@dataclass
class Goal:
    id: str
    description: str
    category: GoalCategory
    priority: Priority
    created_at: str = field(default_factory=now_iso)
    deadline: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "category": self.category.value,
            "priority": self.priority.value,
            "created_at": self.created_at,
            "deadline": self.deadline,
            "metadata": self.metadata,
        }


@dataclass
class GoalPhase:
    name: str
    description: str
    skills: list[str]
    parallel: bool
    depends_on_phase: int | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "skills": self.skills,
            "parallel": self.parallel,
            "depends_on_phase": self.depends_on_phase,
        }


@dataclass
class GoalPlan:
    goal_id: str
    phases: list[GoalPhase]
    estimated_task_count: int
    pipeline_template_name: str | None = None

    def to_dict(self) -> dict:
        return {
            "goal_id": self.goal_id,
            "phases": [p.to_dict() for p in self.phases],
            "estimated_task_count": self.estimated_task_count,
            "pipeline_template_name": self.pipeline_template_name,
        }


@dataclass
class RoutingRule:
    squad: Squad
    skills: list[str]
    reason: str


@dataclass
class RoutingDecision:
    goal_category: GoalCategory
    routes: list[RoutingRule]
    measure_squad_final: bool = True


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------


@dataclass
class PipelineStep:
    """One step of a pipeline definition.

    kind is "sequential" (one skill), "parallel" (several skills) or
    "review" (a director checkpoint that produces no tasks).
    """

    kind: str
    skills: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "skills": self.skills}


@dataclass
class PipelineTrigger:
    kind: str  # schedule | manual | event
    cron: str | None = None
    event_type: str | None = None

    def to_dict(self) -> dict:
        return {"kind": self.kind, "cron": self.cron, "event_type": self.event_type}


@dataclass
class PipelineDefinition:
    id: str
    name: str
    description: str
    steps: list[PipelineStep]
    trigger: PipelineTrigger
    default_priority: Priority

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
            "trigger": self.trigger.to_dict(),
            "default_priority": self.default_priority.value,
        }


@dataclass
class PipelineRun:
    id: str
    pipeline_id: str
    goal_id: str | None = None
    started_at: str = field(default_factory=now_iso)
    completed_at: str | None = None
    status: str = "pending"  # pending | running | completed | failed
    current_step_index: int = 0
    task_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pipeline_id": self.pipeline_id,
            "goal_id": self.goal_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "status": self.status,
            "current_step_index": self.current_step_index,
            "task_ids": self.task_ids,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PipelineRun:
        return cls(
            id=data["id"],
            pipeline_id=data["pipeline_id"],
            goal_id=data.get("goal_id"),
            started_at=data.get("started_at") or now_iso(),
            completed_at=data.get("completed_at"),
            status=data.get("status", "pending"),
            current_step_index=data.get("current_step_index", 0),
            task_ids=list(data.get("task_ids", [])),
        )


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@dataclass
class TaskInput:
    path: str
    description: str

    def to_dict(self) -> dict:
        return {"path": self.path, "description": self.description}


@dataclass
class TaskOutput:
    path: str
    format: str

    def to_dict(self) -> dict:
        return {"path": self.path, "format": self.format}


@dataclass
class TaskNext:
    """What happens after a task: hand to an agent, continue a pipeline, or return to the director."""

    type: NextType
    agent: str | None = None
    pipeline_id: str | None = None

    @classmethod
    def director_review(cls) -> TaskNext:
        return cls(NextType.DIRECTOR_REVIEW)

    @classmethod
    def pipeline_continue(cls, pipeline_id: str) -> TaskNext:
        return cls(NextType.PIPELINE_CONTINUE, pipeline_id=pipeline_id)

    @classmethod
    def to_agent(cls, agent: str) -> TaskNext:
        return cls(NextType.AGENT, agent=agent)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"type": self.type.value}
        if self.agent is not None:
            data["agent"] = self.agent
        if self.pipeline_id is not None:
            data["pipeline_id"] = self.pipeline_id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> TaskNext:
        return cls(NextType(data["type"]), agent=data.get("agent"), pipeline_id=data.get("pipeline_id"))


@dataclass
class Task:
    id: str
    to: str
    priority: Priority
    requirements: str
    output: TaskOutput
    next: TaskNext
    goal: str = ""
    from_: str = "director"
    status: TaskStatus = TaskStatus.PENDING
    revision_count: int = 0
    deadline: str | None = None
    goal_id: str | None = None
    pipeline_id: str | None = None
    inputs: list[TaskInput] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "from": self.from_,
            "to": self.to,
            "priority": self.priority.value,
            "deadline": self.deadline,
            "status": self.status.value,
            "revision_count": self.revision_count,
            "goal_id": self.goal_id,
            "pipeline_id": self.pipeline_id,
            "goal": self.goal,
            "inputs": [i.to_dict() for i in self.inputs],
            "requirements": self.requirements,
            "output": self.output.to_dict(),
            "next": self.next.to_dict(),
            "tags": self.tags,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Task:
        return cls(
            id=data["id"],
            created_at=data.get("created_at") or now_iso(),
            updated_at=data.get("updated_at") or now_iso(),
            from_=data.get("from", "director"),
            to=data["to"],
            priority=Priority(data["priority"]),
            deadline=data.get("deadline"),
            status=TaskStatus(data.get("status", "pending")),
            revision_count=data.get("revision_count", 0),
            goal_id=data.get("goal_id"),
            pipeline_id=data.get("pipeline_id"),
            goal=data.get("goal", ""),
            inputs=[TaskInput(**i) for i in data.get("inputs", [])],
            requirements=data.get("requirements", ""),
            output=TaskOutput(**data["output"]),
            next=TaskNext.from_dict(data["next"]),
            tags=list(data.get("tags", [])),
            metadata=dict(data.get("metadata", {})),
        )


# ---------------------------------------------------------------------------
# Reviews
# ---------------------------------------------------------------------------


@dataclass
class Finding:
    section: str
    severity: Severity
    description: str

    def to_dict(self) -> dict:
        return {"section": self.section, "severity": self.severity.value, "description": self.description}


@dataclass
class RevisionRequest:
    description: str
    priority: str = "required"  # required | recommended | optional

    def to_dict(self) -> dict:
        return {"description": self.description, "priority": self.priority}


@dataclass
class Review:
    id: str
    task_id: str
    author: str
    verdict: Verdict
    findings: list[Finding] = field(default_factory=list)
    revision_requests: list[RevisionRequest] = field(default_factory=list)
    summary: str = ""
    reviewer: str = "director"
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "created_at": self.created_at,
            "reviewer": self.reviewer,
            "author": self.author,
            "verdict": self.verdict.value,
            "findings": [f.to_dict() for f in self.findings],
            "revision_requests": [r.to_dict() for r in self.revision_requests],
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Review:
        return cls(
            id=data["id"],
            task_id=data["task_id"],
            created_at=data.get("created_at") or now_iso(),
            reviewer=data.get("reviewer", "director"),
            author=data["author"],
            verdict=Verdict(data["verdict"]),
            findings=[
                Finding(f["section"], Severity(f["severity"]), f["description"]) for f in data.get("findings", [])
            ],
            revision_requests=[RevisionRequest(**r) for r in data.get("revision_requests", [])],
            summary=data.get("summary", ""),
        )


@dataclass
class DimensionScore:
    dimension: QualityDimension
    score: float
    weight: float
    rationale: str = ""

    def to_dict(self) -> dict:
        return {
            "dimension": self.dimension.value,
            "score": self.score,
            "weight": self.weight,
            "rationale": self.rationale,
        }


@dataclass
class QualityScore:
    task_id: str
    skill: str
    dimensions: list[DimensionScore]
    overall_score: float
    scored_by: str = "structural"  # structural | semantic
    scored_at: str = field(default_factory=now_iso)

    def dimension(self, name: QualityDimension) -> DimensionScore | None:
        return next((d for d in self.dimensions if d.dimension == name), None)

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "skill": self.skill,
            "dimensions": [d.to_dict() for d in self.dimensions],
            "overall_score": self.overall_score,
            "scored_at": self.scored_at,
            "scored_by": self.scored_by,
        }


@dataclass
class LearningEntry:
    agent: str
    goal_id: str | None
    outcome: str  # success | failure | partial
    learning: str
    action_taken: str
    tags: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "agent": self.agent,
            "goal_id": self.goal_id,
            "outcome": self.outcome,
            "learning": self.learning,
            "action_taken": self.action_taken,
            "tags": self.tags,
        }

    @classmethod
    def from_dict(cls, data: dict) -> LearningEntry:
        return cls(
            timestamp=data.get("timestamp") or now_iso(),
            agent=data["agent"],
            goal_id=data.get("goal_id"),
            outcome=data["outcome"],
            learning=data["learning"],
            action_taken=data.get("action_taken", ""),
            tags=list(data.get("tags", [])),
        )


@dataclass
class ReviewDecision:
    """Everything the review engine decided about one task output, before any side effect."""

    task_id: str
    action: DirectorAction
    review: Review | None = None
    next_tasks: list[Task] = field(default_factory=list)
    learning: LearningEntry | None = None
    escalation: Escalation | None = None
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "action": self.action.value,
            "review": self.review.to_dict() if self.review else None,
            "next_tasks": [t.to_dict() for t in self.next_tasks],
            "learning": self.learning.to_dict() if self.learning else None,
            "escalation": self.escalation.to_dict() if self.escalation else None,
            "reasoning": self.reasoning,
        }


# ---------------------------------------------------------------------------
# Budget and escalation
# ---------------------------------------------------------------------------


@dataclass
class BudgetState:
    total_budget: float
    spent: float
    percent_used: float
    level: BudgetLevel
    allowed_priorities: list[Priority]
    model_override: ModelTier | None = None

    def to_dict(self) -> dict:
        return {
            "total_budget": self.total_budget,
            "spent": self.spent,
            "percent_used": self.percent_used,
            "level": self.level.value,
            "allowed_priorities": [p.value for p in self.allowed_priorities],
            "model_override": self.model_override.value if self.model_override else None,
        }


@dataclass
class Escalation:
    reason: EscalationReason
    severity: EscalationSeverity
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "reason": self.reason.value,
            "severity": self.severity.value,
            "message": self.message,
            "context": self.context,
        }


# ---------------------------------------------------------------------------
# Human review
# ---------------------------------------------------------------------------


@dataclass
class HumanFeedback:
    decision: HumanDecision
    reviewer: str
    notes: str = ""
    revision_instructions: str | None = None
    provided_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "decision": self.decision.value,
            "reviewer": self.reviewer,
            "notes": self.notes,
            "revision_instructions": self.revision_instructions,
            "provided_at": self.provided_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> HumanFeedback:
        return cls(
            decision=HumanDecision(data["decision"]),
            reviewer=data["reviewer"],
            notes=data.get("notes", ""),
            revision_instructions=data.get("revision_instructions"),
            provided_at=data.get("provided_at") or now_iso(),
        )


@dataclass
class HumanReviewItem:
    id: str
    task_id: str
    skill: str
    urgency: Urgency
    escalation_reason: str
    escalation_message: str
    escalation_context: dict[str, Any] = field(default_factory=dict)
    goal_id: str | None = None
    pipeline_id: str | None = None
    status: HumanReviewStatus = HumanReviewStatus.PENDING
    feedback: HumanFeedback | None = None
    resolved_at: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "goal_id": self.goal_id,
            "pipeline_id": self.pipeline_id,
            "skill": self.skill,
            "created_at": self.created_at,
            "urgency": self.urgency.value,
            "status": self.status.value,
            "escalation_reason": self.escalation_reason,
            "escalation_message": self.escalation_message,
            "escalation_context": self.escalation_context,
            "feedback": self.feedback.to_dict() if self.feedback else None,
            "resolved_at": self.resolved_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> HumanReviewItem:
        feedback = data.get("feedback")
        return cls(
            id=data["id"],
            task_id=data["task_id"],
            goal_id=data.get("goal_id"),
            pipeline_id=data.get("pipeline_id"),
            skill=data["skill"],
            created_at=data.get("created_at") or now_iso(),
            urgency=Urgency(data["urgency"]),
            status=HumanReviewStatus(data.get("status", "pending")),
            escalation_reason=data.get("escalation_reason", ""),
            escalation_message=data.get("escalation_message", ""),
            escalation_context=dict(data.get("escalation_context", {})),
            feedback=HumanFeedback.from_dict(feedback) if feedback else None,
            resolved_at=data.get("resolved_at"),
            metadata=dict(data.get("metadata", {})),
        )
