"""Review engine — judges task output and turns the verdict into a director action."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from marketeam.config import MODEL_TIMEOUT_MS, DirectorConfig
from marketeam.models import (
    BudgetState,
    DirectorAction,
    Escalation,
    EscalationReason,
    EscalationSeverity,
    Finding,
    LearningEntry,
    ModelTier,
    NextType,
    QualityScore,
    Review,
    ReviewDecision,
    RevisionRequest,
    Severity,
    Task,
    TaskInput,
    TaskStatus,
    Verdict,
    generate_review_id,
    generate_task_id,
    now_iso,
)
from marketeam.providers.base import MessageRequest, ModelClient
from marketeam.providers.tiers import estimate_cost, model_for
from marketeam.quality import QualityScorer, SkillQualityCriteria

logger = logging.getLogger(__name__)

MIN_OUTPUT_CHARS = 100
MIN_CONTENT_LINES = 3

_HEADING = re.compile(r"^#+\s+.+", re.MULTILINE)
_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_VALID_SEVERITIES = {s.value for s in Severity}

SEMANTIC_REVIEW_PROMPT = """You are the Marketing Director reviewing work produced by a specialist marketing agent.

Evaluate the output against the task requirements on these criteria:
1. **Completeness**: Does the output address every requirement in the task?
2. **Quality**: Is it specific, actionable, and well-structured?
3. **Brand alignment**: Does it match the product's voice and positioning?
4. **Data-driven**: Are recommendations backed by evidence or established principles?
5. **Actionability**: Can the next agent or a human use this output directly?

Report only real problems. Each finding has:
- "section": the part of the output it concerns
- "severity": one of "critical", "major", "minor", "suggestion"
- "description": what is wrong and what would fix it

Use "critical" only when the output is fundamentally off-track, and "major" when it must be revised before use.

Respond with ONLY a JSON array of findings. Respond with [] if the output has no issues."""


@dataclass
class SemanticReviewResult:
    decision: ReviewDecision
    review_cost: float = 0.0


@dataclass
class QualityReviewResult:
    decision: ReviewDecision
    quality_score: QualityScore
    review_cost: float = 0.0


def validate_output_structure(output: str) -> list[Finding]:
    findings = []
    if not _HEADING.search(output):
        findings.append(Finding("structure", Severity.MINOR, "Output lacks markdown headings for structure"))
    non_empty = [line for line in output.split("\n") if line.strip()]
    if len(non_empty) < MIN_CONTENT_LINES:
        findings.append(
            Finding(
                "content depth",
                Severity.MAJOR,
                "Output has fewer than 3 non-empty lines — lacks sufficient depth",
            )
        )
    return findings


def structural_findings(output: str) -> list[Finding]:
    stripped = (output or "").strip()
    if not stripped:
        return [Finding("entire output", Severity.CRITICAL, "Output is empty")]
    if len(stripped) < MIN_OUTPUT_CHARS:
        return [
            Finding("entire output", Severity.MAJOR, "Output is suspiciously short (less than 100 characters)")
        ]
    return validate_output_structure(output)


def parse_semantic_findings(content: str) -> list[Finding]:
    """Parse a JSON array of findings. Entries with an unknown severity are dropped."""
    text = content.strip()
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    parsed = json.loads(text)
    if not isinstance(parsed, list):
        raise ValueError("Semantic review payload is not a JSON array")

    findings = []
    for entry in parsed:
        if not isinstance(entry, dict):
            continue
        severity = entry.get("severity")
        section = entry.get("section")
        description = entry.get("description")
        if severity not in _VALID_SEVERITIES or not isinstance(section, str) or not isinstance(description, str):
            continue
        findings.append(Finding(section, Severity(severity), description))
    return findings


def merge_findings(primary: list[Finding], secondary: list[Finding]) -> list[Finding]:
    """Union on (section, description); entries from `primary` win."""
    seen = {(f.section, f.description) for f in primary}
    merged = list(primary)
    for f in secondary:
        key = (f.section, f.description)
        if key not in seen:
            seen.add(key)
            merged.append(f)
    return merged


def verdict_from_findings(findings: list[Finding]) -> Verdict:
    if any(f.severity == Severity.CRITICAL for f in findings):
        return Verdict.REJECT
    if any(f.severity == Severity.MAJOR for f in findings):
        return Verdict.REVISE
    return Verdict.APPROVE


def is_goal_complete(tasks: list[Task]) -> bool:
    return all(t.status == TaskStatus.APPROVED for t in tasks)


class ReviewEngine:
    """Turns one task output into a ReviewDecision. Never writes anything itself."""

    def __init__(
        self,
        config: DirectorConfig | None = None,
        client: ModelClient | None = None,
        quality_scorer: QualityScorer | None = None,
    ):
        self.config = config or DirectorConfig()
        self.client = client
        self.quality_scorer = quality_scorer

    # -- structural --

    def evaluate_task(self, task: Task, output: str, existing_reviews: list[Review]) -> ReviewDecision:
        findings = structural_findings(output)
        return self._build_decision(task, findings, verdict_from_findings(findings), existing_reviews, "structural validation")

    # -- semantic --

    async def evaluate_task_semantic(
        self,
        task: Task,
        output: str,
        existing_reviews: list[Review],
        budget_state: BudgetState | None = None,
    ) -> SemanticReviewResult:
        structural = structural_findings(output)
        if self.client is None or any(f.severity == Severity.CRITICAL for f in structural):
            return SemanticReviewResult(self.evaluate_task(task, output, existing_reviews), 0.0)

        semantic, cost = await self._semantic_review(task, output, budget_state)
        if semantic is None:
            return SemanticReviewResult(self.evaluate_task(task, output, existing_reviews), 0.0)

        findings = merge_findings(structural, semantic)
        decision = self._build_decision(
            task, findings, verdict_from_findings(findings), existing_reviews, "semantic review"
        )
        return SemanticReviewResult(decision, cost)

    async def _semantic_review(
        self, task: Task, output: str, budget_state: BudgetState | None
    ) -> tuple[list[Finding] | None, float]:
        tier = budget_state.model_override if budget_state and budget_state.model_override else ModelTier.OPUS
        user_message = (
            f"## Task\n\n- **Skill:** {task.to}\n- **Goal:** {task.goal}\n\n"
            f"## Requirements\n\n{task.requirements}\n\n"
            f"## Output\n\n{output}"
        )
        try:
            result = await self.client.create_message(
                MessageRequest(
                    model=model_for(tier),
                    system=SEMANTIC_REVIEW_PROMPT,
                    messages=[{"role": "user", "content": user_message}],
                    max_tokens=4096,
                    timeout_ms=MODEL_TIMEOUT_MS,
                )
            )
            findings = parse_semantic_findings(result.content)
        except Exception as e:
            logger.warning(f"Semantic review failed for {task.id}, using structural review only: {e}")
            return None, 0.0
        return findings, estimate_cost(tier, result.input_tokens, result.output_tokens)

    # -- quality-scored --

    async def evaluate_task_with_quality(
        self,
        task: Task,
        output: str,
        existing_reviews: list[Review],
        criteria: SkillQualityCriteria,
        budget_state: BudgetState | None = None,
    ) -> QualityReviewResult:
        if self.quality_scorer is None:
            result = await self.evaluate_task_semantic(task, output, existing_reviews, budget_state)
            placeholder = QualityScore(task_id=task.id, skill=task.to, dimensions=[], overall_score=0.0)
            return QualityReviewResult(result.decision, placeholder, result.review_cost)

        structural = structural_findings(output)
        if any(f.severity == Severity.CRITICAL for f in structural):
            score = self.quality_scorer.score_structural(task, output, criteria)
            decision = self._build_decision(task, structural, Verdict.REJECT, existing_reviews, "quality scoring")
            return QualityReviewResult(decision, score, 0.0)

        score, cost = await self.quality_scorer.score_semantic(task, output, criteria, budget_state)
        verdict = self.quality_scorer.score_to_verdict(score, criteria)
        findings = merge_findings(structural, self.quality_scorer.score_to_findings(score))
        decision = self._build_decision(
            task,
            findings,
            verdict,
            existing_reviews,
            "quality scoring",
            summary=(
                f"Quality score {score.overall_score:g}/10 ({score.scored_by}) meets threshold."
                if verdict == Verdict.APPROVE
                else f"Quality score {score.overall_score:g}/10 ({score.scored_by}); "
                f"{len(findings)} finding(s) requiring attention."
            ),
        )
        logger.info(f"Quality review of {task.id}: {score.overall_score:g}/10 -> {verdict.value}")
        return QualityReviewResult(decision, score, cost)

    # -- decision --

    def determine_action(self, verdict: Verdict, task: Task, existing_reviews: list[Review] | None = None) -> DirectorAction:
        if verdict == Verdict.APPROVE:
            if task.next.type == NextType.PIPELINE_CONTINUE:
                return DirectorAction.PIPELINE_NEXT
            if task.next.type in (NextType.COMPLETE, NextType.DIRECTOR_REVIEW):
                return DirectorAction.GOAL_COMPLETE
            if task.next.type == NextType.AGENT:
                return DirectorAction.APPROVE
            raise ValueError(f"Unhandled next type: {task.next.type}")
        if verdict == Verdict.REVISE:
            if task.revision_count >= self.config.max_revisions_per_task:
                return DirectorAction.ESCALATE_HUMAN
            return DirectorAction.REVISE
        if verdict == Verdict.REJECT:
            if task.revision_count >= self.config.max_revisions_per_task:
                return DirectorAction.ESCALATE_HUMAN
            return DirectorAction.REJECT_REASSIGN
        raise ValueError(f"Unhandled verdict: {verdict}")

    def _build_decision(
        self,
        task: Task,
        findings: list[Finding],
        verdict: Verdict,
        existing_reviews: list[Review],
        method: str,
        summary: str | None = None,
    ) -> ReviewDecision:
        revision_requests = []
        if verdict == Verdict.REVISE:
            revision_requests = [
                RevisionRequest(f.description, "required") for f in findings if f.severity == Severity.MAJOR
            ]
            if not revision_requests:
                # Score-driven REVISE with no major finding: ask for the minor fixes
                revision_requests = [
                    RevisionRequest(f.description, "required") for f in findings if f.severity == Severity.MINOR
                ]

        action = self.determine_action(verdict, task, existing_reviews)
        if summary is None:
            summary = (
                "Output meets structural requirements."
                if verdict == Verdict.APPROVE
                else f"Output has {len(findings)} finding(s) requiring attention."
            )
        review = Review(
            id=generate_review_id(task.id, len(existing_reviews)),
            task_id=task.id,
            author=task.to,
            verdict=verdict,
            findings=list(findings),
            revision_requests=revision_requests,
            summary=summary,
        )

        decision = ReviewDecision(
            task_id=task.id,
            action=action,
            review=review,
            reasoning=self._reasoning(verdict, action, findings, method),
        )
        if action == DirectorAction.REVISE:
            decision.next_tasks = [self.create_revision_task(task, revision_requests)]
        elif action == DirectorAction.ESCALATE_HUMAN:
            decision.escalation = Escalation(
                reason=EscalationReason.AGENT_LOOP_DETECTED,
                severity=EscalationSeverity.WARNING,
                message=(
                    f"Task {task.id} has been revised {task.revision_count} times "
                    f"(max: {self.config.max_revisions_per_task}). Requires human decision."
                ),
                context={"task_id": task.id, "skill": task.to, "revision_count": task.revision_count},
            )
        elif action in (DirectorAction.GOAL_COMPLETE, DirectorAction.APPROVE):
            decision.learning = LearningEntry(
                agent="director",
                goal_id=task.goal_id or "unknown",
                outcome="success",
                learning=f"Task {task.id} completed by {task.to}. Output approved.",
                action_taken=f"Approved output after {method}.",
                tags=[task.to],
            )

        logger.info(f"Review of {task.id}: {verdict.value} -> {action.value} ({len(findings)} finding(s))")
        return decision

    def create_revision_task(self, original: Task, revision_requests: list[RevisionRequest]) -> Task:
        details = "\n".join(f"- [{r.priority}] {r.description}" for r in revision_requests)
        now = now_iso()
        return Task(
            id=generate_task_id(original.to),
            created_at=now,
            updated_at=now,
            from_="director",
            to=original.to,
            priority=original.priority,
            deadline=original.deadline,
            status=TaskStatus.PENDING,
            revision_count=original.revision_count + 1,
            goal_id=original.goal_id,
            pipeline_id=original.pipeline_id,
            goal=original.goal,
            inputs=[*original.inputs, TaskInput(original.output.path, "Previous output to revise")],
            requirements=f"REVISION REQUESTED:\n{details}\n\nOriginal requirements: {original.requirements}",
            output=original.output,
            next=original.next,
            tags=[*original.tags, "revision"],
            metadata={**original.metadata, "original_task_id": original.id, "revision_of": original.id},
        )

    @staticmethod
    def _reasoning(verdict: Verdict, action: DirectorAction, findings: list[Finding], method: str) -> str:
        if verdict == Verdict.APPROVE and not findings:
            return f"Output passes all checks ({method})."
        summary = "; ".join(f"[{f.severity.value}] {f.section}: {f.description}" for f in findings)
        return f"Verdict: {verdict.value}. Action: {action.value}. Findings: {summary}"
