"""Quality criteria and scoring — per-skill dimensions, structural heuristics, semantic scoring."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any

from marketeam.catalog import FOUNDATION_SKILL, SkillRegistry, default_registry
from marketeam.config import MODEL_TIMEOUT_MS
from marketeam.models import (
    BudgetState,
    DimensionScore,
    Finding,
    ModelTier,
    QualityDimension,
    QualityScore,
    Severity,
    Task,
    Verdict,
)
from marketeam.providers.base import MessageRequest, ModelClient
from marketeam.providers.tiers import estimate_cost, model_for

logger = logging.getLogger(__name__)

D = QualityDimension

# ---------------------------------------------------------------------------
# Criteria
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DimensionCriterion:
    dimension: QualityDimension
    weight: float
    min_score: float


@dataclass(frozen=True)
class QualityThreshold:
    approve_above: float = 7.0
    revise_below: float = 7.0
    reject_below: float = 4.0


@dataclass(frozen=True)
class SkillQualityCriteria:
    skill: str
    dimensions: tuple[DimensionCriterion, ...]
    required_sections: tuple[str, ...] = ()
    min_word_count: int = 100
    threshold: QualityThreshold = field(default_factory=QualityThreshold)

    def criterion(self, dimension: QualityDimension) -> DimensionCriterion | None:
        return next((c for c in self.dimensions if c.dimension == dimension), None)


DEFAULT_THRESHOLD = QualityThreshold()


def _profile(*entries: tuple[QualityDimension, float, float]) -> tuple[DimensionCriterion, ...]:
    return tuple(DimensionCriterion(d, w, m) for d, w, m in entries)


DIMENSION_PROFILES: dict[str, tuple[DimensionCriterion, ...]] = {
    "strategy": _profile(
        (D.COMPLETENESS, 0.25, 5),
        (D.ACTIONABILITY, 0.20, 5),
        (D.DATA_DRIVEN, 0.20, 4),
        (D.CLARITY, 0.15, 5),
        (D.BRAND_ALIGNMENT, 0.10, 4),
        (D.CREATIVITY, 0.05, 3),
        (D.TECHNICAL_ACCURACY, 0.05, 4),
    ),
    "creative": _profile(
        (D.CLARITY, 0.25, 5),
        (D.CREATIVITY, 0.20, 5),
        (D.BRAND_ALIGNMENT, 0.20, 5),
        (D.ACTIONABILITY, 0.15, 4),
        (D.COMPLETENESS, 0.10, 4),
        (D.DATA_DRIVEN, 0.05, 3),
        (D.TECHNICAL_ACCURACY, 0.05, 3),
    ),
    "convert": _profile(
        (D.ACTIONABILITY, 0.25, 5),
        (D.DATA_DRIVEN, 0.20, 5),
        (D.COMPLETENESS, 0.20, 5),
        (D.CLARITY, 0.15, 5),
        (D.TECHNICAL_ACCURACY, 0.10, 4),
        (D.BRAND_ALIGNMENT, 0.05, 3),
        (D.CREATIVITY, 0.05, 3),
    ),
    "activate": _profile(
        (D.ACTIONABILITY, 0.25, 5),
        (D.COMPLETENESS, 0.20, 5),
        (D.CLARITY, 0.20, 5),
        (D.BRAND_ALIGNMENT, 0.15, 4),
        (D.DATA_DRIVEN, 0.10, 3),
        (D.CREATIVITY, 0.05, 3),
        (D.TECHNICAL_ACCURACY, 0.05, 3),
    ),
    "measure": _profile(
        (D.TECHNICAL_ACCURACY, 0.25, 6),
        (D.DATA_DRIVEN, 0.25, 5),
        (D.COMPLETENESS, 0.20, 5),
        (D.ACTIONABILITY, 0.15, 4),
        (D.CLARITY, 0.15, 5),
        (D.BRAND_ALIGNMENT, 0.0, 0),
        (D.CREATIVITY, 0.0, 0),
    ),
}

# skill -> (required sections, min word count)
SKILL_REQUIREMENTS: dict[str, tuple[tuple[str, ...], int]] = {
    FOUNDATION_SKILL: (("Product", "Audience", "Positioning"), 200),
    "content-strategy": (("Summary", "Strategy", "Recommendations"), 300),
    "pricing-strategy": (("Analysis", "Recommendations"), 300),
    "launch-strategy": (("Timeline", "Channels", "Strategy"), 300),
    "marketing-ideas": (("Ideas",), 200),
    "marketing-psychology": (("Principles", "Application"), 200),
    "competitor-alternatives": (("Competitors", "Comparison"), 300),
    "copywriting": ((), 100),
    "copy-editing": (("Feedback", "Suggestions"), 100),
    "social-content": ((), 50),
    "cold-email": (("Subject", "Body"), 50),
    "paid-ads": (("Ad Copy",), 50),
    "programmatic-seo": (("Template", "Strategy"), 200),
    "schema-markup": (("Schema",), 50),
    "page-cro": (("Findings", "Recommendations"), 200),
    "form-cro": (("Analysis", "Recommendations"), 200),
    "signup-flow-cro": (("Analysis", "Recommendations"), 200),
    "popup-cro": (("Analysis", "Recommendations"), 100),
    "free-tool-strategy": (("Strategy", "Implementation"), 200),
    "onboarding-cro": (("Flow", "Recommendations"), 200),
    "email-sequence": (("Sequence",), 200),
    "paywall-upgrade-cro": (("Analysis", "Recommendations"), 200),
    "referral-program": (("Program", "Incentives"), 200),
    "analytics-tracking": (("Tracking Plan",), 200),
    "ab-test-setup": (("Hypothesis", "Setup"), 200),
    "seo-audit": (("Findings", "Recommendations"), 300),
}


def resolve_threshold(skill: str, custom: dict[str, float] | QualityThreshold | None = None) -> QualityThreshold:
    """Default threshold, with any provided fields taking precedence."""
    if custom is None:
        return DEFAULT_THRESHOLD
    if isinstance(custom, QualityThreshold):
        return custom
    return replace(DEFAULT_THRESHOLD, **custom)


def get_skill_criteria(
    skill: str,
    overrides: dict[str, Any] | None = None,
    registry: SkillRegistry | None = None,
) -> SkillQualityCriteria:
    """Criteria for a skill; the dimension profile follows the skill's squad."""
    registry = registry or default_registry()
    if skill in SKILL_REQUIREMENTS:
        sections, min_words = SKILL_REQUIREMENTS[skill]
        squad = registry.squad_of(skill) or "strategy"
        dimensions = DIMENSION_PROFILES.get(squad, DIMENSION_PROFILES["strategy"])
    else:
        sections, min_words = (), 100
        dimensions = DIMENSION_PROFILES["strategy"]

    overrides = overrides or {}
    return SkillQualityCriteria(
        skill=skill,
        dimensions=dimensions,
        required_sections=tuple(overrides.get("required_sections", sections)),
        min_word_count=int(overrides.get("min_word_count", min_words)),
        threshold=resolve_threshold(skill, overrides.get("threshold")),
    )


# ---------------------------------------------------------------------------
# Structural heuristics
# ---------------------------------------------------------------------------

_HEADING = re.compile(r"^#+\s+.+", re.MULTILINE)
_ANY_LIST = re.compile(r"^[-*\d]+[.)]\s+", re.MULTILINE)
_NUMBERED_LIST = re.compile(r"^\d+[.)]\s+", re.MULTILINE)
_ACTION_VERBS = re.compile(
    r"\b(implement|create|add|remove|optimize|test|measure|track|update|launch|deploy)\b", re.IGNORECASE
)
_HYPERBOLE = re.compile(r"\b(amazing|incredible|revolutionary|game-changing)\b", re.IGNORECASE)
_SHOUTING = re.compile(r"[A-Z]{5,}")
_NUMBERS = re.compile(r"\d+%|\$\d+|\d+x|\d+\.\d+")
_METRICS = re.compile(r"\b(metric|KPI|conversion|rate|ROI|ROAS|CTR|CPA|LTV|MRR|ARR)\b", re.IGNORECASE)
_SOURCES = re.compile(r"\b(research|study|survey|data|analysis|benchmark)\b", re.IGNORECASE)
_CONTRADICTION = re.compile(r"\bbut also\b.*\bnot\b", re.IGNORECASE)
_ABSOLUTES = re.compile(r"\b(always|never|guaranteed|100%)\b", re.IGNORECASE)
_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _clamp(value: float) -> float:
    return max(0.0, min(10.0, value))


def _score_completeness(output: str, criteria: SkillQualityCriteria) -> float:
    score = 5.0
    words = len(output.split())
    if words >= criteria.min_word_count:
        score += 2.0
    elif words >= criteria.min_word_count * 0.5:
        score += 1.0
    else:
        score -= 2.0

    if criteria.required_sections:
        found = sum(
            1
            for section in criteria.required_sections
            if re.search(f"#.*{re.escape(section)}", output, re.IGNORECASE)
        )
        score += found / len(criteria.required_sections) * 3.0 - 1.5
    return _clamp(score)


def _score_clarity(output: str) -> float:
    score = 5.0
    if _HEADING.search(output):
        score += 1.5
    if _ANY_LIST.search(output):
        score += 1.0

    paragraphs = [p for p in re.split(r"\n\n+", output) if p.strip()]
    avg_len = sum(len(p) for p in paragraphs) / len(paragraphs) if paragraphs else 0
    if 0 < avg_len < 1000:
        score += 1.0
    if avg_len > 2000:
        score -= 1.5
    if len(paragraphs) >= 3:
        score += 0.5
    return _clamp(score)


def _score_actionability(output: str) -> float:
    score = 5.0
    if _NUMBERED_LIST.search(output):
        score += 1.5
    verbs = len(_ACTION_VERBS.findall(output))
    if verbs >= 5:
        score += 2.0
    elif verbs >= 2:
        score += 1.0
    if re.search("recommend", output, re.IGNORECASE):
        score += 0.5
    return _clamp(score)


def _score_brand_alignment(output: str) -> float:
    score = 6.0
    if "!!!" in output:
        score -= 1.0
    if _HYPERBOLE.search(output):
        score -= 0.5
    if _SHOUTING.search(output):
        score -= 1.0
    return _clamp(score)


def _score_data_driven(output: str) -> float:
    score = 3.0
    numbers = len(_NUMBERS.findall(output))
    if numbers >= 5:
        score += 3.0
    elif numbers >= 2:
        score += 2.0
    elif numbers >= 1:
        score += 1.0
    if _METRICS.search(output):
        score += 2.0
    if _SOURCES.search(output):
        score += 1.0
    return _clamp(score)


def _score_technical_accuracy(output: str) -> float:
    score = 6.0
    if _CONTRADICTION.search(output):
        score -= 0.5
    if _ABSOLUTES.search(output):
        score -= 1.0
    return _clamp(score)


def score_dimension(dimension: QualityDimension, output: str, criteria: SkillQualityCriteria) -> float:
    if dimension == D.COMPLETENESS:
        return _score_completeness(output, criteria)
    if dimension == D.CLARITY:
        return _score_clarity(output)
    if dimension == D.ACTIONABILITY:
        return _score_actionability(output)
    if dimension == D.BRAND_ALIGNMENT:
        return _score_brand_alignment(output)
    if dimension == D.DATA_DRIVEN:
        return _score_data_driven(output)
    if dimension == D.TECHNICAL_ACCURACY:
        return _score_technical_accuracy(output)
    if dimension == D.CREATIVITY:
        return 5.0  # no structural signal
    raise ValueError(f"Unhandled quality dimension: {dimension}")


def _structural_rationale(score: float) -> str:
    if score >= 7:
        return "Passes structural heuristics."
    if score >= 5:
        return "Partially meets structural expectations."
    return "Below structural expectations."


def weighted_average(dimensions: list[DimensionScore]) -> float:
    total_weight = sum(d.weight for d in dimensions)
    if total_weight == 0:
        return 0.0
    return round(sum(d.score * d.weight for d in dimensions) / total_weight, 2)


def _title(dimension: QualityDimension) -> str:
    return " ".join(w.capitalize() for w in dimension.value.split("_"))


# ---------------------------------------------------------------------------
# Scorer
# ---------------------------------------------------------------------------


class QualityScorer:
    """Scores task output per dimension. Semantic scoring needs a model client."""

    def __init__(self, client: ModelClient | None = None):
        self.client = client

    def score_structural(self, task: Task, output: str, criteria: SkillQualityCriteria) -> QualityScore:
        dimensions = []
        for c in criteria.dimensions:
            score = score_dimension(c.dimension, output, criteria)
            dimensions.append(DimensionScore(c.dimension, score, c.weight, _structural_rationale(score)))
        return QualityScore(
            task_id=task.id,
            skill=task.to,
            dimensions=dimensions,
            overall_score=weighted_average(dimensions),
            scored_by="structural",
        )

    async def score_semantic(
        self,
        task: Task,
        output: str,
        criteria: SkillQualityCriteria,
        budget_state: BudgetState | None = None,
    ) -> tuple[QualityScore, float]:
        """Score with the model; any client or parse failure returns the structural score at zero cost."""
        if self.client is None:
            return self.score_structural(task, output, criteria), 0.0

        tier = budget_state.model_override if budget_state and budget_state.model_override else ModelTier.OPUS
        try:
            result = await self.client.create_message(
                MessageRequest(
                    model=model_for(tier),
                    system=_scoring_prompt(task.to, criteria),
                    messages=[
                        {
                            "role": "user",
                            "content": f"Task requirements: {task.requirements}\n\nOutput to evaluate:\n{output}",
                        }
                    ],
                    max_tokens=2048,
                    timeout_ms=MODEL_TIMEOUT_MS,
                )
            )
            dimensions = parse_semantic_scores(result.content, criteria)
        except Exception as e:
            logger.warning(f"Semantic scoring failed for {task.id}, using structural score: {e}")
            return self.score_structural(task, output, criteria), 0.0

        score = QualityScore(
            task_id=task.id,
            skill=task.to,
            dimensions=dimensions,
            overall_score=weighted_average(dimensions),
            scored_by="semantic",
        )
        return score, estimate_cost(tier, result.input_tokens, result.output_tokens)

    def score_to_verdict(self, score: QualityScore, criteria: SkillQualityCriteria) -> Verdict:
        return score_to_verdict(score, criteria)

    def score_to_findings(self, score: QualityScore) -> list[Finding]:
        return score_to_findings(score)


def _scoring_prompt(skill: str, criteria: SkillQualityCriteria) -> str:
    dimension_list = ", ".join(f"{c.dimension.value} (weight: {c.weight:g})" for c in criteria.dimensions)
    return (
        "You are scoring marketing output quality on specific dimensions (0-10 scale).\n\n"
        f"Skill: {skill}\n"
        f"Required quality dimensions: {dimension_list}\n\n"
        "Score each dimension from 0 (terrible) to 10 (excellent).\n"
        "Respond with ONLY a JSON object mapping dimension names to {score, rationale}.\n\n"
        "Example:\n"
        '{"completeness":{"score":8,"rationale":"Covers all requirements"},'
        '"clarity":{"score":7,"rationale":"Well structured with clear headings"}}'
    )


def parse_semantic_scores(content: str, criteria: SkillQualityCriteria) -> list[DimensionScore]:
    """Parse the model's JSON object. Raises ValueError when the payload is not a JSON object."""
    text = content.strip()
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("Semantic score payload is not a JSON object")

    dimensions = []
    for c in criteria.dimensions:
        entry = parsed.get(c.dimension.value)
        score = entry.get("score") if isinstance(entry, dict) else None
        if isinstance(score, (int, float)) and not isinstance(score, bool) and 0 <= score <= 10:
            rationale = entry.get("rationale")
            dimensions.append(
                DimensionScore(c.dimension, float(score), c.weight, rationale if isinstance(rationale, str) else "")
            )
        else:
            dimensions.append(DimensionScore(c.dimension, 5.0, c.weight, "Not scored by semantic review."))
    return dimensions


def score_to_verdict(score: QualityScore, criteria: SkillQualityCriteria) -> Verdict:
    threshold = criteria.threshold
    below_min = []
    for dim in score.dimensions:
        c = criteria.criterion(dim.dimension)
        if c is not None and c.min_score > 0 and dim.score < c.min_score:
            below_min.append(dim)

    if any(d.score < threshold.reject_below for d in below_min):
        return Verdict.REJECT
    if score.overall_score < threshold.reject_below:
        return Verdict.REJECT
    if below_min:
        return Verdict.REVISE
    if score.overall_score >= threshold.approve_above:
        return Verdict.APPROVE
    return Verdict.REVISE


def score_to_findings(score: QualityScore) -> list[Finding]:
    findings = []
    for dim in score.dimensions:
        if dim.score < 4.0:
            findings.append(
                Finding(
                    dim.dimension.value,
                    Severity.MAJOR,
                    f"{_title(dim.dimension)} score is {dim.score:g}/10: {dim.rationale}",
                )
            )
        elif dim.score < 6.0:
            findings.append(
                Finding(
                    dim.dimension.value,
                    Severity.MINOR,
                    f"{_title(dim.dimension)} could be improved ({dim.score:g}/10): {dim.rationale}",
                )
            )
    return findings
