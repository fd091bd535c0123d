"""Model tiers — concrete model ids, token pricing, and tier selection."""

from __future__ import annotations

from dataclasses import dataclass

from marketeam.catalog import FOUNDATION_SKILL, SkillRegistry, default_registry
from marketeam.models import BudgetState, ModelTier

MODEL_MAP: dict[ModelTier, str] = {
    ModelTier.OPUS: "claude-opus-4-6",
    ModelTier.SONNET: "claude-sonnet-4-5-20250929",
    ModelTier.HAIKU: "claude-haiku-4-5-20251001",
}


@dataclass(frozen=True)
class TierPricing:
    input_per_million: float
    output_per_million: float


PRICING: dict[ModelTier, TierPricing] = {
    ModelTier.OPUS: TierPricing(15.0, 75.0),
    ModelTier.SONNET: TierPricing(3.0, 15.0),
    ModelTier.HAIKU: TierPricing(0.25, 1.25),
}

# Squads whose work benefits from the strongest model
OPUS_SQUADS = {"strategy"}


def model_for(tier: ModelTier | str) -> str:
    return MODEL_MAP[ModelTier(tier)]


def estimate_cost(tier: ModelTier | str, input_tokens: int, output_tokens: int) -> float:
    pricing = PRICING[ModelTier(tier)]
    return (input_tokens * pricing.input_per_million + output_tokens * pricing.output_per_million) / 1_000_000


def select_model_tier(
    skill: str,
    budget_state: BudgetState | None = None,
    override: ModelTier | None = None,
    registry: SkillRegistry | None = None,
) -> ModelTier:
    if override is not None:
        return ModelTier(override)
    if budget_state is not None and budget_state.model_override is not None:
        return budget_state.model_override
    if skill == FOUNDATION_SKILL:
        return ModelTier.OPUS
    squad = (registry or default_registry()).squad_of(skill)
    if squad in OPUS_SQUADS:
        return ModelTier.OPUS
    return ModelTier.SONNET
