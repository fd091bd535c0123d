"""Skill and pipeline catalog — skills, squads, the producer→consumer graph, and pipeline templates.

The registry can be built from the compiled defaults below or from a YAML/dict
document of the same shape; both go through the same validation.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from marketeam.errors import SkillRegistryError
from marketeam.models import PipelineTemplate, Priority, Skill, Squad
from marketeam.router import ROUTING_RULES

logger = logging.getLogger(__name__)

FOUNDATION_SKILL = "product-marketing-context"
CONTEXT_PATH = "context/product-marketing-context.md"

# ---------------------------------------------------------------------------
# Compiled defaults
# ---------------------------------------------------------------------------

SQUAD_DESCRIPTIONS: dict[str, str] = {
    "strategy": "Plans what to do and why",
    "creative": "Produces content and copy",
    "convert": "Optimizes conversion touchpoints",
    "activate": "Turns signups into retained users",
    "measure": "Closes the feedback loop",
}

SKILL_SQUAD_MAP: dict[str, list[str]] = {
    "strategy": [
        "content-strategy",
        "pricing-strategy",
        "launch-strategy",
        "marketing-ideas",
        "marketing-psychology",
        "competitor-alternatives",
    ],
    "creative": [
        "copywriting",
        "copy-editing",
        "social-content",
        "cold-email",
        "paid-ads",
        "programmatic-seo",
        "schema-markup",
    ],
    "convert": ["page-cro", "form-cro", "signup-flow-cro", "popup-cro", "free-tool-strategy"],
    "activate": ["onboarding-cro", "email-sequence", "paywall-upgrade-cro", "referral-program"],
    "measure": ["analytics-tracking", "ab-test-setup", "seo-audit"],
}

SKILL_DESCRIPTIONS: dict[str, str] = {
    FOUNDATION_SKILL: "Maintains the shared product, audience and positioning context",
    "content-strategy": "Plans content pillars and topics",
    "pricing-strategy": "Designs pricing and packaging",
    "launch-strategy": "Plans phased product launches",
    "marketing-ideas": "Curates proven marketing tactics",
    "marketing-psychology": "Applies behavioral science to marketing",
    "competitor-alternatives": "Researches competitors, builds comparison content",
    "copywriting": "Writes marketing page copy",
    "copy-editing": "Edits via 7 systematic sweeps",
    "social-content": "Creates platform-specific social posts",
    "cold-email": "Writes outreach sequences",
    "paid-ads": "Designs ad campaigns and copy",
    "programmatic-seo": "Builds SEO page templates at scale",
    "schema-markup": "Generates JSON-LD structured data",
    "page-cro": "Audits pages for conversion issues",
    "form-cro": "Optimizes lead capture and contact forms",
    "signup-flow-cro": "Optimizes registration flows",
    "popup-cro": "Creates and optimizes popups/modals",
    "free-tool-strategy": "Plans free tools for lead generation",
    "onboarding-cro": "Optimizes post-signup activation",
    "email-sequence": "Creates lifecycle email sequences",
    "paywall-upgrade-cro": "Optimizes free-to-paid conversion",
    "referral-program": "Designs referral/affiliate programs",
    "analytics-tracking": "Sets up GA4/GTM tracking",
    "ab-test-setup": "Designs statistically rigorous experiments",
    "seo-audit": "Audits technical SEO, content, E-E-A-T",
}

# producer -> consumers; skills not listed feed nobody
SKILL_DOWNSTREAM: dict[str, list[str] | str] = {
    FOUNDATION_SKILL: "all",
    "content-strategy": ["copywriting", "programmatic-seo", "social-content"],
    "pricing-strategy": ["copywriting", "page-cro"],
    "launch-strategy": ["email-sequence", "social-content", "paid-ads", "page-cro"],
    "competitor-alternatives": ["copywriting", "programmatic-seo"],
    "copywriting": ["page-cro", "copy-editing"],
    "copy-editing": ["page-cro"],
    "page-cro": ["copywriting", "form-cro", "popup-cro"],
    "signup-flow-cro": ["onboarding-cro"],
    "onboarding-cro": ["email-sequence"],
    "email-sequence": ["analytics-tracking"],
    "referral-program": ["analytics-tracking"],
    "seo-audit": ["content-strategy", "programmatic-seo"],
}

PIPELINE_TEMPLATES: tuple[PipelineTemplate, ...] = (
    PipelineTemplate(
        name="Content Production",
        description="Weekly content pipeline from strategy to publication",
        steps=("content-strategy", "copywriting", "copy-editing", "seo-audit", "schema-markup"),
        trigger="weekly",
        default_priority=Priority.P2,
    ),
    PipelineTemplate(
        name="Page Launch",
        description="Optimize and instrument a new page",
        steps=("copywriting", "page-cro", "ab-test-setup", "analytics-tracking"),
        trigger="new page created",
        default_priority=Priority.P1,
    ),
    PipelineTemplate(
        name="Product Launch",
        description="Full launch campaign across channels",
        steps=("launch-strategy", ("copywriting", "email-sequence", "social-content", "paid-ads")),
        trigger="launch date approaching",
        default_priority=Priority.P0,
    ),
    PipelineTemplate(
        name="Conversion Sprint",
        description="Monthly CRO cycle with measurement",
        steps=("page-cro", "copywriting", "ab-test-setup", "analytics-tracking"),
        trigger="monthly",
        default_priority=Priority.P1,
    ),
    PipelineTemplate(
        name="Competitive Response",
        description="React to competitor launches",
        steps=("competitor-alternatives", "copywriting", "pricing-strategy", "paid-ads"),
        trigger="competitor launch detected",
        default_priority=Priority.P1,
    ),
    PipelineTemplate(
        name="Retention Sprint",
        description="Address churn with activation improvements",
        steps=("onboarding-cro", "email-sequence", "paywall-upgrade-cro", "ab-test-setup"),
        trigger="churn spike detected",
        default_priority=Priority.P1,
    ),
    PipelineTemplate(
        name="SEO Cycle",
        description="Monthly SEO audit and response",
        steps=("seo-audit", ("programmatic-seo", "schema-markup", "content-strategy")),
        trigger="monthly",
        default_priority=Priority.P2,
    ),
    PipelineTemplate(
        name="Outreach Campaign",
        description="Cold email campaign with testing",
        steps=("cold-email", "ab-test-setup", "analytics-tracking"),
        trigger="new prospect list available",
        default_priority=Priority.P2,
    ),
)


def default_registry_data() -> dict[str, Any]:
    """The compiled defaults in the same document shape a YAML registry uses."""
    skills: dict[str, dict[str, Any]] = {
        FOUNDATION_SKILL: {
            "squad": None,
            "description": SKILL_DESCRIPTIONS[FOUNDATION_SKILL],
            "downstream": SKILL_DOWNSTREAM[FOUNDATION_SKILL],
        }
    }
    for squad, names in SKILL_SQUAD_MAP.items():
        for name in names:
            downstream = SKILL_DOWNSTREAM.get(name, [])
            skills[name] = {
                "squad": squad,
                "description": SKILL_DESCRIPTIONS.get(name, ""),
                "downstream": list(downstream) if isinstance(downstream, list) else downstream,
            }
    return {
        "squads": {name: {"description": desc} for name, desc in SQUAD_DESCRIPTIONS.items()},
        "foundation_skill": FOUNDATION_SKILL,
        "skills": skills,
    }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate_shape(data: Any) -> list[str]:
    if not isinstance(data, dict):
        return ["Registry document must be a mapping"]
    errors: list[str] = []
    if not isinstance(data.get("squads"), dict):
        errors.append("Missing or invalid 'squads' key (expected an object)")
    if not isinstance(data.get("skills"), dict):
        errors.append("Missing or invalid 'skills' key (expected an object)")
    if not isinstance(data.get("foundation_skill"), str):
        errors.append("Missing or invalid 'foundation_skill' (expected a string)")
    return errors


def _validate(data: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    squads: dict = data["squads"]
    skills: dict = data["skills"]
    foundation: str = data["foundation_skill"]

    if foundation not in skills:
        errors.append(f'Foundation skill "{foundation}" not found in skills')

    for name, entry in squads.items():
        if entry is not None and not isinstance(entry, dict):
            errors.append(f'Squad "{name}" must be a mapping, got {type(entry).__name__}')

    owned: set[str] = set()
    for name, entry in skills.items():
        if entry is not None and not isinstance(entry, dict):
            errors.append(f'Skill "{name}" must be a mapping, got {type(entry).__name__}')
            continue
        entry = entry or {}
        squad = entry.get("squad")
        if squad is not None:
            if squad not in squads:
                errors.append(f'Skill "{name}" references unknown squad "{squad}"')
            else:
                owned.add(squad)
        downstream = entry.get("downstream", [])
        if downstream == "all":
            continue
        if not isinstance(downstream, list):
            errors.append(f'Skill "{name}" has invalid downstream (expected a list or "all")')
            continue
        for consumer in downstream:
            if consumer == name:
                errors.append(f'Skill "{name}" lists itself as downstream')
            elif consumer not in skills:
                errors.append(f'Skill "{name}" references unknown downstream skill "{consumer}"')

    for squad in squads:
        if squad not in owned:
            errors.append(f'Squad "{squad}" has no skills assigned')

    return errors


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class SkillRegistry:
    """Validated, read-only view over skills, squads and the dependency graph."""

    def __init__(self, data: dict[str, Any]):
        errors = _validate_shape(data)
        if not errors:
            errors = _validate(data)
        if errors:
            raise SkillRegistryError(errors)

        self.foundation_skill: str = data["foundation_skill"]
        self._squads: dict[str, str] = {
            name: (entry or {}).get("description", "") for name, entry in data["squads"].items()
        }
        self._skills: dict[str, Skill] = {}
        self._downstream: dict[str, list[str]] = {}

        names = list(data["skills"].keys())
        for name, entry in data["skills"].items():
            entry = entry or {}
            self._skills[name] = Skill(
                name=name,
                squad=entry.get("squad"),
                description=entry.get("description", ""),
            )
            downstream = entry.get("downstream", [])
            if downstream == "all":
                downstream = [n for n in names if n != name]
            self._downstream[name] = list(downstream)

    @classmethod
    def from_defaults(cls) -> SkillRegistry:
        return cls(default_registry_data())

    @classmethod
    def from_data(cls, data: dict[str, Any]) -> SkillRegistry:
        return cls(data)

    @classmethod
    def from_yaml(cls, text: str) -> SkillRegistry:
        return cls(yaml.safe_load(text))

    @classmethod
    def from_file(cls, path: Path | str) -> SkillRegistry:
        path = Path(path)
        logger.info(f"Loading skill registry from {path}")
        return cls.from_yaml(path.read_text(encoding="utf-8"))

    # -- queries --

    @property
    def skill_names(self) -> list[str]:
        return list(self._skills.keys())

    @property
    def squad_names(self) -> list[str]:
        return list(self._squads.keys())

    def get(self, skill: str) -> Skill | None:
        return self._skills.get(skill)

    def is_valid_skill(self, skill: str) -> bool:
        return skill in self._skills

    def is_valid_squad(self, squad: str) -> bool:
        return squad in self._squads

    def squad_of(self, skill: str) -> str | None:
        skill_def = self._skills.get(skill)
        return skill_def.squad if skill_def else None

    def squad_skills(self, squad: str | Squad) -> list[str]:
        key = squad.value if isinstance(squad, Squad) else squad
        return [name for name, s in self._skills.items() if s.squad == key]

    def downstream_of(self, skill: str) -> list[str]:
        return list(self._downstream.get(skill, []))

    def upstream_of(self, skill: str) -> list[str]:
        return [producer for producer, consumers in self._downstream.items() if skill in consumers]

    def to_data(self) -> dict[str, Any]:
        return {
            "squads": {name: {"description": desc} for name, desc in self._squads.items()},
            "foundation_skill": self.foundation_skill,
            "skills": {
                name: {
                    "squad": skill.squad,
                    "description": skill.description,
                    "downstream": self.downstream_of(name),
                }
                for name, skill in self._skills.items()
            },
        }


def get_template(name: str) -> PipelineTemplate | None:
    return next((t for t in PIPELINE_TEMPLATES if t.name == name), None)


_default_registry: SkillRegistry | None = None


def default_registry() -> SkillRegistry:
    """Process-wide registry built from the compiled defaults, created on first use."""
    global _default_registry
    if _default_registry is None:
        _default_registry = SkillRegistry.from_defaults()
    return _default_registry


def reference_errors(registry: SkillRegistry) -> list[str]:
    """Skills named by the pipeline templates and routing rules that the registry does not define."""
    errors: list[str] = []
    for template in PIPELINE_TEMPLATES:
        for step in template.steps:
            for skill in step if isinstance(step, tuple) else (step,):
                if not registry.is_valid_skill(skill):
                    errors.append(f'Pipeline template "{template.name}" references unknown skill "{skill}"')
    for category, rules in ROUTING_RULES.items():
        for rule in rules:
            for skill in rule.skills:
                if not registry.is_valid_skill(skill):
                    errors.append(f'Routing rule for "{category.value}" references unknown skill "{skill}"')
                elif registry.squad_of(skill) != rule.squad.value:
                    errors.append(
                        f'Routing rule for "{category.value}" puts "{skill}" in squad "{rule.squad.value}", '
                        f'registry has "{registry.squad_of(skill)}"'
                    )
    return errors


def load_registry(skills_file: str | None = None) -> SkillRegistry:
    """Registry from a YAML file when one is configured, otherwise the defaults.

    A loaded registry must define every skill the compiled templates and routing rules use.
    """
    if not skills_file:
        return default_registry()
    registry = SkillRegistry.from_file(skills_file)
    errors = reference_errors(registry)
    if errors:
        raise SkillRegistryError(errors)
    return registry
