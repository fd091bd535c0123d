"""Goal decomposer — turns a goal and its routing into ordered phases."""

from __future__ import annotations

import logging

from marketeam.catalog import SkillRegistry, default_registry, get_template
from marketeam.models import Goal, GoalCategory, GoalPhase, GoalPlan, RoutingDecision

logger = logging.getLogger(__name__)

CATEGORY_TEMPLATE: dict[GoalCategory, str | None] = {
    GoalCategory.STRATEGIC: None,
    GoalCategory.CONTENT: "Content Production",
    GoalCategory.OPTIMIZATION: "Conversion Sprint",
    GoalCategory.RETENTION: "Retention Sprint",
    GoalCategory.COMPETITIVE: "Competitive Response",
    GoalCategory.MEASUREMENT: "SEO Cycle",
}

# (phase name, description) per route, in route order
PHASE_BLUEPRINTS: dict[GoalCategory, list[tuple[str, str]]] = {
    GoalCategory.STRATEGIC: [
        ("PLAN", "Develop strategy and positioning"),
        ("MEASURE", "Track and validate strategic outcomes"),
    ],
    GoalCategory.CONTENT: [
        ("PLAN", "Define content strategy"),
        ("CREATE", "Produce content assets"),
        ("MEASURE", "Audit and track content performance"),
    ],
    GoalCategory.OPTIMIZATION: [
        ("AUDIT", "Assess current conversion performance"),
        ("CREATE", "Execute improvements based on audit"),
        ("TEST", "Set up experiments and tracking"),
    ],
    GoalCategory.RETENTION: [
        ("ACTIVATE", "Improve activation and retention flows"),
        ("MEASURE", "Test and measure retention changes"),
    ],
    GoalCategory.COMPETITIVE: [
        ("RESEARCH", "Analyze competitive landscape"),
        ("RESPOND", "Create competitive response content"),
        ("ADJUST", "Update pricing if needed"),
        ("MEASURE", "Track response effectiveness"),
    ],
    GoalCategory.MEASUREMENT: [
        ("MEASURE", "Run audits and set up tracking"),
    ],
}


def can_run_parallel(skills: list[str], registry: SkillRegistry | None = None) -> bool:
    """True when no skill in the set directly feeds another skill in the set."""
    if len(skills) <= 1:
        return True
    registry = registry or default_registry()
    members = set(skills)
    for skill in skills:
        for consumer in registry.downstream_of(skill):
            if consumer != skill and consumer in members:
                return False
    return True


def _phases_from_template(template_name: str) -> list[GoalPhase]:
    template = get_template(template_name)
    if template is None:
        return []
    phases = []
    for i, step in enumerate(template.steps):
        if isinstance(step, tuple):
            phases.append(
                GoalPhase(
                    name=f"PHASE_{i + 1}",
                    description=f"Parallel execution: {', '.join(step)}",
                    skills=list(step),
                    parallel=True,
                    depends_on_phase=i - 1 if i > 0 else None,
                )
            )
        else:
            phases.append(
                GoalPhase(
                    name=f"PHASE_{i + 1}",
                    description=f"Execute {step}",
                    skills=[step],
                    parallel=False,
                    depends_on_phase=i - 1 if i > 0 else None,
                )
            )
    return phases


def _phases_from_routing(
    category: GoalCategory, decision: RoutingDecision, registry: SkillRegistry | None
) -> list[GoalPhase]:
    blueprint = PHASE_BLUEPRINTS.get(category, [])
    phases = []
    for i, route in enumerate(decision.routes):
        if i < len(blueprint):
            name, description = blueprint[i]
        else:
            name, description = f"PHASE_{i + 1}", f"{route.squad.value} squad work"
        phases.append(
            GoalPhase(
                name=name,
                description=description,
                skills=list(route.skills),
                parallel=can_run_parallel(route.skills, registry),
                depends_on_phase=i - 1 if i > 0 else None,
            )
        )
    return phases


def decompose_goal(
    goal: Goal, decision: RoutingDecision, registry: SkillRegistry | None = None
) -> GoalPlan:
    """Template-first decomposition; falls back to the category blueprint over the routing decision."""
    template_name = CATEGORY_TEMPLATE.get(goal.category)
    phases = _phases_from_template(template_name) if template_name else []
    if not phases:
        template_name = None
        phases = _phases_from_routing(goal.category, decision, registry)

    plan = GoalPlan(
        goal_id=goal.id,
        phases=phases,
        estimated_task_count=sum(len(p.skills) for p in phases),
        pipeline_template_name=template_name,
    )
    logger.info(
        f"Decomposed goal {goal.id} into {len(phases)} phase(s)"
        + (f" using template {template_name}" if template_name else "")
    )
    return plan
