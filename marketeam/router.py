"""Squad router — goal category to an ordered list of squad routes."""

from __future__ import annotations

from marketeam.models import GoalCategory, RoutingDecision, RoutingRule, Squad

ROUTING_RULES: dict[GoalCategory, list[RoutingRule]] = {
    GoalCategory.STRATEGIC: [
        RoutingRule(
            Squad.STRATEGY,
            [
                "content-strategy",
                "pricing-strategy",
                "launch-strategy",
                "marketing-ideas",
                "marketing-psychology",
                "competitor-alternatives",
            ],
            "Strategic goals route directly to the Strategy Squad",
        ),
        RoutingRule(Squad.MEASURE, ["analytics-tracking"], "Measure Squad closes the feedback loop"),
    ],
    GoalCategory.CONTENT: [
        RoutingRule(Squad.STRATEGY, ["content-strategy"], "Content goals start with a content strategy"),
        RoutingRule(
            Squad.CREATIVE,
            ["copywriting", "copy-editing", "social-content", "programmatic-seo", "schema-markup"],
            "Creative Squad produces the content with Strategy output as input",
        ),
        RoutingRule(Squad.MEASURE, ["seo-audit", "analytics-tracking"], "Measure Squad audits and tracks the content"),
    ],
    GoalCategory.OPTIMIZATION: [
        RoutingRule(
            Squad.CONVERT,
            ["page-cro", "form-cro", "signup-flow-cro", "popup-cro"],
            "Convert Squad audits existing touchpoints first",
        ),
        RoutingRule(Squad.CREATIVE, ["copywriting"], "Creative Squad executes rewrites based on audit findings"),
        RoutingRule(Squad.MEASURE, ["ab-test-setup", "analytics-tracking"], "Measure Squad tests and tracks the changes"),
    ],
    GoalCategory.RETENTION: [
        RoutingRule(
            Squad.ACTIVATE,
            ["onboarding-cro", "email-sequence", "paywall-upgrade-cro", "referral-program"],
            "Activate Squad handles retention-focused work",
        ),
        RoutingRule(
            Squad.MEASURE, ["ab-test-setup", "analytics-tracking"], "Measure Squad tests and tracks retention changes"
        ),
    ],
    GoalCategory.COMPETITIVE: [
        RoutingRule(Squad.STRATEGY, ["competitor-alternatives"], "Strategy Squad researches the competitive landscape"),
        RoutingRule(Squad.CREATIVE, ["copywriting", "paid-ads"], "Creative Squad produces response content and ads"),
        RoutingRule(Squad.STRATEGY, ["pricing-strategy"], "Strategy Squad may adjust pricing in response"),
        RoutingRule(
            Squad.MEASURE, ["analytics-tracking"], "Measure Squad tracks competitive response effectiveness"
        ),
    ],
    GoalCategory.MEASUREMENT: [
        RoutingRule(
            Squad.MEASURE,
            ["seo-audit", "analytics-tracking", "ab-test-setup"],
            "Measurement goals route directly to Measure Squad",
        ),
    ],
}


def route_goal(category: GoalCategory | str) -> RoutingDecision:
    category = GoalCategory(category)
    routes = [RoutingRule(r.squad, list(r.skills), r.reason) for r in ROUTING_RULES[category]]
    if not routes or routes[-1].squad != Squad.MEASURE:
        raise ValueError(f"Routing for {category.value} must end with the measure squad")
    return RoutingDecision(goal_category=category, routes=routes, measure_squad_final=True)


def select_skills(decision: RoutingDecision) -> list[str]:
    """Flatten routes into skill names, keeping the first occurrence of each."""
    seen: set[str] = set()
    skills: list[str] = []
    for route in decision.routes:
        for skill in route.skills:
            if skill not in seen:
                seen.add(skill)
                skills.append(skill)
    return skills
