"""Test goal routing."""

import pytest

from marketeam.catalog import default_registry
from marketeam.models import GoalCategory, RoutingDecision, RoutingRule, Squad
from marketeam.router import ROUTING_RULES, route_goal, select_skills


def test_every_category_ends_with_measure():
    for category in GoalCategory:
        decision = route_goal(category)
        assert decision.routes[-1].squad == Squad.MEASURE
        assert decision.measure_squad_final is True


def test_optimization_route_order():
    decision = route_goal("optimization")
    assert decision.goal_category == GoalCategory.OPTIMIZATION
    assert [r.squad for r in decision.routes] == [Squad.CONVERT, Squad.CREATIVE, Squad.MEASURE]
    assert decision.routes[0].skills == ["page-cro", "form-cro", "signup-flow-cro", "popup-cro"]


def test_competitive_visits_strategy_twice():
    squads = [r.squad for r in route_goal(GoalCategory.COMPETITIVE).routes]
    assert squads == [Squad.STRATEGY, Squad.CREATIVE, Squad.STRATEGY, Squad.MEASURE]


def test_routes_are_copies():
    decision = route_goal(GoalCategory.MEASUREMENT)
    decision.routes[0].skills.append("page-cro")
    assert "page-cro" not in ROUTING_RULES[GoalCategory.MEASUREMENT][0].skills


def test_routed_skills_exist():
    registry = default_registry()
    for category in GoalCategory:
        for route in route_goal(category).routes:
            for skill in route.skills:
                assert registry.squad_of(skill) == route.squad.value


def test_unknown_category():
    with pytest.raises(ValueError):
        route_goal("branding")


def test_select_skills_keeps_first_occurrence():
    decision = RoutingDecision(
        goal_category=GoalCategory.CONTENT,
        routes=[
            RoutingRule(Squad.CREATIVE, ["copywriting", "copy-editing"], "first"),
            RoutingRule(Squad.MEASURE, ["analytics-tracking", "copywriting"], "second"),
        ],
    )
    assert select_skills(decision) == ["copywriting", "copy-editing", "analytics-tracking"]
