"""Operator console — create goals, start pipelines, emit events, review tasks, and work the human review queue."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from marketeam.catalog import PIPELINE_TEMPLATES, load_registry
from marketeam.config import HUMAN_REVIEW_EXPIRY_HOURS, SKILLS_FILE, WORKSPACE_DIR, DirectorConfig
from marketeam.director import Director
from marketeam.errors import MarketeamError
from marketeam.events import EventType, SystemEvent
from marketeam.models import (
    BudgetLevel,
    GoalCategory,
    HumanDecision,
    HumanFeedback,
    Priority,
    Task,
    TaskStatus,
)
from marketeam.providers import create_client
from marketeam.workspace import FileWorkspace

console = Console()

LEVEL_STYLE = {
    BudgetLevel.NORMAL: "green",
    BudgetLevel.WARNING: "yellow",
    BudgetLevel.THROTTLE: "dark_orange",
    BudgetLevel.CRITICAL: "red",
    BudgetLevel.EXHAUSTED: "bold red",
}


def build_director(workspace_dir: Path) -> Director:
    workspace = FileWorkspace(workspace_dir)
    workspace.init()
    return Director(
        workspace,
        DirectorConfig.from_settings(),
        client=create_client(),
        registry=load_registry(SKILLS_FILE),
        event_log=workspace.root / "metrics" / "events.jsonl",
    )


def print_tasks(tasks: list[Task], title: str = "Tasks"):
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Skill")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Rev", justify="right")
    table.add_column("Next")
    for task in tasks:
        table.add_row(
            task.id,
            task.to,
            task.priority.value,
            task.status.value,
            str(task.revision_count),
            task.next.type.value,
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init(args) -> int:
    workspace = FileWorkspace(args.workspace)
    workspace.init()
    console.print(f"[green]Workspace ready at {workspace.root}[/green]")
    if not workspace.context_exists():
        console.print("[dim]No product marketing context yet; run the product-marketing-context skill first.[/dim]")
    return 0


def cmd_goal(args) -> int:
    director = build_director(args.workspace)
    goal = director.create_goal(args.description, args.category, args.priority, args.deadline)
    plan = director.decompose_goal(goal)
    tasks = director.plan_goal_tasks(plan, goal)

    console.print(Panel(goal.description, title=f"[bold]{goal.id}[/bold] ({goal.category.value}, {goal.priority.value})"))
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Phase")
    table.add_column("Skills")
    table.add_column("Parallel")
    for i, phase in enumerate(plan.phases, 1):
        table.add_row(str(i), phase.name, ", ".join(phase.skills), "yes" if phase.parallel else "no")
    console.print(table)
    if plan.pipeline_template_name:
        console.print(f"[dim]Template: {plan.pipeline_template_name}[/dim]")
    print_tasks(tasks, "Phase 1 tasks")
    return 0


def cmd_advance(args) -> int:
    result = build_director(args.workspace).advance_goal(args.goal_id)
    if result == "complete":
        console.print(f"[bold green]Goal {args.goal_id} is complete.[/bold green]")
    else:
        print_tasks(result, f"Goal {args.goal_id}")
    return 0


def cmd_iterate(args) -> int:
    result = build_director(args.workspace).iterate_goal(args.goal_id, args.reason)
    if result.escalation:
        console.print(f"[red]Escalated:[/red] {result.escalation.message}")
        return 0
    print_tasks(result.tasks, f"Goal {args.goal_id}, iteration {result.iteration}")
    return 0


def _event_value(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


def cmd_event(args) -> int:
    data = {}
    for pair in args.data:
        key, sep, value = pair.partition("=")
        if not sep:
            console.print(f"[red]Expected key=value, got {pair!r}[/red]")
            return 1
        data[key] = _event_value(value)
    result = build_director(args.workspace).events.emit(SystemEvent(type=EventType(args.type), source="cli", data=data))
    for reason in result.skipped_reasons:
        console.print(f"[yellow]Skipped:[/yellow] {reason}")
    console.print(f"[green]{result.pipelines_triggered} pipeline(s) triggered[/green]")
    if result.tasks:
        print_tasks(result.tasks, "Triggered tasks")
    return 0


def cmd_pipeline(args) -> int:
    launch = build_director(args.workspace).start_pipeline(args.template, args.description, args.priority)
    console.print(f"[green]Started {launch.definition.name} as {launch.run.id}[/green]")
    print_tasks(launch.tasks, "First step")
    return 0


def cmd_tasks(args) -> int:
    tasks = build_director(args.workspace).workspace.list_tasks(status=args.status, goal_id=args.goal)
    if not tasks:
        console.print("[dim]No tasks.[/dim]")
        return 0
    print_tasks(tasks)
    return 0


def cmd_review(args) -> int:
    decision = build_director(args.workspace).review_completed_task(args.task_id)
    verdict = decision.review.verdict.value if decision.review else "-"
    color = {"APPROVE": "green", "REVISE": "yellow", "REJECT": "red"}.get(verdict, "white")
    console.print(f"[bold {color}]{verdict}[/bold {color}] -> {decision.action.value}")
    if decision.review:
        for finding in decision.review.findings:
            console.print(f"  [{finding.severity.value}] {finding.section}: {finding.description}")
    for task in decision.next_tasks:
        console.print(f"  [cyan]New task:[/cyan] {task.id} (revision {task.revision_count})")
    if decision.escalation:
        console.print(f"  [red]Escalated:[/red] {decision.escalation.message}")
    return 0


def cmd_reviews(args) -> int:
    manager = build_director(args.workspace).human_review
    if args.expire:
        expired = manager.expire_stale(HUMAN_REVIEW_EXPIRY_HOURS * 3600)
        console.print(f"[dim]Expired {len(expired)} stale item(s).[/dim]")

    items = manager.get_pending_reviews(urgency=args.urgency)
    table = Table(title="Pending human reviews", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Task")
    table.add_column("Skill")
    table.add_column("Urgency")
    table.add_column("Reason")
    for item in items:
        table.add_row(item.id, item.task_id, item.skill, item.urgency.value, item.escalation_reason)
    console.print(table)

    stats = manager.get_stats()
    console.print(
        f"[dim]{stats.total} total, {stats.pending} pending, {stats.in_review} in review, "
        f"{stats.resolved} resolved, {stats.expired} expired[/dim]"
    )
    return 0


def cmd_feedback(args) -> int:
    feedback = HumanFeedback(
        decision=HumanDecision(args.decision),
        reviewer=args.reviewer,
        notes=args.notes,
        revision_instructions=args.instructions,
    )
    result = build_director(args.workspace).human_review.submit_feedback(args.review_id, feedback)
    console.print(f"[green]Resolved {result.item.id} ({feedback.decision.value})[/green]")
    if result.resumed_tasks:
        print_tasks(result.resumed_tasks, "Resumed")
    return 0


def cmd_budget(args) -> int:
    director = build_director(args.workspace)
    state = director.compute_budget_state(args.spent)
    style = LEVEL_STYLE[state.level]
    console.print(
        f"[{style}]{state.level.value.upper()}[/{style}] "
        f"${state.spent:,.2f} of ${state.total_budget:,.2f} ({state.percent_used:.1f}%)"
    )
    allowed = ", ".join(p.value for p in state.allowed_priorities) or "NONE"
    console.print(f"Allowed priorities: {allowed}")
    if state.model_override:
        console.print(f"Model override: {state.model_override.value}")
    return 0


def cmd_skills(args) -> int:
    registry = load_registry(SKILLS_FILE)
    table = Table(title="Skills", show_header=True, header_style="bold magenta")
    table.add_column("Skill", style="cyan")
    table.add_column("Squad")
    table.add_column("Feeds")
    for name in registry.skill_names:
        downstream = registry.downstream_of(name)
        feeds = "all" if len(downstream) == len(registry.skill_names) - 1 else ", ".join(downstream)
        table.add_row(name, registry.squad_of(name) or "-", feeds)
    console.print(table)

    templates = Table(title="Pipeline templates", show_header=True, header_style="bold magenta")
    templates.add_column("Template", style="cyan")
    templates.add_column("Steps")
    templates.add_column("Priority")
    templates.add_column("Trigger")
    for template in PIPELINE_TEMPLATES:
        steps = " -> ".join(s if isinstance(s, str) else "[" + ", ".join(s) + "]" for s in template.steps)
        templates.add_row(template.name, steps, template.default_priority.value, template.trigger)
    console.print(templates)
    return 0


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="marketeam", description="Marketing director console")
    parser.add_argument("--workspace", type=Path, default=WORKSPACE_DIR, help="workspace directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="initialize the workspace").set_defaults(func=cmd_init)

    p = sub.add_parser("goal", help="create a goal and plan its first phase")
    p.add_argument("description")
    p.add_argument("--category", required=True, choices=[c.value for c in GoalCategory])
    p.add_argument("--priority", choices=[p.value for p in Priority])
    p.add_argument("--deadline")
    p.set_defaults(func=cmd_goal)

    p = sub.add_parser("advance", help="materialize the next phase of a goal")
    p.add_argument("goal_id")
    p.set_defaults(func=cmd_advance)

    p = sub.add_parser("iterate", help="start another pass at a goal that missed its target")
    p.add_argument("goal_id")
    p.add_argument("--reason", default="")
    p.set_defaults(func=cmd_iterate)

    p = sub.add_parser("pipeline", help="start a pipeline template")
    p.add_argument("template")
    p.add_argument("description")
    p.add_argument("--priority", choices=[p.value for p in Priority])
    p.set_defaults(func=cmd_pipeline)

    p = sub.add_parser("event", help="emit a system event")
    p.add_argument("type", choices=[t.value for t in EventType])
    p.add_argument("data", nargs="*", help="key=value pairs; values are parsed as JSON when possible")
    p.set_defaults(func=cmd_event)

    p = sub.add_parser("tasks", help="list tasks")
    p.add_argument("--status", choices=[s.value for s in TaskStatus])
    p.add_argument("--goal")
    p.set_defaults(func=cmd_tasks)

    p = sub.add_parser("review", help="review a completed task")
    p.add_argument("task_id")
    p.set_defaults(func=cmd_review)

    p = sub.add_parser("reviews", help="list pending human reviews")
    p.add_argument("--urgency", choices=["critical", "high", "normal"])
    p.add_argument("--expire", action="store_true", help="expire stale items first")
    p.set_defaults(func=cmd_reviews)

    p = sub.add_parser("feedback", help="resolve a human review item")
    p.add_argument("review_id")
    p.add_argument("decision", choices=[d.value for d in HumanDecision])
    p.add_argument("--reviewer", required=True)
    p.add_argument("--notes", default="")
    p.add_argument("--instructions", help="revision instructions (required for revise)")
    p.set_defaults(func=cmd_feedback)

    p = sub.add_parser("budget", help="show the budget state for a spend amount")
    p.add_argument("spent", type=float)
    p.set_defaults(func=cmd_budget)

    sub.add_parser("skills", help="list skills and pipeline templates").set_defaults(func=cmd_skills)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    if getattr(args, "status", None):
        args.status = TaskStatus(args.status)
    try:
        return args.func(args)
    except MarketeamError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
