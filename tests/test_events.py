"""Test the event bus: mappings, conditions, dedup, cooldowns, and the event log."""

import json

from helpers import make_config, make_workspace

from marketeam.director import Director
from marketeam.events import (
    DEFAULT_MAPPINGS,
    EventBus,
    EventMapping,
    EventType,
    SystemEvent,
    TriggerGate,
)
from marketeam.models import Priority


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_bus(tmp_path, **kwargs):
    director = Director(make_workspace(tmp_path), make_config())
    return EventBus(director, **kwargs)


def test_default_mappings():
    templates = {m.event_type: m.pipeline_template for m in DEFAULT_MAPPINGS}
    assert templates[EventType.CONVERSION_DROP] == "Conversion Sprint"
    assert templates[EventType.COMPETITOR_LAUNCH] == "Competitive Response"
    assert EventType.BUDGET_WARNING not in templates
    assert len(DEFAULT_MAPPINGS) == 7


def test_event_triggers_pipeline(tmp_path):
    bus = make_bus(tmp_path)
    result = bus.emit_simple("conversion_drop", "analytics", percentageDrop=15, page="/signup")

    assert result.pipelines_triggered == 1
    assert result.skipped_reasons == []
    assert result.runs[0].pipeline_id == "conversion-sprint"
    task = result.tasks[0]
    assert task.to == "page-cro"
    assert task.priority == Priority.P0
    assert task.goal == '[Event: conversion_drop] {"percentageDrop": 15, "page": "/signup"}'
    assert bus.director.workspace.read_task(task.id).id == task.id


def test_condition_not_met(tmp_path):
    bus = make_bus(tmp_path)
    result = bus.emit_simple(EventType.CONVERSION_DROP, percentageDrop=5)
    assert result.pipelines_triggered == 0
    assert result.skipped_reasons == ["Condition not met for conversion_drop -> Conversion Sprint"]


def test_condition_requires_number(tmp_path):
    bus = make_bus(tmp_path)
    assert bus.emit_simple(EventType.TRAFFIC_DROP, percentageDrop="30").pipelines_triggered == 0
    assert bus.emit_simple(EventType.TRAFFIC_DROP, percentageDrop=True).pipelines_triggered == 0


def test_duplicate_event_id(tmp_path):
    bus = make_bus(tmp_path)
    event = SystemEvent(type=EventType.COMPETITOR_LAUNCH, source="monitor", data={"name": "Rival"})
    assert bus.emit(event).pipelines_triggered == 1

    again = bus.emit(event)
    assert again.pipelines_triggered == 0
    assert again.skipped_reasons == [f"Duplicate event ID: {event.id}"]
    assert len(bus.recent()) == 1


def test_cooldown(tmp_path):
    clock = FakeClock()
    bus = make_bus(tmp_path, gate=TriggerGate(clock))

    assert bus.emit_simple(EventType.CONVERSION_DROP, percentageDrop=20).pipelines_triggered == 1
    blocked = bus.emit_simple(EventType.CONVERSION_DROP, percentageDrop=20)
    assert blocked.pipelines_triggered == 0
    assert blocked.skipped_reasons == ["Cooldown active for conversion_drop (3600s)"]

    clock.now += 3600
    assert bus.emit_simple(EventType.CONVERSION_DROP, percentageDrop=20).pipelines_triggered == 1


def test_unmet_condition_does_not_start_cooldown(tmp_path):
    bus = make_bus(tmp_path, gate=TriggerGate(FakeClock()))
    bus.emit_simple(EventType.CONVERSION_DROP, percentageDrop=1)
    assert bus.emit_simple(EventType.CONVERSION_DROP, percentageDrop=50).pipelines_triggered == 1


def test_internal_events_are_logged_only(tmp_path):
    bus = make_bus(tmp_path)
    result = bus.emit_simple(EventType.BUDGET_WARNING, "budget-gate", level="warning")
    assert result.pipelines_triggered == 0
    assert result.skipped_reasons == []
    assert bus.recent()[-1].type == EventType.BUDGET_WARNING


def test_failed_pipeline_start_is_reported(tmp_path):
    mappings = [
        EventMapping(EventType.MANUAL_GOAL, "Nope", Priority.P2),
        EventMapping(EventType.MANUAL_GOAL, "Outreach Campaign", Priority.P2),
    ]
    bus = make_bus(tmp_path, mappings=mappings)
    result = bus.emit_simple(EventType.MANUAL_GOAL)

    assert result.pipelines_triggered == 1
    assert result.skipped_reasons == ['Pipeline start failed for Nope: Unknown pipeline template: "Nope"']
    assert result.tasks[0].to == "cold-email"


def test_add_mapping_and_enqueue(tmp_path):
    queued = []
    bus = make_bus(tmp_path, mappings=[], enqueue=queued.append)
    bus.add_mapping(EventMapping(EventType.NEW_BLOG_POST, "SEO Cycle", Priority.P3))

    result = bus.emit_simple(EventType.NEW_BLOG_POST, url="/blog/x")

    assert queued == [result.tasks]
    assert result.tasks[0].priority == Priority.P3


def test_event_log_file(tmp_path):
    log_file = tmp_path / "logs" / "events.jsonl"
    bus = make_bus(tmp_path, log_file=log_file)
    bus.emit_simple(EventType.AGENT_FAILURE, "worker", task_id="t1")
    bus.emit_simple(EventType.PIPELINE_BLOCKED, "worker", run_id="r1")

    lines = log_file.read_text().splitlines()
    assert [json.loads(line)["type"] for line in lines] == ["agent_failure", "pipeline_blocked"]
    assert json.loads(lines[0])["data"] == {"task_id": "t1"}


def test_recent_pagination(tmp_path):
    bus = make_bus(tmp_path)
    for i in range(10):
        bus.emit_simple(EventType.AGENT_FAILURE, "worker", i=i)

    assert len(bus.recent(limit=3)) == 3
    assert [e.data["i"] for e in bus.recent(limit=3)] == [7, 8, 9]
    assert [e.data["i"] for e in bus.recent(limit=3, offset=3)] == [4, 5, 6]
    assert len(bus.recent(limit=100)) == 10


def test_subscribe(tmp_path):
    bus = make_bus(tmp_path)
    q = bus.subscribe()
    bus.emit_simple(EventType.AGENT_FAILURE, "worker")
    assert q.get_nowait().type == EventType.AGENT_FAILURE

    bus.unsubscribe(q)
    bus.emit_simple(EventType.AGENT_FAILURE, "worker")
    assert q.empty()


def test_trigger_gate():
    clock = FakeClock()
    gate = TriggerGate(clock)
    assert gate.seen("evt-1") is False
    assert gate.seen("evt-1") is True

    assert gate.should_trigger("traffic_drop", 60)
    gate.record_trigger("traffic_drop")
    assert not gate.should_trigger("traffic_drop", 60)
    assert gate.should_trigger("traffic_drop", None)
    clock.now += 60
    assert gate.should_trigger("traffic_drop", 60)
