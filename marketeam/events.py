"""Event bus — maps external signals to pipeline launches, with dedup and cooldowns."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable

from marketeam.errors import MarketeamError
from marketeam.models import PipelineRun, Priority, Task, now_iso

if TYPE_CHECKING:
    from marketeam.director import Director

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    TRAFFIC_DROP = "traffic_drop"
    CONVERSION_DROP = "conversion_drop"
    COMPETITOR_LAUNCH = "competitor_launch"
    EMAIL_BOUNCE_SPIKE = "email_bounce_spike"
    AB_TEST_SIGNIFICANT = "ab_test_significant"
    NEW_FEATURE_SHIPPED = "new_feature_shipped"
    NEW_BLOG_POST = "new_blog_post"
    BUDGET_WARNING = "budget_warning"
    BUDGET_CRITICAL = "budget_critical"
    AGENT_FAILURE = "agent_failure"
    PIPELINE_BLOCKED = "pipeline_blocked"
    MANUAL_GOAL = "manual_goal"


@dataclass
class SystemEvent:
    type: EventType
    source: str = "manual"
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"evt-{secrets.token_hex(6)}")
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source,
            "data": self.data,
            "timestamp": self.timestamp,
        }


@dataclass
class EventMapping:
    event_type: EventType
    pipeline_template: str
    priority: Priority
    condition: Callable[[SystemEvent], bool] | None = None
    cooldown_seconds: float | None = None


@dataclass
class EmitResult:
    event_id: str
    event_type: EventType
    runs: list[PipelineRun] = field(default_factory=list)
    tasks: list[Task] = field(default_factory=list)
    skipped_reasons: list[str] = field(default_factory=list)

    @property
    def pipelines_triggered(self) -> int:
        return len(self.runs)

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "pipelines_triggered": self.pipelines_triggered,
            "runs": [r.to_dict() for r in self.runs],
            "tasks": [t.to_dict() for t in self.tasks],
            "skipped_reasons": self.skipped_reasons,
        }


def _above(key: str, limit: float) -> Callable[[SystemEvent], bool]:
    def check(event: SystemEvent) -> bool:
        value = event.data.get(key)
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value > limit

    return check


HOUR = 3600.0

# Internal events (budget, failures, blocked pipelines) are logged only and have no mapping.
DEFAULT_MAPPINGS: list[EventMapping] = [
    EventMapping(EventType.TRAFFIC_DROP, "SEO Cycle", Priority.P1, _above("percentageDrop", 20), HOUR),
    EventMapping(EventType.CONVERSION_DROP, "Conversion Sprint", Priority.P0, _above("percentageDrop", 10), HOUR),
    EventMapping(EventType.COMPETITOR_LAUNCH, "Competitive Response", Priority.P1, None, 24 * HOUR),
    EventMapping(EventType.NEW_FEATURE_SHIPPED, "Page Launch", Priority.P1, None, 300.0),
    EventMapping(EventType.NEW_BLOG_POST, "Content Production", Priority.P2, None, 300.0),
    EventMapping(EventType.EMAIL_BOUNCE_SPIKE, "Retention Sprint", Priority.P1, _above("percentageSpike", 15), HOUR),
    EventMapping(EventType.AB_TEST_SIGNIFICANT, "Conversion Sprint", Priority.P1, None, 300.0),
]


class TriggerGate:
    """Event-id dedup and per-event-type cooldown windows, behind one lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._seen: set[str] = set()
        self._last_trigger: dict[str, float] = {}

    def seen(self, event_id: str) -> bool:
        """Record the id; True if it had already been recorded."""
        with self._lock:
            if event_id in self._seen:
                return True
            self._seen.add(event_id)
            return False

    def should_trigger(self, event_type: str, cooldown_seconds: float | None) -> bool:
        with self._lock:
            last = self._last_trigger.get(event_type)
            if cooldown_seconds is None or last is None:
                return True
            return self._clock() - last >= cooldown_seconds

    def record_trigger(self, event_type: str):
        with self._lock:
            self._last_trigger[event_type] = self._clock()


class EventBus:
    """Turns system events into pipeline runs and keeps an append-only event log."""

    def __init__(
        self,
        director: Director,
        mappings: list[EventMapping] | None = None,
        log_file: Path | None = None,
        gate: TriggerGate | None = None,
        enqueue: Callable[[list[Task]], None] | None = None,
    ):
        self.director = director
        self.mappings = list(DEFAULT_MAPPINGS if mappings is None else mappings)
        self.gate = gate or TriggerGate()
        self._enqueue = enqueue
        self._log_file = log_file
        self._history: list[SystemEvent] = []
        self._subscribers: list[asyncio.Queue] = []

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)

    def add_mapping(self, mapping: EventMapping):
        self.mappings.append(mapping)

    def emit(self, event: SystemEvent) -> EmitResult:
        result = EmitResult(event_id=event.id, event_type=event.type)
        if self.gate.seen(event.id):
            logger.info(f"Event {event.id} already processed, skipping")
            result.skipped_reasons.append(f"Duplicate event ID: {event.id}")
            return result

        self._record(event)
        matching = [m for m in self.mappings if m.event_type == event.type]
        if not matching:
            logger.debug(f"No mappings for {event.type.value}")
            return result

        cooldowns = [m.cooldown_seconds for m in matching if m.cooldown_seconds is not None]
        cooldown = min(cooldowns) if cooldowns else None
        if not self.gate.should_trigger(event.type.value, cooldown):
            reason = f"Cooldown active for {event.type.value} ({cooldown:g}s)"
            logger.info(reason)
            result.skipped_reasons.append(reason)
            return result

        description = f"[Event: {event.type.value}] {json.dumps(event.data)}"
        for mapping in matching:
            if mapping.condition and not mapping.condition(event):
                reason = f"Condition not met for {event.type.value} -> {mapping.pipeline_template}"
                logger.info(reason)
                result.skipped_reasons.append(reason)
                continue
            try:
                launch = self.director.start_pipeline(mapping.pipeline_template, description, mapping.priority)
            except MarketeamError as e:
                reason = f"Pipeline start failed for {mapping.pipeline_template}: {e}"
                logger.error(reason)
                result.skipped_reasons.append(reason)
                continue
            result.runs.append(launch.run)
            result.tasks.extend(launch.tasks)
            if self._enqueue and launch.tasks:
                self._enqueue(launch.tasks)
            logger.info(
                f"Event {event.type.value} triggered {mapping.pipeline_template} as {launch.run.id} "
                f"({len(launch.tasks)} task(s))"
            )

        if result.runs:
            self.gate.record_trigger(event.type.value)
        return result

    def emit_simple(self, type: EventType | str, source: str = "manual", **data) -> EmitResult:
        return self.emit(SystemEvent(type=EventType(type), source=source, data=data))

    def recent(self, limit: int = 50, offset: int = 0) -> list[SystemEvent]:
        start = max(0, len(self._history) - offset - limit)
        end = len(self._history) - offset
        return self._history[start:end]

    def subscribe(self) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=1000)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue):
        if q in self._subscribers:
            self._subscribers.remove(q)

    def _record(self, event: SystemEvent):
        self._history.append(event)
        if self._log_file:
            with open(self._log_file, "a") as f:
                f.write(json.dumps(event.to_dict()) + "\n")
        for q in self._subscribers:
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Subscriber queue full, dropping event {event.id}")
