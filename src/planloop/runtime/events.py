"""Structured lifecycle events emitted while a run progresses."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional


class EventType(str, Enum):
    PLAN_PROPOSED = "plan_proposed"
    TURN_START = "turn_start"
    TASK_SELECTED = "task_selected"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    CRITERIA_RESULT = "criteria_result"
    PATCH_GENERATED = "patch_generated"
    REPLAN_PROPOSED = "replan_proposed"
    REPLAN_GATE = "replan_gate"
    REPLAN_REVIEW_TEXT = "replan_review_text"
    REPLAN_APPLIED = "replan_applied"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class AgentEvent:
    type: EventType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, **self.payload}


EventSink = Callable[[AgentEvent], None]


def emit(sink: Optional[EventSink], event_type: EventType, **payload: Any) -> None:
    """Deliver an event to ``sink`` when one is attached."""
    if sink is not None:
        sink(AgentEvent(type=event_type, payload=payload))


__all__ = ["AgentEvent", "EventSink", "EventType", "emit"]
