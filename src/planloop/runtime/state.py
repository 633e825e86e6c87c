"""Mutable run record threaded through every runtime component."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from ..plan.schema import Plan
from ..plan.selectors import summarize_plan


class AgentStatus(str, Enum):
    """Lifecycle states of a run."""

    PLANNING = "planning"
    EXECUTING = "executing"
    REVIEWING = "reviewing"
    REPLANNING = "replanning"
    DONE = "done"
    FAILED = "failed"


class ErrorKind(str, Enum):
    """Coarse category recorded with the last error of a run."""

    CONFIG = "Config"
    UNKNOWN = "Unknown"
    BUDGET = "Budget"


TERMINAL_STATUSES = frozenset({AgentStatus.DONE, AgentStatus.FAILED})


@dataclass(slots=True)
class LastError:
    kind: ErrorKind
    message: str


@dataclass(slots=True)
class StateBudgets:
    """Run-wide budgets and their consumption counters."""

    max_turns: int = 16
    max_patches: int = 8
    used_turns: int = 0
    used_patches: int = 0
    used_repairs: int = 0
    used_replans: int = 0


@dataclass(slots=True)
class AgentState:
    """The single mutable record of one run.

    Field ownership: the orchestrator moves ``status`` between turns, the task
    retry loop writes ``completed_tasks`` and ``task_failures``, the replanner
    writes ``plan_data`` and ``plan_version``.  Any component may record
    ``last_error`` and fail the run.
    """

    goal: str
    status: AgentStatus = AgentStatus.PLANNING
    budgets: StateBudgets = field(default_factory=StateBudgets)
    plan_data: Optional[Plan] = None
    plan_version: int = 0
    current_task_id: Optional[str] = None
    completed_tasks: Set[str] = field(default_factory=set)
    task_failures: Dict[str, List[str]] = field(default_factory=dict)
    failure_fingerprints: Dict[str, Set[str]] = field(default_factory=dict)
    last_error: Optional[LastError] = None
    last_response_id: Optional[str] = None
    plan_history: List[Dict[str, Any]] = field(default_factory=list)
    patch_paths: List[str] = field(default_factory=list)
    touched_files: List[str] = field(default_factory=list)
    human_reviews: List[Dict[str, Any]] = field(default_factory=list)
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    tool_results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def fail(self, kind: ErrorKind, message: str) -> None:
        """Record ``message`` as the last error and move to ``failed``."""
        set_state_error(self, kind, message)
        self.status = AgentStatus.FAILED


def set_state_error(state: AgentState, kind: ErrorKind, message: str) -> None:
    state.last_error = LastError(kind=kind, message=message)


def summarize_state(state: AgentState) -> Dict[str, Any]:
    """JSON-friendly snapshot of the state handed to the planner and the audit log."""
    return {
        "status": state.status.value,
        "goal": state.goal,
        "plan_version": state.plan_version,
        "current_task_id": state.current_task_id,
        "completed_tasks": sorted(state.completed_tasks),
        "plan_summary": summarize_plan(state.plan_data) if state.plan_data else None,
        "budgets": {
            "max_turns": state.budgets.max_turns,
            "max_patches": state.budgets.max_patches,
            "used_turns": state.budgets.used_turns,
            "used_patches": state.budgets.used_patches,
            "used_repairs": state.budgets.used_repairs,
            "used_replans": state.budgets.used_replans,
        },
        "last_error": (
            {"kind": state.last_error.kind.value, "message": state.last_error.message}
            if state.last_error
            else None
        ),
        "last_response_id": state.last_response_id,
        "patch_paths": list(state.patch_paths),
        "human_reviews": list(state.human_reviews),
        "touched_files": state.touched_files[-30:],
    }


__all__ = [
    "AgentState",
    "AgentStatus",
    "ErrorKind",
    "LastError",
    "StateBudgets",
    "TERMINAL_STATUSES",
    "set_state_error",
    "summarize_state",
]
