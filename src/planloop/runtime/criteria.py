"""Evaluate a task's success criteria against the current attempt."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..plan.schema import (
    CommandCriterion,
    FileContainsCriterion,
    FileExistsCriterion,
    SuccessCriterion,
    ToolResultCriterion,
)
from .executor import RunContext, ToolCall, ToolCallOutcome, execute_tool_call
from .state import AgentState


@dataclass(slots=True)
class CriteriaEvaluation:
    ok: bool
    failures: List[str] = field(default_factory=list)
    audited_checks: List[Dict[str, Any]] = field(default_factory=list)


def criterion_to_tool_call(criterion: SuccessCriterion) -> Optional[ToolCall]:
    """Map a file/command criterion onto the check tool that verifies it."""
    if isinstance(criterion, FileExistsCriterion):
        return ToolCall(name="check_file_exists", input={"base": "appDir", "path": criterion.path})
    if isinstance(criterion, FileContainsCriterion):
        return ToolCall(
            name="check_file_contains",
            input={"base": "appDir", "path": criterion.path, "contains": criterion.contains},
        )
    if isinstance(criterion, CommandCriterion):
        payload: Dict[str, Any] = {
            "cmd": criterion.cmd,
            "args": list(criterion.args),
            "expect_exit_code": criterion.expect_exit_code,
        }
        if criterion.cwd is not None:
            payload["cwd"] = criterion.cwd
        return ToolCall(name="check_command", input=payload)
    return None


def _latest_outcome(outcomes: Sequence[ToolCallOutcome], tool_name: str) -> Optional[ToolCallOutcome]:
    for outcome in reversed(outcomes):
        if outcome.name == tool_name:
            return outcome
    return None


def evaluate_success_criteria(
    criteria: Sequence[SuccessCriterion],
    outcomes: Sequence[ToolCallOutcome],
    state: AgentState,
    ctx: RunContext,
) -> CriteriaEvaluation:
    """Check every criterion; a failing one never short-circuits the rest."""
    failures: List[str] = []
    audited: List[Dict[str, Any]] = []

    for criterion in criteria:
        if isinstance(criterion, ToolResultCriterion):
            recorded = _latest_outcome(outcomes, criterion.tool_name)
            if recorded is None or recorded.ok != criterion.expected_ok:
                failures.append(f"tool_result failed for {criterion.tool_name}")
            continue

        call = criterion_to_tool_call(criterion)
        if call is None:  # pragma: no cover - the criterion union is exhaustive
            failures.append(f"unsupported criterion type: {criterion.type}")
            continue
        check = execute_tool_call(call, state, ctx)
        audited.append(check.audit_entry())
        if not check.ok:
            failures.append(f"criteria check failed: {call.name}")

    return CriteriaEvaluation(ok=not failures, failures=failures, audited_checks=audited)


__all__ = ["CriteriaEvaluation", "criterion_to_tool_call", "evaluate_success_criteria"]
