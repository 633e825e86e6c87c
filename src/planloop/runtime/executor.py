"""Execute proposed tool calls against the registry under the run policy."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from pydantic import ValidationError

from ..policy.agent_policy import AgentPolicy
from ..tools.registry import ToolContext, ToolRegistry, ToolResult
from ..utils.issues import summarize_validation_error, truncate_text
from .events import EventSink, EventType, emit
from .recorder import AuditCollector
from .review import HumanReviewer, PatchReviewRequest, ReviewUnavailableError
from .state import AgentState, ErrorKind, set_state_error

LOGGER = logging.getLogger(__name__)

MAX_ERROR_DETAIL_CHARS = 4_000
PATCH_REVIEW_REASON = "Generated PATCH files require manual merge"
PATCH_REVIEW_REJECTED = "Human review rejected automatic continuation after PATCH generation"


@dataclass(slots=True)
class RunContext:
    """Collaborators shared by every runtime step of one run."""

    registry: ToolRegistry
    policy: AgentPolicy
    tool_context: ToolContext
    audit: AuditCollector
    reviewer: Optional[HumanReviewer] = None
    on_event: Optional[EventSink] = None
    max_tool_calls_per_turn: int = 4
    turn: int = 0


@dataclass(slots=True)
class ToolCall:
    name: str
    input: Any = None
    on_fail: str = "stop"


@dataclass(slots=True)
class ToolCallOutcome:
    """Result of one executed (or refused) tool call."""

    name: str
    input: Any
    ok: bool
    note: str
    result: Optional[ToolResult] = None
    on_fail: str = "stop"
    touched_paths: List[str] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        if self.ok:
            return None
        return self.note

    def audit_entry(self) -> dict[str, Any]:
        return {"name": self.name, "ok": self.ok, "error": self.error}


def format_tool_error(result: ToolResult) -> str:
    if result.error is None:
        return "tool failed without an error message"
    if result.error.detail:
        detail = truncate_text(result.error.detail, MAX_ERROR_DETAIL_CHARS)
        return f"{result.error.message} ({detail})"
    return result.error.message


def _merge_paths(target: List[str], paths: Iterable[str]) -> List[str]:
    added = []
    for path in paths:
        if path not in target:
            target.append(path)
            added.append(path)
    return added


def _handle_patch_paths(state: AgentState, ctx: RunContext, new_paths: List[str]) -> bool:
    """Account for freshly generated patch files; return False when the run must stop."""
    state.budgets.used_patches += len(new_paths)
    emit(ctx.on_event, EventType.PATCH_GENERATED, paths=list(new_paths))
    if state.budgets.used_patches > state.budgets.max_patches:
        state.fail(
            ErrorKind.BUDGET,
            f"max patches reached ({state.budgets.used_patches} > {state.budgets.max_patches})",
        )
        return False
    if ctx.reviewer is None:
        return True

    review = PatchReviewRequest(reason=PATCH_REVIEW_REASON, patch_paths=list(new_paths), phase="tool_execution")
    try:
        approved = ctx.reviewer.approve_patches(review)
    except ReviewUnavailableError as error:
        state.fail(ErrorKind.CONFIG, str(error))
        return False
    state.human_reviews.append({"reason": review.reason, "patch_paths": list(new_paths), "approved": approved})
    if not approved:
        state.fail(ErrorKind.CONFIG, PATCH_REVIEW_REJECTED)
        return False
    return True


def execute_tool_call(call: ToolCall, state: AgentState, ctx: RunContext) -> ToolCallOutcome:
    """Run a single call, recording errors on ``state`` without raising."""
    name = call.name
    emit(ctx.on_event, EventType.TOOL_START, name=name)
    outcome = _execute(call, state, ctx)
    state.tool_calls.append({"name": name, "input": call.input})
    state.tool_results.append(outcome.audit_entry())
    emit(ctx.on_event, EventType.TOOL_END, name=name, ok=outcome.ok, note=outcome.note)
    return outcome


def _execute(call: ToolCall, state: AgentState, ctx: RunContext) -> ToolCallOutcome:
    name = call.name

    if name not in ctx.policy.safety.allowed_tools:
        note = f"tool {name} is blocked by policy"
        set_state_error(state, ErrorKind.CONFIG, note)
        return ToolCallOutcome(name=name, input=call.input, ok=False, note=note, on_fail=call.on_fail)

    spec = ctx.registry.get(name)
    if spec is None:
        note = f"unknown tool {name}"
        set_state_error(state, ErrorKind.UNKNOWN, note)
        return ToolCallOutcome(name=name, input=call.input, ok=False, note=note, on_fail=call.on_fail)

    if call.input is None:
        note = f"invalid input for {name}: expected object, received undefined"
        set_state_error(state, ErrorKind.CONFIG, note)
        return ToolCallOutcome(name=name, input=call.input, ok=False, note=note, on_fail=call.on_fail)

    try:
        params = spec.input_model.model_validate(call.input)
    except ValidationError as error:
        note = f"invalid input for {name}: {summarize_validation_error(error)}"
        set_state_error(state, ErrorKind.CONFIG, note)
        return ToolCallOutcome(name=name, input=call.input, ok=False, note=note, on_fail=call.on_fail)

    try:
        result = spec.run(params, ctx.tool_context)
    except Exception as error:  # noqa: BLE001 - a crashing tool is reported as a failed call
        LOGGER.warning("Tool %s raised: %s", name, error)
        result = ToolResult.failure("TOOL_EXCEPTION", f"{name} raised {type(error).__name__}: {error}")

    _merge_paths(state.touched_files, result.touched_paths)
    _merge_paths(ctx.tool_context.touched_paths, result.touched_paths)
    _merge_paths(ctx.tool_context.patch_paths, result.patch_paths)
    new_patches = _merge_paths(state.patch_paths, result.patch_paths)
    if new_patches and not _handle_patch_paths(state, ctx, new_patches):
        note = state.last_error.message if state.last_error else PATCH_REVIEW_REJECTED
        return ToolCallOutcome(
            name=name,
            input=call.input,
            ok=False,
            note=note,
            result=result,
            on_fail=call.on_fail,
            touched_paths=list(result.touched_paths),
        )

    if not result.ok:
        note = format_tool_error(result)
        set_state_error(state, ErrorKind.UNKNOWN, note)
    else:
        note = "ok"
    return ToolCallOutcome(
        name=name,
        input=call.input,
        ok=result.ok,
        note=note,
        result=result,
        on_fail=call.on_fail,
        touched_paths=list(result.touched_paths),
    )


def execute_tool_calls(calls: Iterable[ToolCall], state: AgentState, ctx: RunContext) -> List[ToolCallOutcome]:
    """Run ``calls`` in order; a failure stops the batch unless that call allows continuing."""
    outcomes: List[ToolCallOutcome] = []
    for call in calls:
        outcome = execute_tool_call(call, state, ctx)
        outcomes.append(outcome)
        if state.is_terminal:
            break
        if not outcome.ok and outcome.on_fail != "continue":
            break
    return outcomes


__all__ = [
    "MAX_ERROR_DETAIL_CHARS",
    "PATCH_REVIEW_REASON",
    "PATCH_REVIEW_REJECTED",
    "RunContext",
    "ToolCall",
    "ToolCallOutcome",
    "execute_tool_call",
    "execute_tool_calls",
    "format_tool_error",
]
