"""One attempt at a task: propose tool calls, run them, check the criteria."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..plan.schema import Task
from ..planning.planner import Planner, PlannerOutputError
from .criteria import evaluate_success_criteria
from .executor import RunContext, ToolCall, ToolCallOutcome, execute_tool_calls
from .state import AgentState, ErrorKind

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskAttemptResult:
    ok: bool
    failures: List[str] = field(default_factory=list)
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_audit: List[Dict[str, Any]] = field(default_factory=list)
    planner_failed: bool = False

    def tool_errors(self) -> List[str]:
        return [entry["error"] for entry in self.tool_audit if not entry["ok"] and entry.get("error")]


def attempt_call_cap(ctx: RunContext) -> int:
    return min(ctx.max_tool_calls_per_turn, ctx.policy.budgets.max_actions_per_task)


def run_task_attempt(
    task: Task,
    state: AgentState,
    ctx: RunContext,
    planner: Planner,
    *,
    recent_failures: List[str],
) -> TaskAttemptResult:
    """Run one attempt; planner failure fails the run, unmet criteria do not."""
    if state.plan_data is None:
        state.fail(ErrorKind.CONFIG, "Missing current plan during task attempt")
        return TaskAttemptResult(ok=False, failures=["Missing current plan during task attempt"])
    cap = attempt_call_cap(ctx)

    try:
        proposal = planner.propose_tool_calls(
            task,
            state.plan_data,
            completed=set(state.completed_tasks),
            recent_failures=recent_failures,
            max_calls=cap,
            previous_response_id=state.last_response_id,
        )
    except PlannerOutputError as error:
        message = str(error)
        state.fail(ErrorKind.UNKNOWN, f"Failed to propose tool calls for task '{task.id}': {message}")
        ctx.audit.record_turn(turn=ctx.turn, note=f"task_tool_calls for {task.id}", errors=[message])
        return TaskAttemptResult(ok=False, failures=[message], planner_failed=True)

    state.last_response_id = proposal.response_id or state.last_response_id
    calls = [ToolCall(name=item.name, input=item.input, on_fail=item.on_fail) for item in proposal.value[:cap]]
    LOGGER.debug("Task %s: executing %d tool call(s)", task.id, len(calls))

    outcomes: List[ToolCallOutcome] = execute_tool_calls(calls, state, ctx)
    tool_audit = [outcome.audit_entry() for outcome in outcomes]

    if state.is_terminal:
        failures = [state.last_error.message] if state.last_error else []
        ctx.audit.record_turn(
            turn=ctx.turn,
            note=f"task_tool_calls for {task.id}",
            llm_raw=proposal.raw,
            prompt=proposal.prompt,
            previous_response_id=proposal.exchange.previous_response_id,
            response_id=proposal.response_id,
            tool_calls=calls,
            tool_results=tool_audit,
            errors=failures,
        )
        return TaskAttemptResult(ok=False, failures=failures, tool_calls=calls, tool_audit=tool_audit)

    evaluation = evaluate_success_criteria(task.success_criteria, outcomes, state, ctx)
    tool_audit.extend(evaluation.audited_checks)

    touched: List[str] = []
    for outcome in outcomes:
        touched.extend(outcome.touched_paths)
    ctx.audit.record_turn(
        turn=ctx.turn,
        note=f"task_tool_calls for {task.id}",
        llm_raw=proposal.raw,
        prompt=proposal.prompt,
        previous_response_id=proposal.exchange.previous_response_id,
        response_id=proposal.response_id,
        tool_calls=calls,
        tool_results=tool_audit,
        touched_paths=touched,
        errors=evaluation.failures,
    )
    return TaskAttemptResult(
        ok=evaluation.ok,
        failures=list(evaluation.failures),
        tool_calls=calls,
        tool_audit=tool_audit,
    )


__all__ = ["TaskAttemptResult", "attempt_call_cap", "run_task_attempt"]
