"""Per-task retry loop: attempt, classify failures, escalate to a replan."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from ..plan.schema import Task
from ..planning.planner import Planner
from .events import EventType, emit
from .executor import RunContext
from .failures import classify_failure
from .replanner import handle_replan
from .state import AgentState, AgentStatus, ErrorKind
from .task_attempt import run_task_attempt

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TaskRunOutcome:
    """``ok`` means the run may continue; ``completed`` means the task itself passed."""

    ok: bool
    attempts: int
    completed: bool = False
    replanned: bool = False


def _remember_fingerprint(state: AgentState, task_id: str, fingerprint: str) -> bool:
    seen = state.failure_fingerprints.setdefault(task_id, set())
    repeated = fingerprint in seen
    seen.add(fingerprint)
    return repeated


def run_task_with_retries(
    task: Task,
    state: AgentState,
    ctx: RunContext,
    planner: Planner,
) -> TaskRunOutcome:
    """Drive ``task`` until it passes, the run fails, or a replan replaces the plan.

    Task-level failures are retried up to ``max_retries_per_task`` attempts and
    then handed to the replanner.  System failures end the run on first sight.
    """
    max_attempts = ctx.policy.budgets.max_retries_per_task
    state.status = AgentStatus.EXECUTING
    state.current_task_id = task.id
    emit(ctx.on_event, EventType.TASK_SELECTED, task_id=task.id)

    attempts = 0
    while attempts < max_attempts:
        attempts += 1
        recent: List[str] = list(state.task_failures.get(task.id, []))
        LOGGER.debug("Task %s: attempt %d of %d", task.id, attempts, max_attempts)
        result = run_task_attempt(task, state, ctx, planner, recent_failures=recent)

        if result.planner_failed:
            last_error = state.last_error.message if state.last_error else None
            signal = classify_failure(last_error=last_error, planner_output_invalid=True)
            _remember_fingerprint(state, task.id, signal.fingerprint)
            emit(ctx.on_event, EventType.CRITERIA_RESULT, task_id=task.id, ok=False, failures=[signal.message])
            return TaskRunOutcome(ok=False, attempts=attempts)

        if state.is_terminal:
            return TaskRunOutcome(ok=False, attempts=attempts)

        if result.ok:
            emit(ctx.on_event, EventType.CRITERIA_RESULT, task_id=task.id, ok=True, failures=[])
            state.completed_tasks.add(task.id)
            state.task_failures.pop(task.id, None)
            return TaskRunOutcome(ok=True, attempts=attempts, completed=True)

        signal = classify_failure(
            tool_errors=result.tool_errors(),
            criteria_failures=result.failures,
            last_error=state.last_error.message if state.last_error else None,
        )
        reported = [signal.message] if signal.is_system else list(result.failures)
        emit(ctx.on_event, EventType.CRITERIA_RESULT, task_id=task.id, ok=False, failures=reported)

        if signal.is_system:
            if _remember_fingerprint(state, task.id, signal.fingerprint):
                LOGGER.debug("Task %s: repeated system failure %s", task.id, signal.fingerprint)
            state.fail(ErrorKind.CONFIG, signal.message)
            return TaskRunOutcome(ok=False, attempts=attempts)

        state.task_failures[task.id] = list(result.failures)
        LOGGER.info("Task %s failed attempt %d: %s", task.id, attempts, "; ".join(result.failures))

    if not handle_replan(state, ctx, planner, failed_task_id=task.id, failures=state.task_failures.get(task.id, [])):
        return TaskRunOutcome(ok=False, attempts=attempts)
    return TaskRunOutcome(ok=True, attempts=attempts, replanned=True)


__all__ = ["TaskRunOutcome", "run_task_with_retries"]
