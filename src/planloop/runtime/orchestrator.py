"""Top-level plan, execute, retry and replan loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..models.llm_client import LLMClient
from ..plan.schema import Plan
from ..plan.selectors import get_next_ready_task, is_plan_complete
from ..planning.planner import Planner, PlannerOutputError
from ..policy.agent_policy import AgentPolicy, default_agent_policy
from ..tools.builtin import default_registry
from ..tools.registry import ToolContext, ToolRegistry
from .events import EventSink, EventType, emit
from .executor import RunContext
from .recorder import AuditCollector
from .review import HumanReviewer
from .state import AgentState, AgentStatus, ErrorKind, StateBudgets, summarize_state
from .task_runner import run_task_with_retries

LOGGER = logging.getLogger(__name__)

SUCCESS_SUMMARY = "Agent completed successfully"
NO_READY_TASK = "No executable task found (dependency cycle or invalid plan)"
MAX_TURNS_REACHED = "max turns reached"


@dataclass(slots=True)
class RunBudgets:
    max_turns: int = 16
    max_tool_calls_per_turn: int = 4
    max_patches: int = 8


@dataclass(slots=True)
class RunResult:
    ok: bool
    summary: str
    audit_path: Optional[Path]
    state: AgentState


class Orchestrator:
    """Owns the :class:`AgentState` of one run and drives it to ``done`` or ``failed``."""

    def __init__(
        self,
        *,
        client: LLMClient,
        policy: Optional[AgentPolicy] = None,
        budgets: Optional[RunBudgets] = None,
        registry: Optional[ToolRegistry] = None,
        reviewer: Optional[HumanReviewer] = None,
        plan: Optional[Plan] = None,
        on_event: Optional[EventSink] = None,
        context: Optional[ToolContext] = None,
        logs_root: Optional[Path] = None,
    ) -> None:
        self.budgets = budgets or RunBudgets()
        self.registry = registry or default_registry()
        self.policy = policy or default_agent_policy(
            allowed_tools=self.registry.names(),
            max_steps=self.budgets.max_turns,
            max_actions_per_task=self.budgets.max_tool_calls_per_turn,
        )
        self.planner = Planner(client, self.registry)
        self.reviewer = reviewer
        self.initial_plan = plan
        self.on_event = on_event
        self.context = context or ToolContext(base_roots={"appDir": Path.cwd(), "outDir": None})
        self.context.allowed_commands = list(self.policy.safety.allowed_commands)
        self.logs_root = Path(logs_root) if logs_root is not None else None

    # ------------------------------------------------------------------ public

    def run(self, goal: str) -> RunResult:
        state = AgentState(
            goal=goal,
            budgets=StateBudgets(max_turns=self.budgets.max_turns, max_patches=self.budgets.max_patches),
        )
        ctx = RunContext(
            registry=self.registry,
            policy=self.policy,
            tool_context=self.context,
            audit=AuditCollector(goal, self.logs_root),
            reviewer=self.reviewer,
            on_event=self.on_event,
            max_tool_calls_per_turn=self.budgets.max_tool_calls_per_turn,
        )

        if self._adopt_initial_plan(state, ctx):
            self._execute(state, ctx)
        return self._finish(state, ctx)

    # ------------------------------------------------------------------ phases

    def _adopt_initial_plan(self, state: AgentState, ctx: RunContext) -> bool:
        state.status = AgentStatus.PLANNING
        plan = self.initial_plan
        if plan is None:
            try:
                proposal = self.planner.propose_plan(
                    state.goal,
                    self.policy,
                    state_summary=summarize_state(state),
                    max_tool_calls_per_turn=self.budgets.max_tool_calls_per_turn,
                    previous_response_id=state.last_response_id,
                )
            except PlannerOutputError as error:
                state.fail(ErrorKind.UNKNOWN, f"Failed to propose plan: {error}")
                ctx.audit.record_turn(turn=0, note="initial plan failed", errors=[str(error)])
                return False
            plan = proposal.value
            state.last_response_id = proposal.response_id or state.last_response_id
            ctx.audit.record_turn(
                turn=0,
                note=f"initial plan generated: {len(plan.tasks)} tasks",
                llm_raw=proposal.raw,
                prompt=proposal.prompt,
                previous_response_id=proposal.exchange.previous_response_id,
                response_id=proposal.response_id,
            )
        else:
            ctx.audit.record_turn(turn=0, note=f"initial plan supplied: {len(plan.tasks)} tasks")

        state.plan_data = plan
        state.plan_version = 1
        state.completed_tasks = set()
        state.plan_history = [{"type": "initial", "version": 1, "plan": plan.model_dump(mode="json")}]
        emit(self.on_event, EventType.PLAN_PROPOSED, task_count=len(plan.tasks))
        LOGGER.info("Plan adopted with %d task(s)", len(plan.tasks))
        return True

    def _execute(self, state: AgentState, ctx: RunContext) -> None:
        state.status = AgentStatus.EXECUTING
        for turn in range(1, self.budgets.max_turns + 1):
            state.budgets.used_turns = turn
            ctx.turn = turn
            emit(self.on_event, EventType.TURN_START, turn=turn)

            plan = state.plan_data
            if plan is None:
                state.fail(ErrorKind.CONFIG, "Missing current plan during execution")
                return
            task = get_next_ready_task(plan, state.completed_tasks)
            if task is None:
                if is_plan_complete(plan, state.completed_tasks):
                    state.status = AgentStatus.DONE
                else:
                    state.fail(ErrorKind.CONFIG, NO_READY_TASK)
                return

            outcome = run_task_with_retries(task, state, ctx, self.planner)
            if not outcome.ok or state.is_terminal:
                return

        if not state.is_terminal:
            state.fail(ErrorKind.BUDGET, MAX_TURNS_REACHED)

    def _finish(self, state: AgentState, ctx: RunContext) -> RunResult:
        ok = state.status is AgentStatus.DONE
        if ok:
            summary = SUCCESS_SUMMARY
        elif state.last_error is not None:
            summary = state.last_error.message
        else:
            summary = "run failed"

        audit_path = ctx.audit.flush({"ok": ok, "summary": summary, "state": summarize_state(state)})
        location = audit_path.as_posix() if audit_path else None
        if ok:
            emit(self.on_event, EventType.DONE, audit_path=location)
            LOGGER.info("Run finished: %s", summary)
        else:
            emit(self.on_event, EventType.FAILED, message=summary, audit_path=location)
            LOGGER.warning("Run failed: %s", summary)
        return RunResult(ok=ok, summary=summary, audit_path=audit_path, state=state)


def run_agent(
    goal: str,
    policy: Optional[AgentPolicy] = None,
    budgets: Optional[RunBudgets] = None,
    *,
    client: LLMClient,
    registry: Optional[ToolRegistry] = None,
    reviewer: Optional[HumanReviewer] = None,
    plan: Optional[Plan] = None,
    on_event: Optional[EventSink] = None,
    context: Optional[ToolContext] = None,
    logs_root: Optional[Path] = None,
) -> RunResult:
    """Run ``goal`` to completion and return the outcome with the final state."""
    orchestrator = Orchestrator(
        client=client,
        policy=policy,
        budgets=budgets,
        registry=registry,
        reviewer=reviewer,
        plan=plan,
        on_event=on_event,
        context=context,
        logs_root=logs_root,
    )
    return orchestrator.run(goal)


__all__ = [
    "MAX_TURNS_REACHED",
    "NO_READY_TASK",
    "Orchestrator",
    "RunBudgets",
    "RunResult",
    "SUCCESS_SUMMARY",
    "run_agent",
]
