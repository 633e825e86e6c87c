"""One replan round: propose a change, gate it, optionally review it, apply it."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from ..plan.gate import evaluate_plan_change, evaluate_plan_change_v2
from ..plan.patch import PlanPatchError, apply_plan_change, apply_plan_patch
from ..plan.schema import GateResult, GateStatus, PatchOperation, PlanChangeRequestV2
from ..planning.planner import Planner, PlannerOutputError
from .events import EventType, emit
from .executor import RunContext
from .review import DEFAULT_PLAN_CHANGE_FEEDBACK, PlanChangeReviewRequest, ReviewUnavailableError
from .state import AgentState, AgentStatus, ErrorKind, summarize_state

LOGGER = logging.getLogger(__name__)


def _describe_decision(result: GateResult) -> str:
    message = f"Plan change {result.status.value}: {result.reason}"
    if result.required_evidence:
        message += f" (required: {', '.join(result.required_evidence)})"
    if result.guidance:
        message += f" Guidance: {result.guidance}"
    return message


def _review_patch(
    request: PlanChangeRequestV2,
    gate_result: GateResult,
    state: AgentState,
    ctx: RunContext,
    planner: Planner,
) -> Optional[List[PatchOperation]]:
    """Collect reviewer feedback and interpret it; ``None`` means the run failed."""
    review = PlanChangeReviewRequest(
        request=request,
        gate_result=gate_result,
        policy_summary=ctx.policy.summary(),
    )
    previous_status = state.status
    state.status = AgentStatus.REVIEWING
    if ctx.reviewer is None:
        feedback = DEFAULT_PLAN_CHANGE_FEEDBACK
    else:
        try:
            feedback = ctx.reviewer.review_plan_change(review)
        except ReviewUnavailableError as error:
            state.fail(ErrorKind.CONFIG, str(error))
            return None
    emit(ctx.on_event, EventType.REPLAN_REVIEW_TEXT, text=feedback)

    try:
        interpreted = planner.interpret_review(
            request=request,
            gate_result=gate_result,
            policy=ctx.policy,
            feedback=feedback,
            previous_response_id=state.last_response_id,
        )
    except PlannerOutputError as error:
        state.fail(ErrorKind.UNKNOWN, f"Failed to interpret plan change review: {error}")
        return None

    state.status = previous_status
    state.last_response_id = interpreted.response_id or state.last_response_id
    outcome = interpreted.value
    state.human_reviews.append({"phase": "plan_change", "feedback": feedback, "decision": outcome.decision})
    state.plan_history.append({"type": "review_outcome", "outcome": outcome.model_dump(mode="json")})
    ctx.audit.record_turn(
        turn=ctx.turn,
        note=f"plan-change review {outcome.decision}",
        llm_raw=interpreted.raw,
        prompt=interpreted.prompt,
        response_id=interpreted.response_id,
        decision=outcome,
    )

    if outcome.decision == "denied":
        reason = outcome.reason or "reviewer rejected the change"
        state.fail(ErrorKind.CONFIG, f"Plan change denied by reviewer: {reason}. Guidance: {outcome.guidance}")
        return None

    # The interpreted patch can differ from the one the gate saw.
    reviewed = request.model_copy(update={"patch": list(outcome.patch)})
    regate = evaluate_plan_change_v2(reviewed, ctx.policy)
    if regate.status is GateStatus.DENIED:
        state.plan_history.append({"type": "change_decision", "decision": regate.model_dump(mode="json")})
        emit(
            ctx.on_event,
            EventType.REPLAN_GATE,
            status=regate.status.value,
            reason=regate.reason,
            guidance=regate.guidance,
        )
        state.fail(ErrorKind.CONFIG, _describe_decision(regate))
        return None
    return list(reviewed.patch)


def handle_replan(
    state: AgentState,
    ctx: RunContext,
    planner: Planner,
    *,
    failed_task_id: str,
    failures: Sequence[str],
) -> bool:
    """Run one replan round; return True only when a new plan was applied."""
    current_plan = state.plan_data
    if current_plan is None:
        state.fail(ErrorKind.CONFIG, "Missing current plan during replan")
        return False

    state.status = AgentStatus.REPLANNING
    summary = summarize_state(state)
    summary.update({"failed_task": failed_task_id, "failures": list(failures)})

    try:
        proposal = planner.propose_plan_change(
            goal=state.goal,
            plan=current_plan,
            policy=ctx.policy,
            failed_task_id=failed_task_id,
            failures=failures,
            state_summary=summary,
            previous_response_id=state.last_response_id,
        )
    except PlannerOutputError as error:
        state.fail(ErrorKind.UNKNOWN, f"Failed to propose plan change: {error}")
        return False

    request: Any = proposal.value
    state.last_response_id = proposal.response_id or state.last_response_id
    state.plan_history.append({"type": "change_request", "request": request.model_dump(mode="json")})
    emit(
        ctx.on_event,
        EventType.REPLAN_PROPOSED,
        version=request.version,
        change_type=request.change_type,
        reason=request.reason,
    )

    gate_result = evaluate_plan_change(request, ctx.policy, len(current_plan.tasks), current_plan)
    state.plan_history.append({"type": "change_decision", "decision": gate_result.model_dump(mode="json")})
    ctx.audit.record_turn(
        turn=ctx.turn,
        note=f"plan-change gate {gate_result.status.value}: {gate_result.reason}",
        llm_raw=proposal.raw,
        prompt=proposal.prompt,
        previous_response_id=proposal.exchange.previous_response_id,
        response_id=proposal.response_id,
        decision=gate_result,
    )
    emit(
        ctx.on_event,
        EventType.REPLAN_GATE,
        status=gate_result.status.value,
        reason=gate_result.reason,
        guidance=gate_result.guidance,
    )
    LOGGER.debug("Gate decided %s for %s", gate_result.status.value, request.change_type)

    if gate_result.status not in (GateStatus.APPROVED, GateStatus.NEEDS_USER_REVIEW):
        state.fail(ErrorKind.CONFIG, _describe_decision(gate_result))
        return False

    used = state.budgets.used_replans
    limit = ctx.policy.budgets.max_replans
    if used >= limit:
        state.fail(ErrorKind.BUDGET, f"max replans reached ({used} >= {limit})")
        return False

    try:
        if gate_result.status is GateStatus.NEEDS_USER_REVIEW:
            reviewed_patch = _review_patch(request, gate_result, state, ctx, planner)
            if reviewed_patch is None:
                return False
            new_plan = apply_plan_patch(current_plan, reviewed_patch)
        else:
            new_plan = apply_plan_change(current_plan, request)
    except PlanPatchError as error:
        state.fail(ErrorKind.CONFIG, str(error))
        return False

    state.plan_data = new_plan
    state.plan_version += 1
    state.budgets.used_replans += 1
    state.task_failures.pop(failed_task_id, None)
    state.status = AgentStatus.EXECUTING
    emit(ctx.on_event, EventType.REPLAN_APPLIED, new_version=state.plan_version)
    LOGGER.debug("Applied plan change; plan version is now %d", state.plan_version)
    return True


__all__ = ["handle_replan"]
