"""Deterministic gate deciding whether a proposed plan change may proceed.

Two request generations share one entry point.  ``v1`` requests may be
approved outright for low-risk change types; ``v2`` requests are never
auto-approved and instead surface every change that survives the hard
denials to a human reviewer.  Both are pure functions of their inputs.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Tuple, Union

from ..policy.agent_policy import AgentPolicy
from .schema import (
    DEBUG_STYLE_TASK_TYPES,
    AddTaskOp,
    GateResult,
    GateStatus,
    Plan,
    PlanChangeRequestV1,
    PlanChangeRequestV2,
)

LOW_RISK_REASON_TOKENS = ("debug", "test", "build", "repair", "fix", "verify")
_MIGRATION_IMPACT = re.compile(r"migrat|impact|compat|risk", re.IGNORECASE)

AnyChangeRequest = Union[PlanChangeRequestV1, PlanChangeRequestV2]


def _approved(reason: str) -> GateResult:
    return GateResult(status=GateStatus.APPROVED, reason=reason)


def _denied(reason: str, guidance: Optional[str] = None) -> GateResult:
    return GateResult(status=GateStatus.DENIED, reason=reason, guidance=guidance)


def _needs_evidence(reason: str, required: List[str]) -> GateResult:
    return GateResult(
        status=GateStatus.NEEDS_MORE_EVIDENCE,
        reason=reason,
        required_evidence=required,
    )


def _disallowed_tools(request: AnyChangeRequest, policy: AgentPolicy) -> List[str]:
    allowed = set(policy.safety.allowed_tools)
    return [tool for tool in request.requested_tools if tool not in allowed]


def _is_debug_style(request: AnyChangeRequest) -> bool:
    lowered = request.reason.lower()
    if any(token in lowered for token in LOW_RISK_REASON_TOKENS):
        return True
    return any(
        isinstance(op, AddTaskOp) and op.task.task_type in DEBUG_STYLE_TASK_TYPES
        for op in request.patch
    )


def _scope_expand_evidence(request: AnyChangeRequest) -> List[str]:
    required: List[str] = []
    if not request.evidence:
        required.append("failure evidence")
    risk = request.impact.risk.strip().lower()
    if request.impact.steps_delta == 0 or risk in {"", "unknown"}:
        required.append("impact estimate")
    required.append("approval note")
    return required


def _criteria_by_task(plan: Plan) -> Dict[str, List[Any]]:
    return {
        task.id: [criterion.model_dump(mode="json") for criterion in task.success_criteria]
        for task in plan.tasks
    }


def _proposed_plan_edits(
    request: PlanChangeRequestV1,
    current_plan: Optional[Plan],
) -> Tuple[bool, bool]:
    """Return ``(acceptance, tech_stack)`` edits a replacement plan makes against the current one.

    Criteria of tasks present in both plans must match and neither lock may
    flip.  Without a current plan only an unlocked proposal counts as an edit.
    """
    proposed = request.proposed_plan
    if proposed is None:
        return False, False
    if current_plan is None:
        return not proposed.acceptance_locked, not proposed.tech_stack_locked

    before = _criteria_by_task(current_plan)
    after = _criteria_by_task(proposed)
    criteria_changed = any(
        task_id in before and criteria != before[task_id] for task_id, criteria in after.items()
    )
    acceptance = criteria_changed or proposed.acceptance_locked != current_plan.acceptance_locked
    tech_stack = proposed.tech_stack_locked != current_plan.tech_stack_locked
    return acceptance, tech_stack


# ------------------------------------------------------------------ public


def evaluate_plan_change(
    request: AnyChangeRequest,
    policy: AgentPolicy,
    current_task_count: int,
    current_plan: Optional[Plan] = None,
) -> GateResult:
    """Route ``request`` to the gate generation matching its declared version."""
    if isinstance(request, PlanChangeRequestV2):
        return evaluate_plan_change_v2(request, policy)
    return evaluate_plan_change_v1(request, policy, current_task_count, current_plan)


def evaluate_plan_change_v1(
    request: PlanChangeRequestV1,
    policy: AgentPolicy,
    current_task_count: int,
    current_plan: Optional[Plan] = None,
) -> GateResult:
    """Approve, deny or request evidence for a first-generation change request.

    A ``proposed_plan`` is compared with ``current_plan`` so that a full
    replacement cannot edit criteria or locks that a patch could not.
    """
    relax_allowed = policy.user_explicitly_allowed_relax_acceptance

    if _disallowed_tools(request, policy):
        return _denied("request uses disallowed tools")

    if request.change_type == "relax_acceptance" and not relax_allowed:
        return _denied("relax_acceptance is blocked unless user explicitly allows it")

    plan_acceptance, plan_tech = _proposed_plan_edits(request, current_plan)
    touches_acceptance = request.touches_acceptance() or plan_acceptance
    touches_tech = request.touches_tech_stack() or plan_tech

    if policy.acceptance.locked and touches_acceptance and not relax_allowed:
        return _denied("acceptance is locked by policy")

    if policy.tech_stack_locked and touches_tech:
        return _denied("tech stack is locked by policy")

    change_type = request.change_type
    if change_type == "reorder_tasks":
        if touches_acceptance or touches_tech:
            return _denied("reorder_tasks cannot modify acceptance or tech stack")
        return _approved("reorder_tasks allowed without acceptance/tech changes")

    if change_type == "scope_reduce":
        return _approved("scope_reduce is always allowed")

    if change_type == "add_task":
        steps_after = current_task_count + max(0, request.impact.steps_delta)
        if steps_after <= policy.budgets.max_steps and _is_debug_style(request):
            return _approved("add_task approved for debug/test/build-fix within budget")
        return _needs_evidence(
            "add_task requires stronger evidence or exceeds budget",
            ["failure log", "step estimate"],
        )

    if change_type == "scope_expand":
        return _needs_evidence(
            "scope_expand requires explicit approval",
            _scope_expand_evidence(request),
        )

    if change_type == "replace_tech":
        distinct_evidence = {item.strip() for item in request.evidence if item.strip()}
        if len(distinct_evidence) < 2 or not _MIGRATION_IMPACT.search(request.impact.risk):
            return _needs_evidence(
                "replace_tech requires >=2 distinct evidence items and migration impact",
                ["two failures", "migration impact"],
            )
        return _needs_evidence("replace_tech still requires explicit approval", ["approval note"])

    if change_type in {"remove_task", "edit_task"}:
        return _approved(f"{change_type} approved by deterministic gate")

    return _denied("unknown change type")


def evaluate_plan_change_v2(request: PlanChangeRequestV2, policy: AgentPolicy) -> GateResult:
    """Apply the hard denials, then hand every surviving change to a human."""
    relax_allowed = policy.user_explicitly_allowed_relax_acceptance

    disallowed = _disallowed_tools(request, policy)
    if disallowed:
        allowed = ", ".join(policy.safety.allowed_tools) or "(none)"
        return _denied(
            "request uses disallowed tools",
            guidance=(
                f"Remove {', '.join(disallowed)} from requested_tools. "
                f"Only these tools are allowed: {allowed}."
            ),
        )

    if request.change_type == "relax_acceptance" and not relax_allowed:
        return _denied(
            "relax_acceptance is blocked unless user explicitly allows it",
            guidance=(
                "Keep the existing success criteria and propose a change that makes the "
                "failing task satisfy them instead."
            ),
        )

    if policy.acceptance.locked and request.touches_acceptance() and not relax_allowed:
        return _denied(
            "acceptance is locked by policy",
            guidance=(
                "Drop acceptance.update operations and success_criteria changes in tasks.update; "
                "acceptance criteria are locked for this run."
            ),
        )

    if policy.tech_stack_locked and request.touches_tech_stack():
        return _denied(
            "tech stack is locked by policy",
            guidance="Drop techStack.update operations; the tech stack is locked for this run.",
        )

    return GateResult(
        status=GateStatus.NEEDS_USER_REVIEW,
        reason=f"{request.change_type} requires user review",
        suggested_patch=list(request.patch),
    )


__all__ = [
    "LOW_RISK_REASON_TOKENS",
    "evaluate_plan_change",
    "evaluate_plan_change_v1",
    "evaluate_plan_change_v2",
]
