"""Plan models, selectors, the plan-change gate and the patcher."""

from .patch import PlanPatchError, apply_plan_change, apply_plan_patch
from .schema import (
    GateResult,
    GateStatus,
    Milestone,
    Plan,
    PlanChangeRequest,
    PlanChangeRequestV1,
    PlanChangeRequestV2,
    PlanChangeReviewOutcome,
    Task,
    TaskType,
)
from .selectors import get_next_ready_task, is_plan_complete, summarize_plan

__all__ = [
    "GateResult",
    "GateStatus",
    "Milestone",
    "Plan",
    "PlanChangeRequest",
    "PlanChangeRequestV1",
    "PlanChangeRequestV2",
    "PlanChangeReviewOutcome",
    "PlanPatchError",
    "Task",
    "TaskType",
    "apply_plan_change",
    "apply_plan_patch",
    "get_next_ready_task",
    "is_plan_complete",
    "summarize_plan",
]
