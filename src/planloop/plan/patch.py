"""Apply approved plan-change patches and re-validate the result."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Dict, List, Union

from pydantic import ValidationError

from ..utils.issues import summarize_validation_error
from .schema import (
    AcceptanceUpdateOp,
    AddTaskOp,
    PatchOperation,
    Plan,
    PlanChangeRequestV1,
    PlanChangeRequestV2,
    RemoveTaskOp,
    ReorderTaskOp,
    TechStackUpdateOp,
    UpdateTaskOp,
)

LOGGER = logging.getLogger(__name__)


class PlanPatchError(ValueError):
    """Raised when a patch cannot be applied or yields an invalid plan."""


def _index_of(tasks: List[Dict[str, Any]], task_id: str) -> int:
    for index, task in enumerate(tasks):
        if task.get("id") == task_id:
            return index
    return -1


def _apply_operation(data: Dict[str, Any], op: PatchOperation) -> None:
    tasks: List[Dict[str, Any]] = data["tasks"]

    if isinstance(op, AddTaskOp):
        new_task = op.task.model_dump(mode="json")
        if _index_of(tasks, op.task.id) != -1:
            raise PlanPatchError(f"tasks.add: task '{op.task.id}' already exists")
        if op.after_task_id is None:
            tasks.append(new_task)
            return
        anchor = _index_of(tasks, op.after_task_id)
        if anchor == -1:
            raise PlanPatchError(f"tasks.add: unknown after_task_id '{op.after_task_id}'")
        tasks.insert(anchor + 1, new_task)
        return

    if isinstance(op, RemoveTaskOp):
        index = _index_of(tasks, op.task_id)
        if index == -1:
            raise PlanPatchError(f"tasks.remove: unknown task '{op.task_id}'")
        tasks.pop(index)
        for milestone in data.get("milestones", []):
            milestone["task_ids"] = [item for item in milestone.get("task_ids", []) if item != op.task_id]
        return

    if isinstance(op, UpdateTaskOp):
        index = _index_of(tasks, op.task_id)
        if index == -1:
            raise PlanPatchError(f"tasks.update: unknown task '{op.task_id}'")
        changes = op.changes.model_dump(mode="json", exclude_none=True)
        merged = {**tasks[index], **changes}
        merged["id"] = op.task_id
        tasks[index] = merged
        return

    if isinstance(op, ReorderTaskOp):
        index = _index_of(tasks, op.task_id)
        if index == -1:
            raise PlanPatchError(f"tasks.reorder: unknown task '{op.task_id}'")
        moved = tasks.pop(index)
        if op.after_task_id is None:
            tasks.insert(0, moved)
            return
        anchor = _index_of(tasks, op.after_task_id)
        if anchor == -1:
            raise PlanPatchError(f"tasks.reorder: unknown after_task_id '{op.after_task_id}'")
        tasks.insert(anchor + 1, moved)
        return

    if isinstance(op, AcceptanceUpdateOp):
        locked = op.changes.get("locked")
        if isinstance(locked, bool):
            data["acceptance_locked"] = locked
        return

    if isinstance(op, TechStackUpdateOp):
        locked = op.changes.get("locked")
        if isinstance(locked, bool):
            data["tech_stack_locked"] = locked
        return

    raise PlanPatchError(f"unsupported patch operation: {op!r}")  # pragma: no cover


def apply_plan_patch(plan: Plan, patch: Sequence[PatchOperation]) -> Plan:
    """Return a new plan with ``patch`` applied; ``plan`` itself is never mutated.

    Operations apply in order.  The result must pass the same validation as a
    freshly proposed plan, otherwise the whole patch is rejected.
    """
    data = plan.model_dump(mode="json")
    for op in patch:
        _apply_operation(data, op)

    try:
        patched = Plan.model_validate(data)
    except ValidationError as error:
        raise PlanPatchError(
            f"plan patch produced invalid plan: {summarize_validation_error(error)}"
        ) from error
    LOGGER.debug("Applied %d patch operation(s); plan now has %d task(s)", len(patch), len(patched.tasks))
    return patched


def apply_plan_change(plan: Plan, request: Union[PlanChangeRequestV1, PlanChangeRequestV2]) -> Plan:
    """Resolve the plan a request asks for: a wholesale replacement or a patched copy."""
    if isinstance(request, PlanChangeRequestV1) and request.proposed_plan is not None:
        return request.proposed_plan.model_copy(deep=True)
    return apply_plan_patch(plan, request.patch)


__all__ = ["PlanPatchError", "apply_plan_change", "apply_plan_patch"]
