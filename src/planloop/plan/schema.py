"""Typed wire models for plans, plan-change requests and gate decisions."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class WireModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class TaskType(str, Enum):
    """Coarse category attached to every plan task."""

    BUILD = "build"
    CODEGEN = "codegen"
    TEST = "test"
    DEBUG = "debug"
    VERIFY = "verify"
    REPAIR = "repair"
    DESIGN = "design"
    MATERIALIZE = "materialize"
    OTHER = "other"


DEBUG_STYLE_TASK_TYPES = frozenset(
    {TaskType.DEBUG, TaskType.TEST, TaskType.BUILD, TaskType.REPAIR, TaskType.VERIFY}
)


# ------------------------------------------------------------------ criteria


class CommandCriterion(WireModel):
    type: Literal["command"] = "command"
    cmd: str = Field(min_length=1)
    args: List[str] = Field(default_factory=list)
    cwd: Optional[str] = None
    expect_exit_code: int = 0


class FileExistsCriterion(WireModel):
    type: Literal["file_exists"] = "file_exists"
    path: str = Field(min_length=1)


class FileContainsCriterion(WireModel):
    type: Literal["file_contains"] = "file_contains"
    path: str = Field(min_length=1)
    contains: str = Field(min_length=1)


class ToolResultCriterion(WireModel):
    type: Literal["tool_result"] = "tool_result"
    tool_name: str = Field(min_length=1)
    expected_ok: bool = True


SuccessCriterion = Annotated[
    Union[CommandCriterion, FileExistsCriterion, FileContainsCriterion, ToolResultCriterion],
    Field(discriminator="type"),
]


# ------------------------------------------------------------------ plan


class Task(WireModel):
    """Single unit of work with machine-checkable completion criteria."""

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = ""
    dependencies: List[str] = Field(default_factory=list)
    tool_hints: List[str] = Field(default_factory=list)
    success_criteria: List[SuccessCriterion] = Field(min_length=1)
    task_type: TaskType = TaskType.OTHER


class Milestone(WireModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: Optional[str] = None
    task_ids: List[str] = Field(default_factory=list)


class Plan(WireModel):
    """Dependency-ordered plan owned by the orchestrator for one run."""

    version: Literal["v1"] = "v1"
    goal: str = Field(min_length=1)
    acceptance_locked: bool = True
    tech_stack_locked: bool = True
    milestones: List[Milestone] = Field(default_factory=list)
    tasks: List[Task] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_references(self) -> "Plan":
        task_ids: set[str] = set()
        for task in self.tasks:
            if task.id in task_ids:
                raise ValueError(f"duplicate task id: {task.id}")
            task_ids.add(task.id)

        for task in self.tasks:
            for dependency in task.dependencies:
                if dependency not in task_ids:
                    raise ValueError(f"unknown dependency '{dependency}' for task '{task.id}'")

        milestone_ids: set[str] = set()
        for milestone in self.milestones:
            if milestone.id in milestone_ids:
                raise ValueError(f"duplicate milestone id: {milestone.id}")
            milestone_ids.add(milestone.id)
            for task_id in milestone.task_ids:
                if task_id not in task_ids:
                    raise ValueError(f"unknown task '{task_id}' in milestone '{milestone.id}'")

        cycle_at = _find_cycle(self.tasks)
        if cycle_at is not None:
            raise ValueError(f"dependency cycle detected at task '{cycle_at}'")
        return self

    def task_ids(self) -> List[str]:
        return [task.id for task in self.tasks]

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


def _find_cycle(tasks: List[Task]) -> Optional[str]:
    """Return the id of a task that sits on a dependency cycle, if any."""
    graph = {task.id: list(task.dependencies) for task in tasks}
    visiting: set[str] = set()
    visited: set[str] = set()

    def _visit(node: str) -> Optional[str]:
        if node in visited:
            return None
        if node in visiting:
            return node
        visiting.add(node)
        for dependency in graph.get(node, []):
            found = _visit(dependency)
            if found is not None:
                return found
        visiting.discard(node)
        visited.add(node)
        return None

    for task in tasks:
        found = _visit(task.id)
        if found is not None:
            return found
    return None


# ------------------------------------------------------------------ patch operations


class TaskChanges(WireModel):
    """Partial task update; ``id`` can never be changed through a patch."""

    title: Optional[str] = None
    description: Optional[str] = None
    dependencies: Optional[List[str]] = None
    tool_hints: Optional[List[str]] = None
    success_criteria: Optional[List[SuccessCriterion]] = None
    task_type: Optional[TaskType] = None


class AddTaskOp(WireModel):
    action: Literal["tasks.add"] = "tasks.add"
    task: Task
    after_task_id: Optional[str] = None


class RemoveTaskOp(WireModel):
    action: Literal["tasks.remove"] = "tasks.remove"
    task_id: str = Field(min_length=1)


class UpdateTaskOp(WireModel):
    action: Literal["tasks.update"] = "tasks.update"
    task_id: str = Field(min_length=1)
    changes: TaskChanges


class ReorderTaskOp(WireModel):
    action: Literal["tasks.reorder"] = "tasks.reorder"
    task_id: str = Field(min_length=1)
    after_task_id: Optional[str] = None


class AcceptanceUpdateOp(WireModel):
    action: Literal["acceptance.update"] = "acceptance.update"
    changes: Dict[str, Any] = Field(default_factory=dict)


class TechStackUpdateOp(WireModel):
    action: Literal["techStack.update"] = "techStack.update"
    changes: Dict[str, Any] = Field(default_factory=dict)


LEGACY_OP_ACTIONS: Dict[str, str] = {
    "add_task": "tasks.add",
    "remove_task": "tasks.remove",
    "edit_task": "tasks.update",
    "reorder": "tasks.reorder",
    "edit_acceptance": "acceptance.update",
    "edit_tech_stack": "techStack.update",
}

ACCEPTANCE_ACTIONS = frozenset({"acceptance.update"})
TECH_STACK_ACTIONS = frozenset({"techStack.update"})

PatchOperation = Annotated[
    Union[AddTaskOp, RemoveTaskOp, UpdateTaskOp, ReorderTaskOp, AcceptanceUpdateOp, TechStackUpdateOp],
    Field(discriminator="action"),
]


def _normalise_patch_items(value: Any) -> Any:
    """Map legacy ``op``-tagged operations onto the ``action`` spelling."""
    if not isinstance(value, list):
        return value
    normalised: list[Any] = []
    for item in value:
        if isinstance(item, dict) and "action" not in item and "op" in item:
            item = dict(item)
            legacy = item.pop("op")
            item["action"] = LEGACY_OP_ACTIONS.get(str(legacy), legacy)
        normalised.append(item)
    return normalised


# ------------------------------------------------------------------ change requests


class ChangeImpact(WireModel):
    steps_delta: int = 0
    risk: str = "unknown"


PlanChangeTypeV1 = Literal[
    "add_task",
    "scope_reduce",
    "scope_expand",
    "replace_tech",
    "relax_acceptance",
    "reorder_tasks",
    "remove_task",
    "edit_task",
]

PlanChangeTypeV2 = Literal[
    "add_task",
    "scope_reduce",
    "scope_expand",
    "replace_tech",
    "relax_acceptance",
    "reorder_tasks",
    "remove_task",
    "edit_task",
    "tasks.add",
    "tasks.remove",
    "tasks.update",
    "tasks.reorder",
    "acceptance.update",
    "techStack.update",
]


class _ChangeRequestBase(WireModel):
    reason: str = Field(min_length=1)
    evidence: List[str] = Field(default_factory=list)
    impact: ChangeImpact = Field(default_factory=ChangeImpact)
    requested_tools: List[str] = Field(default_factory=list)
    patch: List[PatchOperation] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_ops(cls, data: Any) -> Any:
        if isinstance(data, dict) and "patch" in data:
            data = dict(data)
            data["patch"] = _normalise_patch_items(data["patch"])
        return data

    def touches_acceptance(self) -> bool:
        """True when the patch edits acceptance or rewrites any task's success criteria."""
        return any(
            op.action in ACCEPTANCE_ACTIONS
            or (isinstance(op, UpdateTaskOp) and op.changes.success_criteria is not None)
            for op in self.patch
        )

    def touches_tech_stack(self) -> bool:
        return any(op.action in TECH_STACK_ACTIONS for op in self.patch)


class PlanChangeRequestV1(_ChangeRequestBase):
    """First-generation request: the gate may approve it outright."""

    version: Literal["v1"] = "v1"
    change_type: PlanChangeTypeV1
    proposed_plan: Optional[Plan] = None


class PlanChangeRequestV2(_ChangeRequestBase):
    """Second-generation request: every allowed change goes to human review."""

    version: Literal["v2"] = "v2"
    change_type: PlanChangeTypeV2


PlanChangeRequest = Annotated[
    Union[PlanChangeRequestV1, PlanChangeRequestV2],
    Field(discriminator="version"),
]


# ------------------------------------------------------------------ decisions


class GateStatus(str, Enum):
    APPROVED = "approved"
    DENIED = "denied"
    NEEDS_MORE_EVIDENCE = "needs_more_evidence"
    NEEDS_USER_REVIEW = "needs_user_review"


class GateResult(WireModel):
    """Outcome of the deterministic plan-change gate."""

    status: GateStatus
    reason: str
    guidance: Optional[str] = None
    required_evidence: List[str] = Field(default_factory=list)
    suggested_patch: Optional[List[PatchOperation]] = None


class PlanChangeReviewOutcome(WireModel):
    """Structured reading of free-text reviewer feedback."""

    decision: Literal["approved", "denied"]
    reason: Optional[str] = None
    guidance: Optional[str] = None
    patch: List[PatchOperation] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_ops(cls, data: Any) -> Any:
        if isinstance(data, dict) and "patch" in data:
            data = dict(data)
            data["patch"] = _normalise_patch_items(data["patch"])
        return data

    @model_validator(mode="after")
    def _check_decision_shape(self) -> "PlanChangeReviewOutcome":
        guidance = (self.guidance or "").strip()
        if self.decision == "approved":
            if not self.patch:
                raise ValueError("approved review outcome must carry a non-empty patch")
            if guidance:
                raise ValueError("approved review outcome must not carry guidance")
        else:
            if not guidance:
                raise ValueError("denied review outcome must carry non-empty guidance")
            if self.patch:
                raise ValueError("denied review outcome must carry an empty patch")
        return self


__all__ = [
    "ACCEPTANCE_ACTIONS",
    "AcceptanceUpdateOp",
    "AddTaskOp",
    "ChangeImpact",
    "CommandCriterion",
    "DEBUG_STYLE_TASK_TYPES",
    "FileContainsCriterion",
    "FileExistsCriterion",
    "GateResult",
    "GateStatus",
    "LEGACY_OP_ACTIONS",
    "Milestone",
    "PatchOperation",
    "Plan",
    "PlanChangeRequest",
    "PlanChangeRequestV1",
    "PlanChangeRequestV2",
    "PlanChangeReviewOutcome",
    "RemoveTaskOp",
    "ReorderTaskOp",
    "SuccessCriterion",
    "TECH_STACK_ACTIONS",
    "Task",
    "TaskChanges",
    "TaskType",
    "TechStackUpdateOp",
    "ToolResultCriterion",
    "UpdateTaskOp",
    "WireModel",
]
