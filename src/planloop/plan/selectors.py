"""Read-only queries over a plan."""

from __future__ import annotations

from collections.abc import Collection
from typing import Any, Dict, Optional

from .schema import Plan, Task


def get_next_ready_task(plan: Plan, completed: Collection[str]) -> Optional[Task]:
    """Return the first incomplete task, in plan order, whose dependencies are all completed."""
    for task in plan.tasks:
        if task.id in completed:
            continue
        if all(dependency in completed for dependency in task.dependencies):
            return task
    return None


def is_plan_complete(plan: Plan, completed: Collection[str]) -> bool:
    """Return True when every task currently in ``plan`` is completed."""
    return all(task.id in completed for task in plan.tasks)


def summarize_plan(plan: Plan) -> Dict[str, Any]:
    return {
        "milestones": len(plan.milestones),
        "tasks": len(plan.tasks),
        "locked": {
            "acceptance": plan.acceptance_locked,
            "tech_stack": plan.tech_stack_locked,
        },
    }


__all__ = ["get_next_ready_task", "is_plan_complete", "summarize_plan"]
