"""Prompt templates and helpers shared across planner requests."""

from __future__ import annotations

import json
from typing import Any, Sequence

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the documented response schema. "
    "Do not include markdown fences, explanations, or trailing text. "
    "Use double-quoted keys and strings."
)

PLAN_INSTRUCTIONS = (
    "You are the planning brain for an autonomous task executor. Always follow plan-first execution. "
    "Build a machine-checkable plan with dependencies and success criteria. "
    + JSON_RESPONSE_INSTRUCTION
)

TOOL_CALL_INSTRUCTIONS = (
    "You choose tool invocations for one plan task. Only use tools from the tool index, pass an "
    "object as every tool input, and stay within the call limit. " + JSON_RESPONSE_INSTRUCTION
)

PLAN_CHANGE_INSTRUCTIONS = (
    "You are a planning brain. Propose a minimal plan change request. Keep acceptance and tech stack "
    "unless evidence demands otherwise. " + JSON_RESPONSE_INSTRUCTION
)

REVIEW_INSTRUCTIONS = (
    "Interpret user natural-language feedback for a plan change review. "
    "If the user rejects, output decision=denied with non-empty guidance and no patch. "
    "If the user approves, output decision=approved with a non-empty patch and no guidance. "
    "Patch operations must use `action`; allowed actions are: tasks.add, tasks.remove, "
    "tasks.update, tasks.reorder, acceptance.update, techStack.update. " + JSON_RESPONSE_INSTRUCTION
)


def _block(title: str, value: Any) -> str:
    body = value if isinstance(value, str) else json.dumps(value, indent=2, sort_keys=True, default=str)
    return f"## {title}\n{body}"


def render_failures(failures: Sequence[str]) -> str:
    """Format recent failure strings as a bullet list, or a placeholder."""
    items = [item.strip() for item in failures if item and item.strip()]
    if not items:
        return "(none)"
    return "\n".join(f"- {item}" for item in items)


def render_plan_prompt(
    goal: str,
    *,
    policy: dict[str, Any],
    tool_index: str,
    state_summary: dict[str, Any],
    planning_constraints: dict[str, Any],
) -> str:
    sections = [
        _block("Goal", goal),
        _block("Policy (tech stack and acceptance are locked unless the user allows otherwise)", policy),
        _block("Tool index", tool_index),
        _block("State summary", state_summary),
        _block("Planning constraints", planning_constraints),
        "Every task must include success_criteria with machine-checkable command/file/tool_result checks.",
    ]
    return "\n\n".join(sections)


def render_tool_calls_prompt(
    *,
    task: dict[str, Any],
    plan_summary: dict[str, Any],
    completed: Sequence[str],
    recent_failures: Sequence[str],
    tool_index: str,
    max_calls: int,
) -> str:
    sections = [
        _block("Task", task),
        _block("Plan summary", plan_summary),
        _block("Completed tasks", sorted(completed)),
        _block("Failures from the previous attempt (do not repeat them)", render_failures(recent_failures)),
        _block("Tool index", tool_index),
        (
            f"Return {{\"tool_calls\": [{{\"name\": ..., \"input\": {{...}}}}]}} with at most {max_calls} "
            "call(s), ordered by priority. Set \"on_fail\": \"continue\" on a call only when later calls "
            "should still run after it fails."
        ),
    ]
    return "\n\n".join(sections)


def render_plan_change_prompt(
    *,
    goal: str,
    current_plan: dict[str, Any],
    policy: dict[str, Any],
    failed_task_id: str,
    failures: Sequence[str],
    state_summary: dict[str, Any],
) -> str:
    sections = [
        _block("Goal", goal),
        _block("Current plan", current_plan),
        _block("Policy", policy),
        _block("Failed task", failed_task_id),
        _block("Failure evidence", render_failures(failures)),
        _block("State summary", state_summary),
        "Return a PlanChangeRequest (version v1 or v2) as JSON only.",
    ]
    return "\n\n".join(sections)


def render_review_prompt(
    *,
    gate_result: dict[str, Any],
    policy_summary: dict[str, Any],
    request: dict[str, Any],
    feedback: str,
) -> str:
    return json.dumps(
        {
            "gate_result": gate_result,
            "policy_summary": policy_summary,
            "proposed_change_request": request,
            "user_feedback": feedback,
        },
        indent=2,
        default=str,
    )


__all__ = [
    "JSON_RESPONSE_INSTRUCTION",
    "PLAN_CHANGE_INSTRUCTIONS",
    "PLAN_INSTRUCTIONS",
    "REVIEW_INSTRUCTIONS",
    "TOOL_CALL_INSTRUCTIONS",
    "render_failures",
    "render_plan_change_prompt",
    "render_plan_prompt",
    "render_review_prompt",
    "render_tool_calls_prompt",
]
