"""Local stub that synthesizes deterministic JSON responses for demos and dry runs."""

from __future__ import annotations

import json
from typing import Any, Dict

from .llm_client import LLMClient

__all__ = ["OfflineLLMClient"]


class OfflineLLMClient(LLMClient):
    """Answers every planner request with a minimal, always-valid payload."""

    def __init__(self) -> None:
        super().__init__("offline", max_attempts=1, retry_delay=0.0)

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        metadata = payload.get("metadata") or {}
        kind = metadata.get("kind", "unknown")
        return json.dumps(self._build_response(str(kind), metadata))

    def _build_response(self, kind: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        if kind == "plan":
            goal = str(metadata.get("goal") or "offline goal")
            return {
                "version": "v1",
                "goal": goal,
                "acceptance_locked": True,
                "tech_stack_locked": True,
                "milestones": [
                    {"id": "m1", "title": "Dry run", "task_ids": ["offline-dry-run"]},
                ],
                "tasks": [
                    {
                        "id": "offline-dry-run",
                        "title": "Exercise the orchestration loop",
                        "description": f"Record a bookkeeping step for '{goal}' without touching files.",
                        "dependencies": [],
                        "tool_hints": ["noop"],
                        "success_criteria": [
                            {"type": "tool_result", "tool_name": "noop", "expected_ok": True},
                        ],
                        "task_type": "verify",
                    }
                ],
            }

        if kind == "tool_calls":
            task_id = metadata.get("task_id", "task")
            return {
                "tool_calls": [
                    {"name": "noop", "input": {"note": f"offline dry run for {task_id}"}},
                ]
            }

        if kind == "plan_change":
            return {
                "version": "v1",
                "reason": "Offline client cannot diagnose failures; narrowing scope.",
                "change_type": "scope_reduce",
                "evidence": [],
                "impact": {"steps_delta": 0, "risk": "low"},
                "requested_tools": [],
                "patch": [],
            }

        if kind == "review":
            return {
                "decision": "denied",
                "reason": "Offline client does not interpret reviewer feedback.",
                "guidance": "Re-run with a remote model to review plan changes.",
                "patch": [],
            }

        return {}
