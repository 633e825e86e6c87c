from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from planloop.models.llm_client import LLMClient, LLMTransportError, RawCompletion  # noqa: E402
from planloop.plan.schema import Plan  # noqa: E402
from planloop.policy.agent_policy import AgentPolicy, default_agent_policy  # noqa: E402
from planloop.runtime.executor import RunContext  # noqa: E402
from planloop.runtime.recorder import AuditCollector  # noqa: E402
from planloop.runtime.state import AgentState, AgentStatus  # noqa: E402
from planloop.tools.builtin import default_registry  # noqa: E402
from planloop.tools.registry import ToolContext  # noqa: E402


class ScriptedClient(LLMClient):
    """Replays canned responses per request kind; the last one repeats once the queue drains."""

    def __init__(self, responses: Dict[str, List[Any]], *, max_attempts: int = 2) -> None:
        super().__init__("scripted", max_attempts=max_attempts, retry_delay=0.0)
        self._responses = {kind: list(items) for kind, items in responses.items()}
        self.payloads: List[Dict[str, Any]] = []

    def calls(self, kind: str) -> int:
        return sum(1 for payload in self.payloads if payload.get("metadata", {}).get("kind") == kind)

    def _raw_invoke(self, payload: Dict[str, Any]) -> RawCompletion:
        self.payloads.append(payload)
        kind = payload.get("metadata", {}).get("kind", "")
        queue = self._responses.get(kind)
        if not queue:
            raise LLMTransportError(f"no scripted response for {kind}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        text = item if isinstance(item, str) else json.dumps(item)
        return RawCompletion(text=text, response_id=f"resp_{len(self.payloads)}")


def task_payload(
    task_id: str,
    criteria: Optional[List[Dict[str, Any]]] = None,
    *,
    dependencies: Iterable[str] = (),
    task_type: str = "other",
) -> Dict[str, Any]:
    return {
        "id": task_id,
        "title": f"Task {task_id}",
        "description": "",
        "dependencies": list(dependencies),
        "tool_hints": [],
        "success_criteria": criteria or [{"type": "tool_result", "tool_name": "noop", "expected_ok": True}],
        "task_type": task_type,
    }


def plan_payload(*tasks: Dict[str, Any], goal: str = "demo goal") -> Dict[str, Any]:
    return {
        "version": "v1",
        "goal": goal,
        "acceptance_locked": True,
        "tech_stack_locked": True,
        "milestones": [{"id": "m1", "title": "All", "task_ids": [task["id"] for task in tasks]}],
        "tasks": list(tasks),
    }


def build_plan(*task_ids: str) -> Plan:
    return Plan.model_validate(plan_payload(*(task_payload(task_id) for task_id in task_ids)))


def noop_calls() -> Dict[str, Any]:
    return {"tool_calls": [{"name": "noop", "input": {"note": "step"}}]}


def build_policy(**overrides: Any) -> AgentPolicy:
    return default_agent_policy(allowed_tools=default_registry().names(), **overrides)


def build_context(
    tmp_path: Path,
    *,
    policy: Optional[AgentPolicy] = None,
    reviewer: Any = None,
    events: Optional[List[Any]] = None,
) -> RunContext:
    active = policy or build_policy()
    return RunContext(
        registry=default_registry(),
        policy=active,
        tool_context=ToolContext(
            base_roots={"appDir": tmp_path, "outDir": tmp_path / "out"},
            allowed_commands=list(active.safety.allowed_commands),
        ),
        audit=AuditCollector("demo goal", tmp_path),
        reviewer=reviewer,
        on_event=events.append if events is not None else None,
    )


def executing_state(plan: Optional[Plan] = None) -> AgentState:
    state = AgentState(goal="demo goal", status=AgentStatus.EXECUTING)
    state.plan_data = plan
    state.plan_version = 1 if plan is not None else 0
    return state


@pytest.fixture()
def helpers() -> Any:
    """Expose the module-level builders to tests without importing ``conftest``."""

    class _Helpers:
        ScriptedClient = ScriptedClient
        task_payload = staticmethod(task_payload)
        plan_payload = staticmethod(plan_payload)
        build_plan = staticmethod(build_plan)
        noop_calls = staticmethod(noop_calls)
        build_policy = staticmethod(build_policy)
        build_context = staticmethod(build_context)
        executing_state = staticmethod(executing_state)

    return _Helpers
