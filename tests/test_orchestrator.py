from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from planloop.plan.schema import Plan
from planloop.runtime.events import AgentEvent, EventType
from planloop.runtime.orchestrator import RunBudgets, run_agent
from planloop.runtime.review import AutoApproveReviewer
from planloop.runtime.state import AgentStatus, ErrorKind
from planloop.tools.registry import ToolContext


def _context(tmp_path: Path) -> ToolContext:
    return ToolContext(base_roots={"appDir": tmp_path, "outDir": tmp_path / "out"})


def _file_task(helpers, task_id: str, path: str, **kwargs: Any) -> Dict[str, Any]:
    return helpers.task_payload(task_id, [{"type": "file_exists", "path": path}], **kwargs)


def test_single_passing_task_completes_the_run(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient(
        {
            "plan": [helpers.plan_payload(helpers.task_payload("t1"))],
            "tool_calls": [helpers.noop_calls()],
        }
    )
    events: List[AgentEvent] = []

    result = run_agent(
        "say hello",
        client=client,
        context=_context(tmp_path),
        on_event=events.append,
        logs_root=tmp_path,
    )

    assert result.ok
    assert result.summary == "Agent completed successfully"
    assert result.state.completed_tasks == {"t1"}
    assert result.state.status is AgentStatus.DONE
    kinds = [event.type for event in events]
    assert kinds[0] is EventType.PLAN_PROPOSED
    for expected in (
        EventType.TURN_START,
        EventType.TASK_SELECTED,
        EventType.TOOL_START,
        EventType.TOOL_END,
        EventType.CRITERIA_RESULT,
    ):
        assert expected in kinds
    assert kinds[-1] is EventType.DONE
    assert result.audit_path == tmp_path / "agent_logs" / "0001.json"
    assert client.payloads[1]["previous_response_id"] == "resp_1"


def test_denied_relax_acceptance_fails_the_run(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient(
        {
            "plan": [helpers.plan_payload(_file_task(helpers, "t1", "never-created.txt"))],
            "tool_calls": [helpers.noop_calls()],
            "plan_change": [
                {
                    "version": "v1",
                    "change_type": "relax_acceptance",
                    "reason": "the file cannot be created",
                    "evidence": ["three failed attempts"],
                }
            ],
        }
    )

    result = run_agent("write a file", client=client, context=_context(tmp_path), logs_root=tmp_path)

    assert not result.ok
    assert "relax_acceptance" in result.summary
    assert result.state.plan_history[-1]["type"] == "change_decision"
    assert result.state.plan_history[-1]["decision"]["status"] == "denied"
    assert result.state.plan_version == 1


def test_missing_base_root_terminates_without_retry(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient(
        {
            "plan": [helpers.plan_payload(_file_task(helpers, "t1", "a.txt"))],
            "tool_calls": [helpers.noop_calls()],
        }
    )
    events: List[AgentEvent] = []

    result = run_agent(
        "check a file",
        client=client,
        context=ToolContext(base_roots={"appDir": None}),
        on_event=events.append,
    )

    assert not result.ok
    assert result.summary == "Base root 'appDir' is not available"
    assert result.state.last_error is not None and result.state.last_error.kind is ErrorKind.CONFIG
    assert client.calls("tool_calls") == 1
    assert client.calls("plan_change") == 0
    assert events[-1].type is EventType.FAILED
    assert events[-1].payload["message"] == result.summary
    assert result.audit_path is None


def test_approved_add_task_is_inserted_and_executed(tmp_path: Path, helpers) -> None:
    plan = helpers.plan_payload(
        helpers.task_payload("t1"),
        _file_task(helpers, "t3", "made.txt", dependencies=["t1"]),
    )
    write_call = {"tool_calls": [{"name": "write_file", "input": {"path": "made.txt", "content": "ok"}}]}
    client = helpers.ScriptedClient(
        {
            "plan": [plan],
            "tool_calls": [helpers.noop_calls(), helpers.noop_calls(), write_call, helpers.noop_calls()],
            "plan_change": [
                {
                    "version": "v1",
                    "change_type": "add_task",
                    "reason": "add a build step that creates made.txt",
                    "impact": {"steps_delta": 1, "risk": "low"},
                    "patch": [
                        {
                            "action": "tasks.add",
                            "after_task_id": "t1",
                            "task": _file_task(helpers, "t2", "made.txt", dependencies=["t1"], task_type="build"),
                        }
                    ],
                }
            ],
        }
    )
    policy = helpers.build_policy(max_retries_per_task=1)
    events: List[AgentEvent] = []

    result = run_agent(
        "produce made.txt",
        policy,
        client=client,
        context=_context(tmp_path),
        on_event=events.append,
    )

    assert result.ok, result.summary
    assert result.state.plan_data is not None
    assert result.state.plan_data.task_ids() == ["t1", "t2", "t3"]
    assert result.state.plan_version == 2
    assert result.state.completed_tasks == {"t1", "t2", "t3"}
    applied = [event for event in events if event.type is EventType.REPLAN_APPLIED]
    assert [event.payload["new_version"] for event in applied] == [2]
    assert (tmp_path / "made.txt").read_text(encoding="utf-8") == "ok"


def _v2_add_request(helpers) -> Dict[str, Any]:
    return {
        "version": "v2",
        "change_type": "tasks.add",
        "reason": "add a build step that writes never.txt first",
        "patch": [
            {"action": "tasks.add", "task": _file_task(helpers, "t0", "never.txt", task_type="build")},
            {"action": "tasks.reorder", "task_id": "t0"},
        ],
    }


def test_v2_change_applies_after_interpreted_approval(tmp_path: Path, helpers) -> None:
    request = _v2_add_request(helpers)
    write_call = {"tool_calls": [{"name": "write_file", "input": {"path": "never.txt", "content": "now"}}]}
    client = helpers.ScriptedClient(
        {
            "plan": [helpers.plan_payload(_file_task(helpers, "t1", "never.txt"))],
            "tool_calls": [helpers.noop_calls(), write_call, helpers.noop_calls()],
            "plan_change": [request],
            "review": [{"decision": "approved", "patch": request["patch"]}],
        }
    )
    events: List[AgentEvent] = []

    result = run_agent(
        "write never.txt",
        helpers.build_policy(max_retries_per_task=1),
        client=client,
        reviewer=AutoApproveReviewer(),
        context=_context(tmp_path),
        on_event=events.append,
    )

    assert result.ok, result.summary
    assert result.state.plan_version == 2
    assert result.state.plan_data is not None
    assert result.state.plan_data.task_ids() == ["t0", "t1"]
    assert result.state.completed_tasks == {"t0", "t1"}
    assert result.state.human_reviews[0]["decision"] == "approved"
    gate = next(event for event in events if event.type is EventType.REPLAN_GATE)
    assert gate.payload["status"] == "needs_user_review"
    review_text = next(event for event in events if event.type is EventType.REPLAN_REVIEW_TEXT)
    assert review_text.payload["text"].startswith("Approve")
    history_types = [entry["type"] for entry in result.state.plan_history]
    assert history_types == ["initial", "change_request", "change_decision", "review_outcome"]


def test_v2_change_denied_by_reviewer_surfaces_guidance(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient(
        {
            "plan": [helpers.plan_payload(_file_task(helpers, "t1", "never.txt"))],
            "tool_calls": [helpers.noop_calls()],
            "plan_change": [_v2_add_request(helpers)],
            "review": [{"decision": "denied", "reason": "too much work", "guidance": "fix t1 directly"}],
        }
    )

    result = run_agent(
        "write never.txt",
        helpers.build_policy(max_retries_per_task=1),
        client=client,
        context=_context(tmp_path),
    )

    assert not result.ok
    assert result.summary == "Plan change denied by reviewer: too much work. Guidance: fix t1 directly"
    review_prompt = client.payloads[-1]["input"][1]["content"][0]["text"]
    assert "I do not approve this plan change" in json.loads(review_prompt)["user_feedback"]


def test_reviewed_patch_is_gated_again_before_applying(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient(
        {
            "plan": [helpers.plan_payload(_file_task(helpers, "t1", "never.txt"))],
            "tool_calls": [helpers.noop_calls()],
            "plan_change": [
                {
                    "version": "v2",
                    "change_type": "tasks.reorder",
                    "reason": "run t1 first",
                    "patch": [{"action": "tasks.reorder", "task_id": "t1"}],
                }
            ],
            "review": [
                {"decision": "approved", "patch": [{"action": "techStack.update", "changes": {"locked": False}}]}
            ],
        }
    )
    events: List[AgentEvent] = []

    result = run_agent(
        "write never.txt",
        helpers.build_policy(max_retries_per_task=1),
        client=client,
        reviewer=AutoApproveReviewer(),
        context=_context(tmp_path),
        on_event=events.append,
    )

    assert not result.ok
    assert "tech stack is locked by policy" in result.summary
    assert "Guidance: Drop techStack.update" in result.summary
    assert result.state.plan_version == 1
    assert result.state.plan_data is not None and result.state.plan_data.tech_stack_locked is True
    assert result.state.plan_history[-1]["type"] == "change_decision"
    assert result.state.plan_history[-1]["decision"]["status"] == "denied"
    gates = [event.payload["status"] for event in events if event.type is EventType.REPLAN_GATE]
    assert gates == ["needs_user_review", "denied"]
    assert not any(event.type is EventType.REPLAN_APPLIED for event in events)


def test_scope_reduce_cannot_rewrite_locked_criteria(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient(
        {
            "plan": [helpers.plan_payload(_file_task(helpers, "t1", "never.txt"))],
            "tool_calls": [helpers.noop_calls()],
            "plan_change": [
                {
                    "version": "v1",
                    "change_type": "scope_reduce",
                    "reason": "accept a noop instead of the file",
                    "patch": [
                        {
                            "action": "tasks.update",
                            "task_id": "t1",
                            "changes": {"success_criteria": [{"type": "tool_result", "tool_name": "noop"}]},
                        }
                    ],
                }
            ],
        }
    )

    result = run_agent(
        "write never.txt",
        helpers.build_policy(max_retries_per_task=1),
        client=client,
        context=_context(tmp_path),
    )

    assert not result.ok
    assert result.summary == "Plan change denied: acceptance is locked by policy"
    assert result.state.plan_version == 1
    assert result.state.plan_data is not None
    assert result.state.plan_data.tasks[0].success_criteria[0].type == "file_exists"


def test_replan_budget_is_checked_before_applying(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient(
        {
            "plan": [helpers.plan_payload(_file_task(helpers, "t1", "never.txt"))],
            "tool_calls": [helpers.noop_calls()],
            "plan_change": [{"version": "v1", "change_type": "scope_reduce", "reason": "smaller"}],
        }
    )

    result = run_agent(
        "never",
        helpers.build_policy(max_retries_per_task=1, max_replans=0),
        client=client,
        context=_context(tmp_path),
    )

    assert not result.ok
    assert result.summary == "max replans reached (0 >= 0)"
    assert result.state.last_error is not None and result.state.last_error.kind is ErrorKind.BUDGET
    assert result.state.plan_version == 1


def test_max_turns_is_a_terminal_budget_failure(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient({"tool_calls": [helpers.noop_calls()]})

    result = run_agent(
        "two steps",
        budgets=RunBudgets(max_turns=1),
        client=client,
        plan=helpers.build_plan("t1", "t2"),
        context=_context(tmp_path),
    )

    assert not result.ok
    assert result.summary == "max turns reached"
    assert result.state.completed_tasks == {"t1"}
    assert result.state.budgets.used_turns == 1
    assert client.calls("plan") == 0


def test_unusable_plan_fails_the_run(tmp_path: Path, helpers) -> None:
    client = helpers.ScriptedClient({"plan": ["this is not json"]})

    result = run_agent("anything", client=client, context=_context(tmp_path), logs_root=tmp_path)

    assert not result.ok
    assert result.summary.startswith("Failed to propose plan: LLM output invalid after retry")
    assert result.state.last_error is not None and result.state.last_error.kind is ErrorKind.UNKNOWN
    assert {kind.value for kind in ErrorKind} == {"Config", "Unknown", "Budget"}
    assert client.calls("plan") == 2
    assert result.audit_path is not None
    audit = json.loads(result.audit_path.read_text(encoding="utf-8"))
    assert audit["goal"] == "anything"
    assert audit["final"]["ok"] is False


def test_supplied_plan_skips_planning(tmp_path: Path, helpers) -> None:
    plan = Plan.model_validate(helpers.plan_payload(helpers.task_payload("only")))
    client = helpers.ScriptedClient({"tool_calls": [helpers.noop_calls()]})

    result = run_agent("given plan", plan=plan, client=client, context=_context(tmp_path))

    assert result.ok
    assert client.calls("plan") == 0
    assert result.state.plan_history[0]["type"] == "initial"
