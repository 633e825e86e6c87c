from __future__ import annotations

from pathlib import Path

from pydantic import TypeAdapter

from planloop.plan.schema import SuccessCriterion
from planloop.runtime.criteria import criterion_to_tool_call, evaluate_success_criteria
from planloop.runtime.executor import ToolCall, execute_tool_call

_CRITERIA = TypeAdapter(list[SuccessCriterion])


def test_criteria_map_onto_check_tools() -> None:
    exists, contains, command = _CRITERIA.validate_python(
        [
            {"type": "file_exists", "path": "a.txt"},
            {"type": "file_contains", "path": "a.txt", "contains": "hi"},
            {"type": "command", "cmd": "pytest", "args": ["-q"], "cwd": "sub"},
        ]
    )

    assert criterion_to_tool_call(exists) == ToolCall("check_file_exists", {"base": "appDir", "path": "a.txt"})
    assert criterion_to_tool_call(contains).input["contains"] == "hi"
    assert criterion_to_tool_call(command).input == {
        "cmd": "pytest",
        "args": ["-q"],
        "expect_exit_code": 0,
        "cwd": "sub",
    }


def test_all_criteria_are_checked_and_failures_reported(tmp_path: Path, helpers) -> None:
    (tmp_path / "present.txt").write_text("hello", encoding="utf-8")
    ctx = helpers.build_context(tmp_path)
    state = helpers.executing_state()
    outcomes = [execute_tool_call(ToolCall("noop", {}), state, ctx)]
    criteria = _CRITERIA.validate_python(
        [
            {"type": "file_exists", "path": "missing.txt"},
            {"type": "file_contains", "path": "present.txt", "contains": "hello"},
            {"type": "tool_result", "tool_name": "noop", "expected_ok": True},
            {"type": "tool_result", "tool_name": "write_file", "expected_ok": True},
        ]
    )

    evaluation = evaluate_success_criteria(criteria, outcomes, state, ctx)

    assert not evaluation.ok
    assert evaluation.failures == [
        "criteria check failed: check_file_exists",
        "tool_result failed for write_file",
    ]
    assert [entry["name"] for entry in evaluation.audited_checks] == ["check_file_exists", "check_file_contains"]


def test_tool_result_uses_latest_outcome_and_expected_flag(tmp_path: Path, helpers) -> None:
    ctx = helpers.build_context(tmp_path)
    state = helpers.executing_state()
    outcomes = [
        execute_tool_call(ToolCall("check_file_exists", {"path": "a.txt"}), state, ctx),
    ]
    expect_failure = _CRITERIA.validate_python(
        [{"type": "tool_result", "tool_name": "check_file_exists", "expected_ok": False}]
    )

    assert evaluate_success_criteria(expect_failure, outcomes, state, ctx).ok

    (tmp_path / "a.txt").write_text("", encoding="utf-8")
    outcomes.append(execute_tool_call(ToolCall("check_file_exists", {"path": "a.txt"}), state, ctx))

    assert not evaluate_success_criteria(expect_failure, outcomes, state, ctx).ok


def test_evaluation_is_idempotent(tmp_path: Path, helpers) -> None:
    ctx = helpers.build_context(tmp_path)
    state = helpers.executing_state()
    outcomes = [execute_tool_call(ToolCall("noop", {}), state, ctx)]
    criteria = _CRITERIA.validate_python(
        [
            {"type": "file_exists", "path": "never-created.txt"},
            {"type": "tool_result", "tool_name": "noop"},
        ]
    )

    first = evaluate_success_criteria(criteria, outcomes, state, ctx)
    second = evaluate_success_criteria(criteria, outcomes, state, ctx)

    assert (first.ok, first.failures) == (second.ok, second.failures)
