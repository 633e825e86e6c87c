from __future__ import annotations

from pathlib import Path

import pytest

from planloop.policy.agent_policy import (
    DEFAULT_ALLOWED_COMMANDS,
    PolicyLoadError,
    default_agent_policy,
    load_policy,
)


def test_inline_json_policy_uses_wire_alias() -> None:
    policy = load_policy(
        '{"userExplicitlyAllowedRelaxAcceptance": true, "budgets": {"max_retries_per_task": 1}}'
    )

    assert policy is not None
    assert policy.user_explicitly_allowed_relax_acceptance is True
    assert policy.budgets.max_retries_per_task == 1
    assert policy.acceptance.locked is True
    assert policy.safety.allowed_commands == DEFAULT_ALLOWED_COMMANDS


def test_yaml_and_json_files_load(tmp_path: Path) -> None:
    yaml_path = tmp_path / "policy.yaml"
    yaml_path.write_text(
        "tech_stack_locked: false\n"
        "safety:\n"
        "  allowed_tools: [noop, write_file]\n"
        "acceptance:\n"
        "  locked: true\n"
        "  criteria:\n"
        "    - type: file_exists\n"
        "      path: README.md\n",
        encoding="utf-8",
    )
    json_path = tmp_path / "policy.json"
    json_path.write_text('{"budgets": {"max_replans": 0}}', encoding="utf-8")

    from_yaml = load_policy(yaml_path)
    from_json = load_policy(str(json_path))

    assert from_yaml is not None and from_yaml.tech_stack_locked is False
    assert from_yaml.safety.allowed_tools == ["noop", "write_file"]
    assert from_yaml.acceptance.criteria is not None
    assert from_yaml.acceptance.criteria[0].type == "file_exists"
    assert from_json is not None and from_json.budgets.max_replans == 0


@pytest.mark.parametrize(
    "source",
    [
        '{"budgets": {"max_steps": 0}}',
        '{"unexpected": 1}',
        "{not json",
    ],
)
def test_invalid_inline_policies_raise(source: str) -> None:
    with pytest.raises(PolicyLoadError):
        load_policy(source)


def test_unreadable_or_non_mapping_files_raise(tmp_path: Path) -> None:
    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(PolicyLoadError):
        load_policy(tmp_path / "missing.yaml")
    with pytest.raises(PolicyLoadError):
        load_policy(listing)


def test_empty_source_means_no_policy() -> None:
    assert load_policy(None) is None
    assert load_policy("   ") is None


def test_relaxation_is_the_only_mutation() -> None:
    policy = default_agent_policy(allowed_tools=["write_file", "noop"])

    relaxed = policy.allow_relax_acceptance()

    assert policy.user_explicitly_allowed_relax_acceptance is False
    assert relaxed.user_explicitly_allowed_relax_acceptance is True
    assert relaxed.safety.allowed_tools == ["noop", "write_file"]
    assert relaxed.model_dump(by_alias=True)["userExplicitlyAllowedRelaxAcceptance"] is True
    assert policy.summary() == {
        "acceptance_locked": True,
        "tech_stack_locked": True,
        "allowed_tools": ["noop", "write_file"],
    }
