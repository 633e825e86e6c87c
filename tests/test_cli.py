from __future__ import annotations

import json
from pathlib import Path

import yaml
from typer.testing import CliRunner

from planloop.cli import app
from planloop.config import DEFAULT_CONFIG_TEMPLATE


def _init(runner: CliRunner, config_path: Path):
    return runner.invoke(app, ["init", "--config", str(config_path)], catch_exceptions=False)


def test_init_writes_template_once(tmp_path: Path) -> None:
    runner = CliRunner()
    config_path = tmp_path / "config.yaml"

    first = _init(runner, config_path)
    second = _init(runner, config_path)

    assert first.exit_code == 0, first.output
    assert yaml.safe_load(config_path.read_text(encoding="utf-8")) == DEFAULT_CONFIG_TEMPLATE
    assert second.exit_code == 1
    assert "--force" in second.output


def test_offline_run_completes_and_writes_audit(tmp_path: Path) -> None:
    runner = CliRunner()
    config_path = tmp_path / "config.yaml"
    _init(runner, config_path)

    result = runner.invoke(
        app,
        ["run", "say hello", "--no-use-remote", "--config", str(config_path), "--events"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Using offline stub client." in result.output
    assert "Status: done" in result.output
    assert "Agent completed successfully" in result.output
    assert (tmp_path / "agent_logs" / "0001.json").exists()
    event_lines = [line for line in result.output.splitlines() if line.startswith("{")]
    assert json.loads(event_lines[0])["type"] == "plan_proposed"
    assert json.loads(event_lines[-1])["type"] == "done"


def test_supplied_plan_that_cannot_pass_exits_with_failure(tmp_path: Path) -> None:
    runner = CliRunner()
    config_path = tmp_path / "config.yaml"
    _init(runner, config_path)
    plan_path = tmp_path / "plan.yaml"
    plan_path.write_text(
        yaml.safe_dump(
            {
                "goal": "create a file",
                "tasks": [
                    {
                        "id": "t1",
                        "title": "Create missing.txt",
                        "success_criteria": [{"type": "file_exists", "path": "missing.txt"}],
                    }
                ],
            }
        ),
        encoding="utf-8",
    )

    result = runner.invoke(
        app,
        ["run", "create a file", "--no-use-remote", "--config", str(config_path), "--plan", str(plan_path)],
        catch_exceptions=False,
    )

    assert result.exit_code == 1, result.output
    assert "Status: failed" in result.output
    assert "max replans reached (3 >= 3)" in result.output


def test_bad_policy_exits_with_configuration_error(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["run", "goal", "--no-use-remote", "--config", str(tmp_path / "config.yaml"), "--policy", "{oops"],
        catch_exceptions=False,
    )

    assert result.exit_code == 2
    assert "Invalid JSON in inline policy" in result.output


def test_tools_and_policy_commands(tmp_path: Path) -> None:
    runner = CliRunner()

    listing = runner.invoke(app, ["tools"], catch_exceptions=False)
    shown = runner.invoke(
        app,
        ["policy", "--config", str(tmp_path / "config.yaml"), "--policy", '{"budgets": {"max_replans": 1}}'],
        catch_exceptions=False,
    )

    assert listing.exit_code == 0
    assert "- noop [" in listing.output
    assert "schema sha256:" in listing.output
    assert shown.exit_code == 0, shown.output
    policy = json.loads(shown.output)
    assert policy["budgets"]["max_replans"] == 1
    assert policy["userExplicitlyAllowedRelaxAcceptance"] is False
