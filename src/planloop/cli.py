"""CLI commands for running planloop goals and inspecting its configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml
from pydantic import ValidationError

from .config import (
    DEFAULT_CONFIG_NAME,
    ConfigError,
    config_int,
    copy_config_template,
    load_config,
    resolve_path,
    write_config,
)
from .models import LLMClient, LLMClientError, OfflineLLMClient, ResponsesClient
from .plan.schema import Plan
from .policy.agent_policy import AgentPolicy, PolicyLoadError, default_agent_policy, load_policy
from .runtime.events import AgentEvent
from .runtime.orchestrator import RunBudgets, run_agent
from .runtime.review import AutoApproveReviewer, ConsoleReviewer, HumanReviewer
from .tools.builtin import default_registry
from .tools.registry import ToolContext, ToolRegistry, tool_index_rows
from .utils.issues import summarize_validation_error

APP_HELP = "planloop: plan, execute, retry and replan toward a goal."

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_UNEXPECTED = 2

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help=APP_HELP)


def _configure_logging(config: Dict[str, Any], *, verbose: bool) -> None:
    level_name = "DEBUG" if verbose else str((config.get("logging") or {}).get("level", "WARNING")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ConfigError(f"Unknown logging level: {level_name}")
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _build_client(config: Dict[str, Any], *, use_remote: bool) -> LLMClient:
    """Select either the remote Responses client or the offline stub."""
    models_cfg = config.get("models") or {}
    model_name = str(models_cfg.get("default", "gpt-5-mini"))
    offline_model = model_name.lower() == "offline" or model_name.lower().endswith("-offline")

    if not use_remote or offline_model:
        typer.echo("Using offline stub client.")
        return OfflineLLMClient()

    client_kwargs: Dict[str, Any] = {}
    timeout_value = models_cfg.get("timeout")
    if isinstance(timeout_value, (int, float)) and timeout_value > 0:
        client_kwargs["timeout"] = float(timeout_value)
    max_attempts_value = models_cfg.get("max_attempts")
    if isinstance(max_attempts_value, int) and max_attempts_value > 0:
        client_kwargs["max_attempts"] = max_attempts_value
    retry_delay_value = models_cfg.get("retry_delay")
    if isinstance(retry_delay_value, (int, float)) and retry_delay_value >= 0:
        client_kwargs["retry_delay"] = float(retry_delay_value)
    base_url_value = models_cfg.get("base_url")
    if isinstance(base_url_value, str) and base_url_value.strip():
        client_kwargs["base_url"] = base_url_value.strip()

    try:
        client = ResponsesClient(model=model_name, **client_kwargs)
    except ValueError as error:
        if "api key" in str(error).lower():
            raise ConfigError(
                "No API key given. Set PLANLOOP_API_KEY or OPENAI_API_KEY, "
                "or re-run with --no-use-remote to use the offline stub."
            ) from error
        raise ConfigError(f"Failed to initialise model client: {error}") from error
    typer.echo(f"Using Responses client ({model_name}).")
    return client


def _resolve_policy(
    source: Optional[str],
    config: Dict[str, Any],
    config_path: Path,
    registry: ToolRegistry,
    budgets: RunBudgets,
) -> AgentPolicy:
    if source is None:
        configured = (config.get("policy") or {}).get("path")
        if isinstance(configured, str) and configured.strip():
            candidate = Path(configured.strip())
            if not candidate.is_absolute():
                candidate = config_path.parent / candidate
            source = candidate.as_posix()
    policy = load_policy(source)
    if policy is not None:
        return policy
    return default_agent_policy(
        allowed_tools=registry.names(),
        max_steps=budgets.max_turns,
        max_actions_per_task=budgets.max_tool_calls_per_turn,
    )


def _load_plan_file(path: Path) -> Plan:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as error:
        raise ConfigError(f"Unable to read plan file {path}: {error}") from error
    try:
        data = json.loads(raw) if path.suffix.lower() == ".json" else yaml.safe_load(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as error:
        raise ConfigError(f"Unable to parse plan file {path}: {error}") from error
    try:
        return Plan.model_validate(data)
    except ValidationError as error:
        raise ConfigError(f"Invalid plan in {path}: {summarize_validation_error(error)}") from error


def _echo_event(event: AgentEvent) -> None:
    typer.echo(json.dumps(event.to_dict(), default=str))


# ------------------------------------------------------------------ commands


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file to create.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration template."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Config already exists at {config_path}; pass --force to overwrite.")
        raise typer.Exit(code=EXIT_RUN_FAILED)
    write_config(config_path, copy_config_template())
    typer.echo(f"Wrote default configuration to {config_path}")


@app.command()
def run(
    goal: str = typer.Argument(..., help="Goal to plan and execute."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    policy: Optional[str] = typer.Option(
        None,
        "--policy",
        "-p",
        help="Policy as inline JSON, a JSON file or a YAML file.",
    ),
    plan: Optional[Path] = typer.Option(
        None,
        "--plan",
        help="Execute this plan (JSON or YAML) instead of asking the model for one.",
    ),
    use_remote: bool = typer.Option(
        True,
        "--use-remote/--no-use-remote",
        help="Call the Responses API instead of the offline stub (requires API key).",
    ),
    auto_approve: Optional[bool] = typer.Option(
        None,
        "--auto-approve/--interactive",
        help="Approve patch files and plan changes without prompting.",
    ),
    allow_relax_acceptance: bool = typer.Option(
        False,
        "--allow-relax-acceptance",
        help="Let plan changes relax locked acceptance criteria.",
    ),
    max_turns: Optional[int] = typer.Option(None, "--max-turns", min=1, help="Override budgets.max_turns."),
    events: bool = typer.Option(False, "--events", help="Echo lifecycle events as JSON lines."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Plan ``GOAL``, execute its tasks and replan on failure."""
    config_path = Path(config)
    registry = default_registry()
    try:
        config_data = load_config(config_path)
        _configure_logging(config_data, verbose=verbose)
        budgets = RunBudgets(
            max_turns=max_turns or config_int(config_data, "budgets", "max_turns"),
            max_tool_calls_per_turn=config_int(config_data, "budgets", "max_tool_calls_per_turn"),
            max_patches=config_int(config_data, "budgets", "max_patches"),
        )
        agent_policy = _resolve_policy(policy, config_data, config_path, registry, budgets)
        if allow_relax_acceptance:
            agent_policy = agent_policy.allow_relax_acceptance()
        initial_plan = _load_plan_file(plan) if plan is not None else None
        client = _build_client(config_data, use_remote=use_remote)
    except (ConfigError, PolicyLoadError) as error:
        typer.echo(str(error))
        raise typer.Exit(code=EXIT_UNEXPECTED) from error

    approve = auto_approve if auto_approve is not None else bool((config_data.get("review") or {}).get("auto_approve"))
    reviewer: HumanReviewer = AutoApproveReviewer() if approve else ConsoleReviewer()
    context = ToolContext(
        base_roots={
            "appDir": resolve_path(config_data, "app_dir", config_path),
            "outDir": resolve_path(config_data, "out_dir", config_path),
        },
    )

    try:
        result = run_agent(
            goal,
            agent_policy,
            budgets,
            client=client,
            registry=registry,
            reviewer=reviewer,
            plan=initial_plan,
            on_event=_echo_event if events else None,
            context=context,
            logs_root=resolve_path(config_data, "logs", config_path),
        )
    except (LLMClientError, OSError) as error:
        LOGGER.exception("Run aborted")
        typer.echo(f"Run aborted: {error}")
        raise typer.Exit(code=EXIT_UNEXPECTED) from error

    state = result.state
    typer.echo(f"Status: {state.status.value}")
    typer.echo(f"Plan version: {state.plan_version}; completed tasks: {len(state.completed_tasks)}")
    if result.audit_path is not None:
        typer.echo(f"Audit log: {result.audit_path}")
    typer.echo(result.summary)
    if not result.ok:
        raise typer.Exit(code=EXIT_RUN_FAILED)


@app.command()
def tools() -> None:
    """List the built-in tool catalog."""
    for row in tool_index_rows(default_registry()):
        typer.echo(f"- {row['name']} [{row['category']}, {row['safety']['side_effects']}] {row['summary']}")
        typer.echo(f"  schema {row['input_schema_fingerprint']}")


@app.command("policy")
def show_policy(
    policy: Optional[str] = typer.Option(
        None,
        "--policy",
        "-p",
        help="Policy as inline JSON, a JSON file or a YAML file.",
    ),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
) -> None:
    """Print the effective policy as JSON."""
    config_path = Path(config)
    try:
        config_data = load_config(config_path)
        budgets = RunBudgets(
            max_turns=config_int(config_data, "budgets", "max_turns"),
            max_tool_calls_per_turn=config_int(config_data, "budgets", "max_tool_calls_per_turn"),
            max_patches=config_int(config_data, "budgets", "max_patches"),
        )
        effective = _resolve_policy(policy, config_data, config_path, default_registry(), budgets)
    except (ConfigError, PolicyLoadError) as error:
        typer.echo(str(error))
        raise typer.Exit(code=EXIT_UNEXPECTED) from error
    typer.echo(json.dumps(effective.model_dump(mode="json", by_alias=True), indent=2))


if __name__ == "__main__":
    app()
