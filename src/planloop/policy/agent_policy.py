"""Agent policy model, defaults and loaders.

The policy is the immutable contract a run executes under: which tools and
commands may be used, whether acceptance criteria and the tech stack are
locked, and the numeric budgets that bound retries and replans.  The only
field that may change during a run is the explicit relax-acceptance flag,
which a human reviewer can flip through :meth:`AgentPolicy.allow_relax_acceptance`.

Policies can be supplied as inline JSON, a JSON file or a YAML file.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..plan.schema import SuccessCriterion
from ..utils.issues import summarize_validation_error

DEFAULT_TECH_STACK: Dict[str, Any] = {
    "language": "python",
    "packaging": "pyproject",
    "tests": "pytest",
}

DEFAULT_ALLOWED_COMMANDS: List[str] = ["python", "pytest", "pip", "ruff"]


class PolicyLoadError(ValueError):
    """Raised when a policy document cannot be read or validated."""


class _PolicyModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class AcceptancePolicy(_PolicyModel):
    locked: bool = True
    criteria: Optional[List[SuccessCriterion]] = None


class SafetyPolicy(_PolicyModel):
    allowed_tools: List[str] = Field(default_factory=list)
    allowed_commands: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_COMMANDS))


class PolicyBudgets(_PolicyModel):
    max_steps: int = Field(default=16, gt=0)
    max_actions_per_task: int = Field(default=4, gt=0)
    max_retries_per_task: int = Field(default=3, gt=0)
    max_replans: int = Field(default=3, ge=0)


class AgentPolicy(_PolicyModel):
    """Constraints every plan, tool call and plan change is checked against."""

    tech_stack: Dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_TECH_STACK))
    tech_stack_locked: bool = True
    acceptance: AcceptancePolicy = Field(default_factory=AcceptancePolicy)
    safety: SafetyPolicy = Field(default_factory=SafetyPolicy)
    budgets: PolicyBudgets = Field(default_factory=PolicyBudgets)
    user_explicitly_allowed_relax_acceptance: bool = Field(
        default=False,
        alias="userExplicitlyAllowedRelaxAcceptance",
    )

    def allow_relax_acceptance(self) -> "AgentPolicy":
        """Return a copy with acceptance relaxation explicitly allowed."""
        return self.model_copy(update={"user_explicitly_allowed_relax_acceptance": True})

    def summary(self) -> Dict[str, Any]:
        """Compact view handed to reviewers and the review interpreter."""
        return {
            "acceptance_locked": self.acceptance.locked,
            "tech_stack_locked": self.tech_stack_locked,
            "allowed_tools": list(self.safety.allowed_tools),
        }


def default_agent_policy(
    *,
    allowed_tools: Iterable[str],
    max_steps: int = 16,
    max_actions_per_task: int = 4,
    max_retries_per_task: int = 3,
    max_replans: int = 3,
) -> AgentPolicy:
    """Build the policy used when the caller does not supply one."""
    return AgentPolicy(
        tech_stack=dict(DEFAULT_TECH_STACK),
        tech_stack_locked=True,
        acceptance=AcceptancePolicy(locked=True, criteria=[]),
        safety=SafetyPolicy(
            allowed_tools=sorted(allowed_tools),
            allowed_commands=list(DEFAULT_ALLOWED_COMMANDS),
        ),
        budgets=PolicyBudgets(
            max_steps=max_steps,
            max_actions_per_task=max_actions_per_task,
            max_retries_per_task=max_retries_per_task,
            max_replans=max_replans,
        ),
        user_explicitly_allowed_relax_acceptance=False,
    )


def parse_policy(data: Mapping[str, Any]) -> AgentPolicy:
    """Validate a mapping into an :class:`AgentPolicy`."""
    try:
        return AgentPolicy.model_validate(dict(data))
    except ValidationError as error:
        raise PolicyLoadError(f"Invalid policy: {summarize_validation_error(error)}") from error


def load_policy(source: Union[str, Path, None]) -> Optional[AgentPolicy]:
    """Load a policy from inline JSON, a ``.json`` file or a YAML file.

    ``None`` or an empty string yields ``None`` so callers can fall back to
    :func:`default_agent_policy`.
    """
    if source is None:
        return None
    if isinstance(source, str):
        text = source.strip()
        if not text:
            return None
        if text.startswith("{"):
            return parse_policy(_load_json_text(text, origin="inline policy"))
        source = Path(text)

    path = Path(source)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as error:
        raise PolicyLoadError(f"Unable to read policy file {path}: {error}") from error

    if path.suffix.lower() == ".json":
        data = _load_json_text(raw, origin=path.as_posix())
    else:
        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as error:
            raise PolicyLoadError(f"Invalid YAML in {path}: {error}") from error
    if not isinstance(data, Mapping):
        raise PolicyLoadError(f"Expected mapping at top level of {path}")
    return parse_policy(data)


def _load_json_text(text: str, *, origin: str) -> Mapping[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as error:
        raise PolicyLoadError(f"Invalid JSON in {origin}: {error}") from error
    if not isinstance(data, Mapping):
        raise PolicyLoadError(f"Expected JSON object in {origin}")
    return data


__all__ = [
    "AcceptancePolicy",
    "AgentPolicy",
    "DEFAULT_ALLOWED_COMMANDS",
    "DEFAULT_TECH_STACK",
    "PolicyBudgets",
    "PolicyLoadError",
    "SafetyPolicy",
    "default_agent_policy",
    "load_policy",
    "parse_policy",
]
