"""Human-review collaborators consulted for patch files and plan changes."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, TextIO

import typer

from ..plan.schema import GateResult

AUTO_APPROVE_FEEDBACK = "Approve. Apply the proposed patch."
DEFAULT_PLAN_CHANGE_FEEDBACK = (
    "I do not approve this plan change. Please propose a plan change that fixes the failure "
    "without relaxing acceptance or changing tech stack."
)
NO_TTY_MESSAGE = "Human review required but no TTY available. Re-run with --auto-approve."


class ReviewUnavailableError(RuntimeError):
    """Raised when an interactive review is required but cannot be conducted."""


@dataclass(slots=True)
class PatchReviewRequest:
    reason: str
    patch_paths: List[str]
    phase: str


@dataclass(slots=True)
class PlanChangeReviewRequest:
    request: Any
    gate_result: GateResult
    policy_summary: Dict[str, Any]
    prompt_hint: str = field(default="Reply in plain language: approve, reject, or describe what to change.")


class HumanReviewer(Protocol):
    def approve_patches(self, review: PatchReviewRequest) -> bool:
        ...

    def review_plan_change(self, review: PlanChangeReviewRequest) -> str:
        ...


class AutoApproveReviewer:
    """Approves everything; used for unattended runs."""

    def approve_patches(self, review: PatchReviewRequest) -> bool:
        return True

    def review_plan_change(self, review: PlanChangeReviewRequest) -> str:
        return AUTO_APPROVE_FEEDBACK


class ConsoleReviewer:
    """Asks the operator on the terminal; fails fast without a TTY."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream or sys.stdin

    def _require_tty(self) -> None:
        isatty = getattr(self._stream, "isatty", None)
        if not callable(isatty) or not isatty():
            raise ReviewUnavailableError(NO_TTY_MESSAGE)

    def approve_patches(self, review: PatchReviewRequest) -> bool:
        self._require_tty()
        typer.echo(f"[review] {review.reason} (phase: {review.phase})")
        for path in review.patch_paths:
            typer.echo(f"  - {path}")
        return typer.confirm("Continue after merging these patch files?", default=False)

    def review_plan_change(self, review: PlanChangeReviewRequest) -> str:
        self._require_tty()
        typer.echo("[review] Proposed plan change:")
        typer.echo(json.dumps(review.request.model_dump(mode="json"), indent=2))
        typer.echo(f"[review] Gate: {review.gate_result.status.value} - {review.gate_result.reason}")
        return typer.prompt(review.prompt_hint)


__all__ = [
    "AUTO_APPROVE_FEEDBACK",
    "AutoApproveReviewer",
    "ConsoleReviewer",
    "DEFAULT_PLAN_CHANGE_FEEDBACK",
    "HumanReviewer",
    "NO_TTY_MESSAGE",
    "PatchReviewRequest",
    "PlanChangeReviewRequest",
    "ReviewUnavailableError",
]
