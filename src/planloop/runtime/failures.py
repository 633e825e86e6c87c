"""Failure classification: system defects versus retryable task failures."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence


class FailureClass(str, Enum):
    SYSTEM = "system"
    TASK = "task"


class FailureKind(str, Enum):
    TOOL_INPUT_INVALID = "ToolInputInvalid"
    MISSING_BASE_ROOT = "MissingBaseRoot"
    UNKNOWN_TOOL = "UnknownTool"
    POLICY_BLOCKED_TOOL = "PolicyBlockedTool"
    PLANNER_OUTPUT_INVALID = "PlannerOutputInvalid"
    TASK_CRITERIA_FAILED = "TaskCriteriaFailed"
    OTHER_SYSTEM = "OtherSystem"


FINGERPRINT_LENGTH = 220

_WHITESPACE = re.compile(r"\s+")
_DIGITS = re.compile(r"\d+")


@dataclass(slots=True, frozen=True)
class FailureSignal:
    failure_class: FailureClass
    kind: FailureKind
    message: str
    fingerprint: str

    @property
    def is_system(self) -> bool:
        return self.failure_class is FailureClass.SYSTEM


def fingerprint_failure(kind: FailureKind, message: str) -> str:
    """``kind:`` plus the lowercased, whitespace-collapsed, digit-redacted message prefix."""
    normalised = _WHITESPACE.sub(" ", message.lower()).strip()
    normalised = _DIGITS.sub("<n>", normalised)
    return f"{kind.value}:{normalised[:FINGERPRINT_LENGTH]}"


def _signal(failure_class: FailureClass, kind: FailureKind, message: str) -> FailureSignal:
    return FailureSignal(
        failure_class=failure_class,
        kind=kind,
        message=message,
        fingerprint=fingerprint_failure(kind, message),
    )


def classify_failure(
    *,
    tool_errors: Sequence[str] = (),
    criteria_failures: Sequence[str] = (),
    last_error: Optional[str] = None,
    planner_output_invalid: bool = False,
) -> FailureSignal:
    """Bucket one attempt's failure text into a :class:`FailureSignal`.

    Rules are checked in a fixed order and the first match wins.
    """
    all_messages = [*tool_errors, *criteria_failures]
    if last_error:
        all_messages.append(last_error)
    first = all_messages[0] if all_messages else "unknown failure"

    if planner_output_invalid:
        message = f"planner output invalid: {last_error or first}"
        return _signal(FailureClass.SYSTEM, FailureKind.PLANNER_OUTPUT_INVALID, message)

    text = " | ".join(all_messages).lower()

    if "expected object, received undefined" in text:
        return _signal(FailureClass.SYSTEM, FailureKind.TOOL_INPUT_INVALID, first)

    if "base root" in text and "not available" in text:
        message = next((item for item in all_messages if "base root" in item.lower()), first)
        return _signal(FailureClass.SYSTEM, FailureKind.MISSING_BASE_ROOT, message)

    if "unknown tool" in text:
        message = next((item for item in all_messages if "unknown tool" in item.lower()), first)
        return _signal(FailureClass.SYSTEM, FailureKind.UNKNOWN_TOOL, message)

    if "blocked by policy" in text:
        message = next((item for item in all_messages if "blocked by policy" in item.lower()), first)
        return _signal(FailureClass.SYSTEM, FailureKind.POLICY_BLOCKED_TOOL, message)

    if criteria_failures:
        return _signal(FailureClass.TASK, FailureKind.TASK_CRITERIA_FAILED, criteria_failures[0])

    return _signal(FailureClass.SYSTEM, FailureKind.OTHER_SYSTEM, first)


__all__ = [
    "FINGERPRINT_LENGTH",
    "FailureClass",
    "FailureKind",
    "FailureSignal",
    "classify_failure",
    "fingerprint_failure",
]
