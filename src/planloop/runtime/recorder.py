"""Append-only audit collector persisted as one JSON document per run."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..utils.issues import truncate_text

LOGGER = logging.getLogger(__name__)

MAX_LLM_RAW_CHARS = 60_000
MAX_ERROR_CHARS = 8_000
MAX_TOUCHED_PATHS = 200
AUDIT_DIRNAME = "agent_logs"

_COUNTER_NAME = re.compile(r"^(\d{4,})\.json$")


def _json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if hasattr(value, "model_dump"):
        try:
            return _json_safe(value.model_dump(mode="json"))
        except TypeError:
            pass
    if isinstance(value, dict):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_json_safe(item) for item in value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


@dataclass(slots=True)
class AuditTurn:
    """One record: a planner exchange, a tool batch or a gate decision."""

    turn: int
    note: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    llm_raw: Optional[str] = None
    prompt: Optional[str] = None
    previous_response_id: Optional[str] = None
    response_id: Optional[str] = None
    tool_calls: List[Any] = field(default_factory=list)
    tool_results: List[Any] = field(default_factory=list)
    touched_paths: List[str] = field(default_factory=list)
    decision: Any = None
    errors: List[str] = field(default_factory=list)


class AuditCollector:
    """Collects audit turns in memory and writes them out once per run."""

    def __init__(self, goal: str, logs_root: Optional[Path] = None) -> None:
        self._goal = goal
        self._logs_root = Path(logs_root) if logs_root is not None else None
        self._turns: List[AuditTurn] = []

    @property
    def turns(self) -> List[AuditTurn]:
        return list(self._turns)

    def record_turn(
        self,
        *,
        turn: int,
        note: str,
        llm_raw: Optional[str] = None,
        prompt: Optional[str] = None,
        previous_response_id: Optional[str] = None,
        response_id: Optional[str] = None,
        tool_calls: Sequence[Any] = (),
        tool_results: Sequence[Any] = (),
        touched_paths: Sequence[str] = (),
        decision: Any = None,
        errors: Sequence[str] = (),
    ) -> AuditTurn:
        entry = AuditTurn(
            turn=turn,
            note=note,
            llm_raw=truncate_text(llm_raw, MAX_LLM_RAW_CHARS) if llm_raw is not None else None,
            prompt=truncate_text(prompt, MAX_LLM_RAW_CHARS) if prompt is not None else None,
            previous_response_id=previous_response_id,
            response_id=response_id,
            tool_calls=[_json_safe(item) for item in tool_calls],
            tool_results=[_json_safe(item) for item in tool_results],
            touched_paths=list(touched_paths)[:MAX_TOUCHED_PATHS],
            decision=_json_safe(decision),
            errors=[truncate_text(item, MAX_ERROR_CHARS) for item in errors],
        )
        self._turns.append(entry)
        return entry

    def flush(self, final: Dict[str, Any]) -> Optional[Path]:
        """Write ``{goal, turns, final}`` to the next free ``agent_logs/NNNN.json``.

        Returns ``None`` when no logs root is configured or the write fails; a
        broken audit sink never aborts the run.
        """
        if self._logs_root is None:
            return None
        target_dir = self._logs_root / AUDIT_DIRNAME
        payload = {
            "goal": self._goal,
            "turns": [_json_safe(turn) for turn in self._turns],
            "final": _json_safe(final),
        }
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            target = target_dir / f"{self._next_counter(target_dir):04d}.json"
            target.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as error:
            LOGGER.warning("Failed to persist audit log under %s: %s", target_dir, error)
            return None
        return target

    @staticmethod
    def _next_counter(directory: Path) -> int:
        highest = 0
        for path in directory.iterdir():
            match = _COUNTER_NAME.match(path.name)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest + 1


__all__ = [
    "AUDIT_DIRNAME",
    "AuditCollector",
    "AuditTurn",
    "MAX_ERROR_CHARS",
    "MAX_LLM_RAW_CHARS",
    "MAX_TOUCHED_PATHS",
]
