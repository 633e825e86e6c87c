from __future__ import annotations

import json
from pathlib import Path

from planloop.runtime.recorder import (
    MAX_ERROR_CHARS,
    MAX_LLM_RAW_CHARS,
    MAX_TOUCHED_PATHS,
    AuditCollector,
)
from planloop.runtime.state import AgentStatus


def test_fields_are_clamped(tmp_path: Path) -> None:
    audit = AuditCollector("goal", tmp_path)

    entry = audit.record_turn(
        turn=1,
        note="big",
        llm_raw="x" * (MAX_LLM_RAW_CHARS + 10),
        errors=["e" * (MAX_ERROR_CHARS + 1)],
        touched_paths=[f"f{index}.txt" for index in range(MAX_TOUCHED_PATHS + 5)],
    )

    assert entry.llm_raw is not None
    assert entry.llm_raw.startswith("x" * MAX_LLM_RAW_CHARS)
    assert entry.llm_raw.endswith("...<truncated>")
    assert len(entry.errors[0]) == MAX_ERROR_CHARS + len("...<truncated>")
    assert len(entry.touched_paths) == MAX_TOUCHED_PATHS


def test_flush_uses_next_free_counter(tmp_path: Path) -> None:
    logs = tmp_path / "agent_logs"
    logs.mkdir()
    (logs / "0007.json").write_text("{}", encoding="utf-8")
    (logs / "notes.json").write_text("{}", encoding="utf-8")
    audit = AuditCollector("ship it", tmp_path)
    audit.record_turn(turn=0, note="initial plan generated: 1 tasks", decision={"status": AgentStatus.DONE})

    first = audit.flush({"ok": True, "path": tmp_path})
    second = audit.flush({"ok": True})

    assert first == logs / "0008.json"
    assert second == logs / "0009.json"
    document = json.loads(first.read_text(encoding="utf-8"))
    assert document["goal"] == "ship it"
    assert document["turns"][0]["decision"] == {"status": "done"}
    assert document["final"]["path"] == tmp_path.as_posix()


def test_flush_without_root_is_a_no_op() -> None:
    audit = AuditCollector("goal")
    audit.record_turn(turn=1, note="nothing persisted")

    assert audit.flush({"ok": False}) is None
    assert len(audit.turns) == 1
