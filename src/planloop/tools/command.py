"""Subprocess runner with an enforced wall-clock timeout."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
MAX_OUTPUT_CHARS = 200_000
TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127


@dataclass(slots=True)
class CommandResult:
    """Captured outcome of a single command execution."""

    command: list[str]
    cwd: str
    code: int
    stdout: str
    stderr: str
    duration_s: float
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.code == 0 and not self.timed_out


def _clamp(text: str | bytes | None) -> str:
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="ignore")
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + "\n...<output truncated>"


def run_command(
    cmd: str,
    args: Sequence[str],
    cwd: Path | str,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> CommandResult:
    """Run ``cmd`` with ``args`` in ``cwd``; the child is killed once ``timeout`` elapses."""
    command = [cmd, *args]
    cwd_text = Path(cwd).as_posix()
    started = time.monotonic()
    try:
        process = subprocess.run(  # noqa: S603 - executable checked against the policy allowlist
            command,
            cwd=cwd_text,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as error:
        LOGGER.warning("Command %s timed out after %.0fs", " ".join(command), timeout)
        stderr = _clamp(error.stderr)
        message = f"command timed out after {timeout:g}s"
        return CommandResult(
            command=command,
            cwd=cwd_text,
            code=TIMEOUT_EXIT_CODE,
            stdout=_clamp(error.stdout),
            stderr=f"{stderr}\n{message}".strip(),
            duration_s=time.monotonic() - started,
            timed_out=True,
        )
    except (FileNotFoundError, NotADirectoryError, PermissionError) as error:
        return CommandResult(
            command=command,
            cwd=cwd_text,
            code=NOT_FOUND_EXIT_CODE,
            stdout="",
            stderr=str(error),
            duration_s=time.monotonic() - started,
        )

    return CommandResult(
        command=command,
        cwd=cwd_text,
        code=process.returncode,
        stdout=_clamp(process.stdout),
        stderr=_clamp(process.stderr),
        duration_s=time.monotonic() - started,
    )


__all__ = [
    "CommandResult",
    "DEFAULT_TIMEOUT_SECONDS",
    "MAX_OUTPUT_CHARS",
    "run_command",
]
