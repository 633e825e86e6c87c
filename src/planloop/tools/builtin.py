"""Built-in tools shipped with every registry."""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import List, Optional

from pydantic import Field

from .registry import (
    BaseRootName,
    ToolContext,
    ToolInput,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    base_root_missing,
    command_blocked,
)

DEFAULT_READ_CHARS = 100_000


class NoopInput(ToolInput):
    note: Optional[str] = None


class ReadFilesInput(ToolInput):
    base: BaseRootName = "appDir"
    globs: List[str] = Field(min_length=1)
    max_chars: int = Field(default=DEFAULT_READ_CHARS, gt=0, le=200_000)


class WriteFileInput(ToolInput):
    base: BaseRootName = "appDir"
    path: str = Field(min_length=1)
    content: str
    overwrite: bool = False


class RunCmdInput(ToolInput):
    cmd: str = Field(min_length=1)
    args: List[str] = Field(default_factory=list)
    cwd: Optional[str] = None


class CheckFileExistsInput(ToolInput):
    base: BaseRootName = "appDir"
    path: str = Field(min_length=1)


class CheckFileContainsInput(ToolInput):
    base: BaseRootName = "appDir"
    path: str = Field(min_length=1)
    contains: str = Field(min_length=1)


class CheckCommandInput(ToolInput):
    cmd: str = Field(min_length=1)
    args: List[str] = Field(default_factory=list)
    cwd: Optional[str] = None
    expect_exit_code: int = 0


def _inside(root: Path, relative: str) -> Optional[Path]:
    """Resolve ``relative`` under ``root``; ``None`` when it escapes the root."""
    candidate = (root / relative).resolve()
    try:
        candidate.relative_to(root.resolve())
    except ValueError:
        return None
    return candidate


def _resolve_cwd(context: ToolContext, cwd: Optional[str]) -> Path:
    base = context.default_cwd()
    if not cwd:
        return base
    candidate = Path(cwd)
    return candidate if candidate.is_absolute() else base / candidate


# ------------------------------------------------------------------ runners


def _run_noop(params: NoopInput, context: ToolContext) -> ToolResult:
    return ToolResult.success({"note": params.note})


def _run_read_files(params: ReadFilesInput, context: ToolContext) -> ToolResult:
    root = context.base_root(params.base)
    if root is None:
        return base_root_missing(params.base)

    picked = sorted(
        path
        for path in root.rglob("*")
        if path.is_file()
        and any(fnmatch.fnmatch(path.relative_to(root).as_posix(), pattern) for pattern in params.globs)
    )
    files = []
    used = 0
    for path in picked:
        if used >= params.max_chars:
            break
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as error:
            return ToolResult.failure("READ_FILES_FAILED", f"failed to read {path.name}: {error}")
        remaining = params.max_chars - used
        relative = path.relative_to(root).as_posix()
        truncated = len(text) > remaining
        files.append({"path": relative, "content": text[:remaining], "truncated": truncated})
        used += min(len(text), remaining)
    return ToolResult.success(
        {"files": files, "total": len(files), "total_chars": used},
        touched_paths=[item["path"] for item in files],
    )


def _run_write_file(params: WriteFileInput, context: ToolContext) -> ToolResult:
    root = context.base_root(params.base)
    if root is None:
        return base_root_missing(params.base)
    target = _inside(root, params.path)
    if target is None:
        return ToolResult.failure("PATH_OUTSIDE_ROOT", f"{params.path} escapes base root '{params.base}'")

    if target.exists() and not params.overwrite:
        patch_target = target.with_name(f"{target.name}.patch")
        patch_target.write_text(params.content, encoding="utf-8")
        relative = patch_target.relative_to(root.resolve()).as_posix()
        return ToolResult.success(
            {"path": relative, "written": False, "patch": True},
            touched_paths=[relative],
            patch_paths=[relative],
        )

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(params.content, encoding="utf-8")
    relative = target.relative_to(root.resolve()).as_posix()
    return ToolResult.success({"path": relative, "written": True, "patch": False}, touched_paths=[relative])


def _run_run_cmd(params: RunCmdInput, context: ToolContext) -> ToolResult:
    if not context.command_allowed(params.cmd):
        return command_blocked(params.cmd)
    cwd = _resolve_cwd(context, params.cwd)
    outcome = context.run_command(params.cmd, params.args, cwd)
    data = {"ok": outcome.ok, "code": outcome.code, "stdout": outcome.stdout, "stderr": outcome.stderr}
    if outcome.ok:
        return ToolResult.success(data, touched_paths=[outcome.cwd])
    return ToolResult.failure(
        "CMD_FAILED",
        f"Command failed with code {outcome.code}",
        detail=outcome.stderr[:3000],
        data=data,
    )


def _run_check_file_exists(params: CheckFileExistsInput, context: ToolContext) -> ToolResult:
    root = context.base_root(params.base)
    if root is None:
        return base_root_missing(params.base)
    absolute = _inside(root, params.path)
    if absolute is None:
        return ToolResult.failure("PATH_OUTSIDE_ROOT", f"{params.path} escapes base root '{params.base}'")
    exists = absolute.exists()
    data = {"ok": exists, "exists": exists, "absolute_path": absolute.as_posix()}
    if exists:
        return ToolResult.success(data)
    return ToolResult.failure("FILE_NOT_FOUND", f"{params.path} does not exist", data=data)


def _run_check_file_contains(params: CheckFileContainsInput, context: ToolContext) -> ToolResult:
    root = context.base_root(params.base)
    if root is None:
        return base_root_missing(params.base)
    absolute = _inside(root, params.path)
    if absolute is None:
        return ToolResult.failure("PATH_OUTSIDE_ROOT", f"{params.path} escapes base root '{params.base}'")
    if not absolute.is_file():
        return ToolResult.failure("FILE_NOT_FOUND", f"{params.path} does not exist")
    text = absolute.read_text(encoding="utf-8", errors="ignore")
    found = params.contains in text
    data = {"ok": found, "contains": found, "absolute_path": absolute.as_posix()}
    if found:
        return ToolResult.success(data)
    return ToolResult.failure("TEXT_NOT_FOUND", f"{params.path} does not contain the expected text", data=data)


def _run_check_command(params: CheckCommandInput, context: ToolContext) -> ToolResult:
    if not context.command_allowed(params.cmd):
        return command_blocked(params.cmd)
    cwd = _resolve_cwd(context, params.cwd)
    outcome = context.run_command(params.cmd, params.args, cwd)
    ok = outcome.code == params.expect_exit_code and not outcome.timed_out
    data = {
        "ok": ok,
        "code": outcome.code,
        "stdout": outcome.stdout,
        "stderr": outcome.stderr,
        "cwd": outcome.cwd,
    }
    if ok:
        return ToolResult.success(data)
    message = (
        f"{params.cmd} timed out" if outcome.timed_out else f"{params.cmd} exited with {outcome.code}"
    )
    return ToolResult.failure("COMMAND_CHECK_FAILED", message, detail=outcome.stderr[:3000], data=data)


BUILTIN_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name="noop",
        description="Do nothing and succeed; useful for bookkeeping steps.",
        input_model=NoopInput,
        run=_run_noop,
        capabilities=("bookkeeping",),
    ),
    ToolSpec(
        name="read_files",
        description="Read files under appDir/outDir matching glob patterns for additional context.",
        input_model=ReadFilesInput,
        run=_run_read_files,
        capabilities=("fs", "context", "read-only"),
    ),
    ToolSpec(
        name="write_file",
        description=(
            "Write a file under appDir/outDir. Existing files are left untouched unless "
            "overwrite=true; a <path>.patch file is written instead and needs a manual merge."
        ),
        input_model=WriteFileInput,
        run=_run_write_file,
        capabilities=("fs", "write"),
        side_effects="fs",
    ),
    ToolSpec(
        name="run_cmd",
        description="Run an allowlisted command and capture stdout/stderr.",
        input_model=RunCmdInput,
        run=_run_run_cmd,
        capabilities=("exec", "diagnostics"),
        side_effects="exec",
    ),
    ToolSpec(
        name="check_file_exists",
        description="Check whether a file exists under appDir/outDir.",
        input_model=CheckFileExistsInput,
        run=_run_check_file_exists,
        capabilities=("check", "file"),
    ),
    ToolSpec(
        name="check_file_contains",
        description="Check whether a file under appDir/outDir contains a substring.",
        input_model=CheckFileContainsInput,
        run=_run_check_file_contains,
        capabilities=("check", "file"),
    ),
    ToolSpec(
        name="check_command",
        description="Run an allowlisted command and assert its exit code.",
        input_model=CheckCommandInput,
        run=_run_check_command,
        capabilities=("check", "command", "exec"),
        side_effects="exec",
    ),
)


def default_registry() -> ToolRegistry:
    """Return a fresh registry holding every built-in tool."""
    return ToolRegistry(BUILTIN_TOOLS)


__all__ = [
    "BUILTIN_TOOLS",
    "CheckCommandInput",
    "CheckFileContainsInput",
    "CheckFileExistsInput",
    "NoopInput",
    "ReadFilesInput",
    "RunCmdInput",
    "WriteFileInput",
    "default_registry",
]
