"""Tool catalog primitives: specs, results, run context and the registry."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, Literal, Optional, Sequence, Type

from pydantic import BaseModel, ConfigDict

from .command import DEFAULT_TIMEOUT_SECONDS, CommandResult, run_command

BaseRootName = Literal["appDir", "outDir"]
SideEffects = Literal["none", "fs", "exec", "llm"]
ToolCategory = Literal["high", "low"]

CommandRunner = Callable[..., CommandResult]


class ToolInput(BaseModel):
    """Base class for tool input models; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


@dataclass(slots=True)
class ToolError:
    code: str
    message: str
    detail: Optional[str] = None


@dataclass(slots=True)
class ToolResult:
    """Outcome of one tool invocation."""

    ok: bool
    data: Any = None
    error: Optional[ToolError] = None
    touched_paths: list[str] = field(default_factory=list)
    patch_paths: list[str] = field(default_factory=list)

    @classmethod
    def success(cls, data: Any = None, *, touched_paths: Iterable[str] = (), patch_paths: Iterable[str] = ()) -> "ToolResult":
        return cls(ok=True, data=data, touched_paths=list(touched_paths), patch_paths=list(patch_paths))

    @classmethod
    def failure(cls, code: str, message: str, *, detail: Optional[str] = None, data: Any = None) -> "ToolResult":
        return cls(ok=False, data=data, error=ToolError(code=code, message=message, detail=detail))


@dataclass(slots=True)
class ToolContext:
    """Run-scoped environment handed to every tool."""

    base_roots: Dict[str, Optional[Path]] = field(default_factory=dict)
    allowed_commands: list[str] = field(default_factory=list)
    command_timeout: float = DEFAULT_TIMEOUT_SECONDS
    command_runner: CommandRunner = run_command
    patch_paths: list[str] = field(default_factory=list)
    touched_paths: list[str] = field(default_factory=list)

    def base_root(self, name: str) -> Optional[Path]:
        return self.base_roots.get(name)

    def command_allowed(self, cmd: str) -> bool:
        return Path(cmd).name in set(self.allowed_commands)

    def run_command(self, cmd: str, args: Sequence[str], cwd: Path | str) -> CommandResult:
        return self.command_runner(cmd, list(args), cwd, timeout=self.command_timeout)

    def default_cwd(self) -> Path:
        return self.base_root("appDir") or self.base_root("outDir") or Path.cwd()


def base_root_missing(name: str) -> ToolResult:
    return ToolResult.failure("CHECK_BASE_MISSING", f"Base root '{name}' is not available")


def command_blocked(cmd: str) -> ToolResult:
    return ToolResult.failure("COMMAND_BLOCKED", f"command '{cmd}' is blocked by policy")


@dataclass(slots=True)
class ToolSpec:
    """Registry entry describing one invocable tool."""

    name: str
    description: str
    input_model: Type[ToolInput]
    run: Callable[[Any, ToolContext], ToolResult]
    category: ToolCategory = "low"
    capabilities: tuple[str, ...] = ()
    side_effects: SideEffects = "none"

    def input_json_schema(self) -> Dict[str, Any]:
        return self.input_model.model_json_schema()


class ToolRegistry:
    """Name-addressed tool catalog; iteration order is sorted by name."""

    def __init__(self, tools: Iterable[ToolSpec] = ()) -> None:
        self._tools: Dict[str, ToolSpec] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolSpec) -> None:
        if tool.name in self._tools:
            raise ValueError(f"tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolSpec]:
        return iter(self._tools[name] for name in self.names())

    def __len__(self) -> int:
        return len(self._tools)


# ------------------------------------------------------------------ tool index


def _stable_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def schema_fingerprint(schema: Any) -> str:
    """Short content hash of a JSON schema, stable across key ordering."""
    digest = hashlib.sha256(_stable_dumps(schema).encode("utf-8")).hexdigest()
    return f"sha256:{digest[:16]}"


def tool_index_rows(registry: ToolRegistry) -> list[Dict[str, Any]]:
    return [
        {
            "name": tool.name,
            "category": tool.category,
            "summary": tool.description,
            "safety": {"side_effects": tool.side_effects},
            "input_schema": tool.input_json_schema(),
            "input_schema_fingerprint": schema_fingerprint(tool.input_json_schema()),
        }
        for tool in registry
    ]


def render_tool_index(registry: ToolRegistry) -> str:
    """Render the catalog as the JSON block embedded in planner prompts."""
    return json.dumps(tool_index_rows(registry), indent=2)


__all__ = [
    "BaseRootName",
    "ToolContext",
    "ToolError",
    "ToolInput",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "base_root_missing",
    "command_blocked",
    "render_tool_index",
    "schema_fingerprint",
    "tool_index_rows",
]
