"""Tool catalog, built-in tools and the command runner."""

from .builtin import BUILTIN_TOOLS, default_registry
from .command import CommandResult, run_command
from .registry import (
    ToolContext,
    ToolError,
    ToolInput,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    render_tool_index,
)

__all__ = [
    "BUILTIN_TOOLS",
    "CommandResult",
    "ToolContext",
    "ToolError",
    "ToolInput",
    "ToolRegistry",
    "ToolResult",
    "ToolSpec",
    "default_registry",
    "render_tool_index",
    "run_command",
]
