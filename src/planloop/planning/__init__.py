"""Planning collaborator built on the structured LLM client."""

from .planner import Planner, PlannerOutputError, PlannerResult, ToolCallItem, ToolCallProposal, check_tool_calls

__all__ = [
    "Planner",
    "PlannerOutputError",
    "PlannerResult",
    "ToolCallItem",
    "ToolCallProposal",
    "check_tool_calls",
]
