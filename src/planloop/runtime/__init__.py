"""Runtime: state, tool execution, retries, replanning and the orchestrator."""

from .events import AgentEvent, EventSink, EventType
from .orchestrator import Orchestrator, RunBudgets, RunResult, run_agent
from .review import AutoApproveReviewer, ConsoleReviewer, HumanReviewer, ReviewUnavailableError
from .state import AgentState, AgentStatus, ErrorKind

__all__ = [
    "AgentEvent",
    "AgentState",
    "AgentStatus",
    "AutoApproveReviewer",
    "ConsoleReviewer",
    "ErrorKind",
    "EventSink",
    "EventType",
    "HumanReviewer",
    "Orchestrator",
    "ReviewUnavailableError",
    "RunBudgets",
    "RunResult",
    "run_agent",
]
