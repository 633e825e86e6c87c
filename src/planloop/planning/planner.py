"""Planning collaborator: every structured request the orchestrator sends to the model."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Collection, Dict, Generic, List, Literal, Optional, Sequence, TypeVar

from pydantic import AliasChoices, Field

from ..models.llm_client import LLMClient, LLMClientError, LLMExchange, LLMRequest
from ..plan.schema import (
    GateResult,
    Plan,
    PlanChangeRequest,
    PlanChangeReviewOutcome,
    Task,
    WireModel,
)
from ..plan.selectors import summarize_plan
from ..policy.agent_policy import AgentPolicy
from ..prompts import (
    PLAN_CHANGE_INSTRUCTIONS,
    PLAN_INSTRUCTIONS,
    REVIEW_INSTRUCTIONS,
    TOOL_CALL_INSTRUCTIONS,
    render_plan_change_prompt,
    render_plan_prompt,
    render_review_prompt,
    render_tool_calls_prompt,
)
from ..tools.registry import ToolRegistry, render_tool_index

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class PlannerOutputError(LLMClientError):
    """Raised when the planner cannot produce usable output after its corrective retry."""


class ToolCallItem(WireModel):
    """One proposed tool invocation.

    ``input`` is typed loosely so that structurally broken calls reach the
    tool-call gate and produce a correction hint instead of a schema error.
    """

    name: str = ""
    input: Any = None
    on_fail: Literal["stop", "continue"] = "stop"
    reason: Optional[str] = None


class ToolCallProposal(WireModel):
    tool_calls: List[ToolCallItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("tool_calls", "toolCalls", "actions"),
    )
    version: Optional[str] = None
    task_id: Optional[str] = None
    rationale: Optional[str] = None


@dataclass(slots=True)
class PlannerResult(Generic[T]):
    """Validated planner output plus the prompt and exchange that produced it."""

    value: T
    prompt: str
    exchange: LLMExchange

    @property
    def raw(self) -> str:
        return self.exchange.raw

    @property
    def response_id(self) -> Optional[str]:
        return self.exchange.response_id


def check_tool_calls(
    calls: Sequence[ToolCallItem],
    *,
    known_tools: Collection[str],
    max_calls: int,
) -> None:
    """Raise ``ValueError`` describing the first structural defect in ``calls``."""
    if len(calls) > max_calls:
        raise ValueError(f"too many tool calls: {len(calls)} > {max_calls}")
    for index, call in enumerate(calls, start=1):
        if not isinstance(call.name, str) or not call.name.strip():
            raise ValueError(f"tool call #{index} has an empty name")
        if call.name not in known_tools:
            raise ValueError(f"tool call #{index} uses unknown tool '{call.name}'")
        if call.input is None:
            raise ValueError(f"tool call #{index} ({call.name}): expected object, received undefined")
        if not isinstance(call.input, dict):
            raise ValueError(f"tool call #{index} ({call.name}): input must be a JSON object")


class Planner:
    """Wraps an :class:`LLMClient` with the prompts and checks of each planning request."""

    def __init__(self, client: LLMClient, registry: ToolRegistry) -> None:
        self._client = client
        self._registry = registry

    # ------------------------------------------------------------------ public

    def propose_plan(
        self,
        goal: str,
        policy: AgentPolicy,
        *,
        state_summary: Dict[str, Any],
        max_tool_calls_per_turn: int,
        previous_response_id: Optional[str] = None,
    ) -> PlannerResult[Plan]:
        prompt = render_plan_prompt(
            goal,
            policy=policy.model_dump(mode="json"),
            tool_index=render_tool_index(self._registry),
            state_summary=state_summary,
            planning_constraints={
                "max_steps": policy.budgets.max_steps,
                "max_tool_calls_per_turn": max_tool_calls_per_turn,
                "acceptance_locked": policy.acceptance.locked,
                "tech_stack_locked": policy.tech_stack_locked,
            },
        )
        request = LLMRequest(
            prompt=prompt,
            response_model=Plan,
            system_prompt=PLAN_INSTRUCTIONS,
            metadata={"kind": "plan", "goal": goal},
            previous_response_id=previous_response_id,
        )
        return self._invoke(request)

    def propose_tool_calls(
        self,
        task: Task,
        plan: Plan,
        *,
        completed: Collection[str],
        recent_failures: Sequence[str],
        max_calls: int,
        previous_response_id: Optional[str] = None,
    ) -> PlannerResult[List[ToolCallItem]]:
        known = set(self._registry.names())
        prompt = render_tool_calls_prompt(
            task=task.model_dump(mode="json"),
            plan_summary=summarize_plan(plan),
            completed=list(completed),
            recent_failures=recent_failures,
            tool_index=render_tool_index(self._registry),
            max_calls=max_calls,
        )

        def _validate(proposal: ToolCallProposal) -> None:
            check_tool_calls(proposal.tool_calls, known_tools=known, max_calls=max_calls)

        request = LLMRequest(
            prompt=prompt,
            response_model=ToolCallProposal,
            system_prompt=TOOL_CALL_INSTRUCTIONS,
            metadata={"kind": "tool_calls", "task_id": task.id},
            previous_response_id=previous_response_id,
            validator=_validate,
        )
        result = self._invoke(request)
        calls = list(result.value.tool_calls)[:max_calls]
        return PlannerResult(value=calls, prompt=result.prompt, exchange=result.exchange)

    def propose_plan_change(
        self,
        *,
        goal: str,
        plan: Plan,
        policy: AgentPolicy,
        failed_task_id: str,
        failures: Sequence[str],
        state_summary: Dict[str, Any],
        previous_response_id: Optional[str] = None,
    ) -> PlannerResult[Any]:
        prompt = render_plan_change_prompt(
            goal=goal,
            current_plan=plan.model_dump(mode="json"),
            policy=policy.model_dump(mode="json"),
            failed_task_id=failed_task_id,
            failures=failures,
            state_summary=state_summary,
        )
        request: LLMRequest[Any] = LLMRequest(
            prompt=prompt,
            response_model=PlanChangeRequest,  # type: ignore[arg-type]
            system_prompt=PLAN_CHANGE_INSTRUCTIONS,
            metadata={"kind": "plan_change", "task_id": failed_task_id},
            previous_response_id=previous_response_id,
        )
        return self._invoke(request)

    def interpret_review(
        self,
        *,
        request: Any,
        gate_result: GateResult,
        policy: AgentPolicy,
        feedback: str,
        previous_response_id: Optional[str] = None,
    ) -> PlannerResult[PlanChangeReviewOutcome]:
        prompt = render_review_prompt(
            gate_result=gate_result.model_dump(mode="json"),
            policy_summary=policy.summary(),
            request=request.model_dump(mode="json"),
            feedback=feedback,
        )
        llm_request = LLMRequest(
            prompt=prompt,
            response_model=PlanChangeReviewOutcome,
            system_prompt=REVIEW_INSTRUCTIONS,
            metadata={"kind": "review"},
            previous_response_id=previous_response_id,
        )
        return self._invoke(llm_request)

    # ------------------------------------------------------------------ helpers

    def _invoke(self, request: LLMRequest[T]) -> PlannerResult[T]:
        try:
            value, exchange = self._client.invoke_structured(request)
        except PlannerOutputError:
            raise
        except LLMClientError as error:
            LOGGER.warning("Planner request %s failed: %s", request.metadata.get("kind"), error)
            raise PlannerOutputError(str(error)) from error
        return PlannerResult(value=value, prompt=request.prompt, exchange=exchange)


__all__ = [
    "Planner",
    "PlannerOutputError",
    "PlannerResult",
    "ToolCallItem",
    "ToolCallProposal",
    "check_tool_calls",
]
