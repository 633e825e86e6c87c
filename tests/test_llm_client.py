from __future__ import annotations

from typing import Any, Dict, List, Union

import pytest
from pydantic import BaseModel

from planloop.models.llm_client import (
    LLMClient,
    LLMRequest,
    LLMRetryError,
    LLMTransportError,
    RawCompletion,
)


class Echo(BaseModel):
    message: str
    count: int = 0


class QueueClient(LLMClient):
    def __init__(self, replies: List[Union[str, Exception, RawCompletion]]) -> None:
        super().__init__("queue-model", max_attempts=2, retry_delay=0.0)
        self._replies = list(replies)
        self.payloads: List[Dict[str, Any]] = []

    def _raw_invoke(self, payload: Dict[str, Any]) -> Union[str, RawCompletion]:
        self.payloads.append(payload)
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _texts(payload: Dict[str, Any]) -> List[str]:
    return [message["content"][0]["text"] for message in payload["input"]]


def test_fenced_and_sloppy_json_is_accepted() -> None:
    client = QueueClient(['```json\n{"message": "hi", "count": 2,}\n```'])

    result = client.invoke(LLMRequest(prompt="say hi", response_model=Echo))

    assert result == Echo(message="hi", count=2)


def test_invalid_output_is_retried_with_correction_hint() -> None:
    client = QueueClient(["not json at all", RawCompletion('{"message": "ok"}', response_id="resp_9")])

    value, exchange = client.invoke_structured(
        LLMRequest(prompt="say ok", response_model=Echo, system_prompt="be terse")
    )

    assert value.message == "ok"
    assert exchange.attempts == 2
    assert exchange.response_id == "resp_9"
    first, second = client.payloads
    assert _texts(first) == ["be terse", "say ok"]
    assert _texts(second)[:2] == ["be terse", "say ok"]
    assert _texts(second)[2].startswith("Invalid JSON/schema: Model returned invalid JSON")
    assert _texts(second)[2].endswith("Return STRICT JSON only, no markdown.")


def test_retry_budget_exhaustion_raises() -> None:
    client = QueueClient(['{"count": 1}', LLMTransportError("connection reset")])

    with pytest.raises(LLMRetryError) as excinfo:
        client.invoke(LLMRequest(prompt="x", response_model=Echo))

    assert str(excinfo.value) == "LLM output invalid after retry: connection reset"
    assert "message: Field required" in _texts(client.payloads[1])[-1]


def test_validator_rejection_counts_as_failed_attempt() -> None:
    client = QueueClient(['{"message": ""}', '{"message": "filled"}'])

    def _non_empty(value: Echo) -> None:
        if not value.message:
            raise ValueError("message must not be empty")

    value = client.invoke(LLMRequest(prompt="x", response_model=Echo, validator=_non_empty))

    assert value.message == "filled"
    assert "message must not be empty" in _texts(client.payloads[1])[-1]


def test_payload_carries_continuation_and_metadata() -> None:
    request = LLMRequest(
        prompt="x",
        response_model=Echo,
        metadata={"kind": "plan", "detail": {"b": 1, "a": "z" * 600}},
        previous_response_id="resp_1",
    )

    payload = request.to_payload("default-model")

    assert payload["model"] == "default-model"
    assert payload["previous_response_id"] == "resp_1"
    assert payload["metadata"]["kind"] == "plan"
    assert len(payload["metadata"]["detail"]) == 512
    assert payload["metadata"]["detail"].endswith("...")
    assert payload["text"]["format"]["name"] == "Echo"
    assert "previous_response_id" not in LLMRequest(prompt="x", response_model=Echo).to_payload("m")
