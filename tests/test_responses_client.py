from __future__ import annotations

import json

import pytest

from planloop.models.llm_client import LLMRequest
from planloop.models.responses import ResponsesClient
from planloop.plan.schema import Plan


def _plan_body() -> dict:
    return {
        "version": "v1",
        "goal": "demo",
        "milestones": [],
        "tasks": [
            {
                "id": "t1",
                "title": "Example task",
                "success_criteria": [{"type": "tool_result", "tool_name": "noop"}],
            }
        ],
    }


def _make_response_payload() -> str:
    response = {
        "id": "resp_mock",
        "object": "response",
        "status": "completed",
        "output": [
            {
                "id": "msg_mock",
                "type": "message",
                "role": "assistant",
                "content": [
                    {
                        "type": "output_text",
                        "text": json.dumps(_plan_body()),
                    }
                ],
            }
        ],
    }
    return json.dumps(response)


def test_responses_client_extracts_json_and_response_id() -> None:
    seen = []

    def transport(payload: dict) -> str:
        seen.append(payload)
        return _make_response_payload()

    client = ResponsesClient(model="gpt-5-mini", transport=transport)
    request = LLMRequest(prompt="{}", response_model=Plan, previous_response_id="resp_prev")

    plan, exchange = client.invoke_structured(request)

    assert plan.task_ids() == ["t1"]
    assert exchange.response_id == "resp_mock"
    assert exchange.previous_response_id == "resp_prev"
    assert seen[0]["previous_response_id"] == "resp_prev"
    assert seen[0]["model"] == "gpt-5-mini"


def test_responses_client_extracts_from_output_json_block() -> None:
    def transport(_: dict) -> str:
        response = {
            "output": [
                {
                    "id": "msg_json",
                    "type": "message",
                    "role": "assistant",
                    "content": [
                        {
                            "type": "output_json",
                            "json": _plan_body(),
                        }
                    ],
                }
            ]
        }
        return json.dumps(response)

    client = ResponsesClient(model="gpt-5-mini", transport=transport)

    value, exchange = client.invoke_structured(LLMRequest(prompt="{}", response_model=Plan))

    assert value.goal == "demo"
    assert exchange.response_id is None


def test_default_transport_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PLANLOOP_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        ResponsesClient()
