"""Typed client base class shared by all language-model integrations."""

from __future__ import annotations

import ast
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Optional, Type, TypeVar, Union

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

from ..utils.issues import summarize_validation_error

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMExchange",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "RawCompletion",
    "correction_hint",
]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class LLMClientError(RuntimeError):
    """Base error raised for structured LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns payload that is not valid JSON."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting retries due to repeated validation failures."""


def correction_hint(message: str) -> str:
    """Follow-up instruction appended after an unusable response."""
    return f"Invalid JSON/schema: {message}. Return STRICT JSON only, no markdown."


@dataclass(slots=True)
class RawCompletion:
    """Text returned by a transport plus its continuation token, when any."""

    text: str
    response_id: Optional[str] = None


@dataclass(slots=True)
class LLMExchange:
    """Bookkeeping for one structured call, handed back with the parsed value."""

    raw: str
    response_id: Optional[str]
    previous_response_id: Optional[str]
    attempts: int
    data: Any = None


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """Typed request payload sent to an LLM.

    ``validator`` runs after schema validation and may raise ``ValueError`` to
    reject a structurally valid but semantically unusable response; the
    message is fed back to the model as a correction hint.
    """

    prompt: str
    response_model: Type[T]
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.0
    max_attempts: Optional[int] = None
    previous_response_id: Optional[str] = None
    validator: Optional[Callable[[T], None]] = None

    def to_payload(self, default_model: str, *, corrections: tuple[str, ...] = ()) -> Dict[str, Any]:
        """Render a transport-ready payload for the JSON responses API."""

        def _message(role: str, text: str) -> Dict[str, Any]:
            return {"role": role, "content": [{"type": "input_text", "text": text}]}

        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        messages.append(_message("user", self.prompt))
        for hint in corrections:
            messages.append(_message("user", hint))

        schema_name = getattr(self.response_model, "__name__", "planloop_response")
        try:
            schema = TypeAdapter(self.response_model).json_schema()
        except Exception:  # pragma: no cover
            schema = {"type": "object"}

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": messages,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": False,
                }
            },
        }
        if self.previous_response_id:
            payload["previous_response_id"] = self.previous_response_id
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        if self.metadata:
            max_metadata_len = 512
            serialised_metadata: Dict[str, Any] = {}
            for key, value in self.metadata.items():
                formatted = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised_metadata[key] = formatted
            payload["metadata"] = serialised_metadata
        return payload


class LLMClient:
    """High-level helper that enforces JSON responses and schema validation.

    A failed attempt (transport error, unparsable JSON, schema mismatch or a
    rejected ``validator`` check) is retried with a correction hint appended
    to the conversation.  The default budget is one corrective retry.
    """

    def __init__(self, model: str, *, max_attempts: int = 2, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def invoke(self, request: LLMRequest[T]) -> T:
        """Invoke the underlying model and return a validated response."""
        result, _ = self.invoke_structured(request)
        return result

    def invoke_structured(self, request: LLMRequest[T]) -> tuple[T, LLMExchange]:
        """Invoke the model and return both the structured response and the exchange record."""
        attempts = request.max_attempts or self._max_attempts
        adapter = TypeAdapter(request.response_model)
        corrections: list[str] = []
        last_error: Optional[Exception] = None
        last_message = "no response"

        for attempt in range(1, attempts + 1):
            payload = request.to_payload(self._model, corrections=tuple(corrections))
            raw_text = ""
            try:
                completion = self._as_completion(self._raw_invoke(payload))
                raw_text = completion.text
                data = self._parse_json(raw_text)
                validated = adapter.validate_python(data)
                if request.validator is not None:
                    request.validator(validated)
                exchange = LLMExchange(
                    raw=raw_text,
                    response_id=completion.response_id,
                    previous_response_id=request.previous_response_id,
                    attempts=attempt,
                    data=data,
                )
                return validated, exchange
            except ValidationError as error:
                last_error = error
                last_message = summarize_validation_error(error)
            except (LLMResponseFormatError, LLMTransportError, ValueError) as error:
                last_error = error
                last_message = str(error)

            LOGGER.warning(
                "Attempt %d/%d for %s rejected: %s",
                attempt,
                attempts,
                getattr(request.response_model, "__name__", "response"),
                last_message,
            )
            if attempt >= attempts:
                break
            corrections.append(correction_hint(last_message))
            if self._retry_delay:
                time.sleep(self._retry_delay)

        raise LLMRetryError(f"LLM output invalid after retry: {last_message}") from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> Union[str, RawCompletion]:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def _as_completion(value: Union[str, RawCompletion]) -> RawCompletion:
        if isinstance(value, RawCompletion):
            return value
        return RawCompletion(text=value)

    @staticmethod
    def _parse_json(raw_response: str) -> Any:
        """Parse JSON payloads and normalize errors."""
        text = raw_response.strip()
        if not text:
            raise LLMResponseFormatError("Model returned an empty response.")

        text = _normalise_json_string(text)
        candidates = [text]
        repaired = _repair_json_payload(text)
        if repaired and repaired not in candidates:
            candidates.append(_normalise_json_string(repaired))

        for candidate in candidates:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                pythonic = _coerce_python_literal(candidate)
                if pythonic is not None:
                    return pythonic

        snippet = text[:200]
        raise LLMResponseFormatError(f"Model returned invalid JSON: {snippet}")


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if not payload.startswith("```"):
        return payload
    fence_header_match = re.match(r"```(?:json)?", payload[:10], re.IGNORECASE)
    if not fence_header_match:
        return payload
    fence_end = payload.find("```", len(fence_header_match.group(0)))
    if fence_end == -1:
        return payload
    content_start = payload.find("\n", len(fence_header_match.group(0)))
    if content_start == -1:
        return payload
    return payload[content_start + 1 : fence_end].strip()


def _normalise_json_string(payload: str) -> str:
    """Normalise common non-JSON characters emitted by models."""
    if not payload:
        return payload
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x2018: "'",
        0x2019: "'",
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    if not payload:
        return payload
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _repair_json_payload(raw: str) -> str | None:
    """Attempt to salvage the first JSON object embedded in noisy output."""
    stripped = _strip_code_fence(raw.strip())
    if not stripped:
        return None

    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        pass
    else:
        return stripped

    opening_idx = None
    expected: list[str] = []
    for index, char in enumerate(stripped):
        if char in "{[":
            if opening_idx is None:
                opening_idx = index
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected and opening_idx is not None:
                candidate = stripped[opening_idx : index + 1]
                return _strip_trailing_commas(candidate.strip())
    return None


def _coerce_python_literal(candidate: str) -> Any | None:
    """Fall back to Python literal parsing when JSON decoding fails."""
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError):
        return None
    return _normalise_literal(literal)


def _normalise_literal(value: Any) -> Any:
    """Convert Python literals into JSON-compatible structures recursively."""
    if isinstance(value, dict):
        return {str(key): _normalise_literal(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalise_literal(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
