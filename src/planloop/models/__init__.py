"""Convenience exports for planloop LLM client implementations."""

from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMExchange,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMTransportError,
    RawCompletion,
)
from .offline import OfflineLLMClient
from .responses import ResponsesClient

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMExchange",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMTransportError",
    "OfflineLLMClient",
    "RawCompletion",
    "ResponsesClient",
]
