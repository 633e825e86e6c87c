"""Helpers for turning validation errors into short, stable messages."""

from __future__ import annotations

from pydantic import ValidationError


def summarize_validation_error(error: ValidationError) -> str:
    """Render ``error`` as ``path: message`` pairs joined with ``; ``."""
    parts = []
    for issue in error.errors():
        location = ".".join(str(item) for item in issue.get("loc", ())) or "<root>"
        parts.append(f"{location}: {issue.get('msg', 'invalid')}")
    return "; ".join(parts)


def truncate_text(value: str, limit: int, *, marker: str = "...<truncated>") -> str:
    """Clamp ``value`` to ``limit`` characters, appending ``marker`` when cut."""
    if len(value) <= limit:
        return value
    return f"{value[:limit]}{marker}"


__all__ = ["summarize_validation_error", "truncate_text"]
