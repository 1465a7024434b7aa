"""
Normalization of tool call results.

Servers answer ``tools/call`` in a handful of shapes. classify_result()
maps the raw value onto exactly one variant and render_result() turns
that variant into the plain string an agent sees.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class ContentResult:
    """``{"content": [...]}``, the standard MCP shape."""
    items: list[Any]
    is_error: bool = False


@dataclass(frozen=True)
class TextResult:
    """``{"text": "..."}``"""
    text: str


@dataclass(frozen=True)
class DataResult:
    """``{"data": ...}``"""
    data: Any


@dataclass(frozen=True)
class FallbackResult:
    """Anything else, rendered as-is."""
    value: Any


ToolResult = Union[ContentResult, TextResult, DataResult, FallbackResult]


def classify_result(raw: Any) -> ToolResult:
    if isinstance(raw, dict):
        if raw.get("content") is not None:
            content = raw["content"]
            items = content if isinstance(content, list) else [content]
            return ContentResult(items=items, is_error=bool(raw.get("isError")))
        if raw.get("text") is not None:
            return TextResult(text=str(raw["text"]))
        if raw.get("data") is not None:
            return DataResult(data=raw["data"])
    return FallbackResult(value=raw)


def render_result(result: ToolResult) -> str:
    if isinstance(result, ContentResult):
        text = "\n".join(_render_item(item) for item in result.items)
        return f"Error: {text}" if result.is_error else text
    if isinstance(result, TextResult):
        return result.text
    if isinstance(result, DataResult):
        return _dumps(result.data)
    if isinstance(result.value, str):
        return result.value
    if result.value is None:
        return ""
    return _dumps(result.value)


def normalize_result(raw: Any) -> str:
    """Classify and render in one step."""
    return render_result(classify_result(raw))


def _render_item(item: Any) -> str:
    if isinstance(item, dict):
        text = item.get("text")
        if isinstance(text, str):
            return text
        return json.dumps(item, default=str)
    return str(item)


def _dumps(value: Any) -> str:
    return json.dumps(value, indent=2, default=str)
