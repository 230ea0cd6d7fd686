"""Tool result extraction.

Tool servers answer in several shapes: a list of content parts, a bare
string, or a structured object that may carry an ``error`` key. The shape
is resolved once, here, into a ToolResult so nothing downstream re-parses
raw payloads.
"""

import json
from dataclasses import dataclass, field
from typing import Any

NO_RESULT_TEXT = "No result"


@dataclass(frozen=True)
class ToolResult:
    """Extracted result of one tool invocation.

    Attributes:
        text: Text handed back to the model and shown to the client.
        is_error: True when the tool reported an error.
        raw: The payload as received, kept for logging and debugging.
    """

    text: str
    is_error: bool = False
    raw: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def error(cls, text: str, raw: Any = None) -> "ToolResult":
        return cls(text=text, is_error=True, raw=raw if raw is not None else text)


def _part_text(part: Any) -> str | None:
    """Text of a single content part (dict, object with .text, or str)."""
    if isinstance(part, str):
        return part
    if isinstance(part, dict):
        if isinstance(part.get("text"), str):
            return part["text"]
        if "value" in part:
            value = part["value"]
            return value if isinstance(value, str) else json.dumps(value, default=str)
        return None
    text = getattr(part, "text", None)
    return text if isinstance(text, str) else None


def _has_error_key(value: Any) -> bool:
    return isinstance(value, dict) and "error" in value


def _string_reports_error(text: str) -> bool:
    """True when text is JSON for an object with a truthy ``error`` field."""
    stripped = text.strip()
    if not stripped.startswith("{"):
        return False
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return False
    return isinstance(parsed, dict) and bool(parsed.get("error"))


def extract_tool_result(raw: Any, *, is_error: bool = False) -> ToolResult:
    """Resolve a raw tool payload into a ToolResult.

    Args:
        raw: List of content parts, a bare string, or a structured object.
        is_error: Error flag already reported by the transport.

    Returns:
        ToolResult with the display text and the combined error flag.
    """
    if isinstance(raw, (list, tuple)):
        text = _part_text(raw[0]) if raw else None
        if text is None:
            text = NO_RESULT_TEXT
        error = is_error or _string_reports_error(text)
    elif isinstance(raw, str):
        text = raw
        error = is_error or _string_reports_error(raw)
    elif raw is None:
        text = NO_RESULT_TEXT
        error = is_error
    else:
        text = json.dumps(raw, default=str)
        error = is_error or _has_error_key(raw)

    return ToolResult(text=text, is_error=error, raw=raw)
