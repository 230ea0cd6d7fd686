"""Events emitted by the orchestration loop.

Each event serializes to one self-describing record tagged with ``type``.
Field names on the wire are camelCase to match what chat clients consume.

Event order for one step:
    text-update (if text) -> tool-execution (if tool calls) -> step-progress
and a run ends with exactly one conversation-summary or one error record.
"""

from dataclasses import dataclass, field
from typing import Any

TEXT_UPDATE = "text-update"
TOOL_EXECUTION = "tool-execution"
STEP_PROGRESS = "step-progress"
CONVERSATION_SUMMARY = "conversation-summary"
ERROR = "error"

STEP_INITIAL = "initial"
STEP_TOOL_RESULT = "tool-result"


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation requested by the model and its extracted result."""

    tool_name: str
    args: dict[str, Any]
    result: str
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "args": self.args,
            "result": self.result,
            "isError": self.is_error,
        }


@dataclass(frozen=True)
class TextUpdate:
    step_number: int
    content: str
    type: str = field(default=TEXT_UPDATE, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content, "stepNumber": self.step_number}


@dataclass(frozen=True)
class ToolExecution:
    step_number: int
    tool_calls: tuple[ToolCall, ...]
    finish_reason: str
    type: str = field(default=TOOL_EXECUTION, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "stepNumber": self.step_number,
            "toolCalls": [call.to_dict() for call in self.tool_calls],
            "finishReason": self.finish_reason,
        }


@dataclass(frozen=True)
class StepProgress:
    step_number: int
    step_type: str
    tools_used: tuple[str, ...]
    finish_reason: str
    type: str = field(default=STEP_PROGRESS, init=False)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tools_used)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "stepNumber": self.step_number,
            "stepType": self.step_type,
            "hasToolCalls": self.has_tool_calls,
            "toolsUsed": list(self.tools_used),
            "finishReason": self.finish_reason,
        }


@dataclass(frozen=True)
class ConversationSummary:
    step_count: int
    tool_call_count: int
    completed: bool = True
    type: str = field(default=CONVERSATION_SUMMARY, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "stepCount": self.step_count,
            "toolCallCount": self.tool_call_count,
            "completed": self.completed,
        }


@dataclass(frozen=True)
class ErrorEvent:
    error: str
    error_code: str
    type: str = field(default=ERROR, init=False)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "error": self.error, "errorCode": self.error_code}


OrchestrationEvent = TextUpdate | ToolExecution | StepProgress | ConversationSummary | ErrorEvent
