"""Scripted ChatModel for orchestration tests."""

from typing import Any

import anyio

from querydesk.orchestrator.llm import (
    FINISH_STOP,
    FINISH_TOOL_CALLS,
    ModelStep,
    ModelToolCall,
)


def text_step(text: str) -> ModelStep:
    """A final step that only produces text."""
    return ModelStep(
        text=text,
        finish_reason=FINISH_STOP,
        content=[{"type": "text", "text": text}],
    )


def tool_step(*calls: tuple[str, dict[str, Any]], text: str = "") -> ModelStep:
    """A step requesting the given (name, args) tool calls."""
    tool_calls = [
        ModelToolCall(id=f"toolu_{i}", name=name, input=args)
        for i, (name, args) in enumerate(calls)
    ]
    content: list[dict[str, Any]] = [{"type": "text", "text": text}] if text else []
    content += [
        {"type": "tool_use", "id": c.id, "name": c.name, "input": c.input}
        for c in tool_calls
    ]
    return ModelStep(
        text=text,
        tool_calls=tool_calls,
        finish_reason=FINISH_TOOL_CALLS,
        content=content,
    )


class ScriptedModel:
    """Returns the scripted steps in order, repeating the last one forever.

    Attributes:
        calls: (system, messages) snapshot for every step() call.
    """

    def __init__(
        self,
        steps: list[ModelStep],
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self._steps = steps
        self._error = error
        self._delay = delay
        self.calls: list[tuple[str, list[dict[str, Any]]]] = []

    async def step(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ModelStep:
        self.calls.append((system, list(messages)))
        if self._delay:
            await anyio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        index = min(len(self.calls) - 1, len(self._steps) - 1)
        return self._steps[index]

    def factory(self, api_key: str) -> "ScriptedModel":
        """Use as OrchestrationLoop(model_factory=...)."""
        return self
