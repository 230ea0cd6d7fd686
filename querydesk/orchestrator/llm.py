"""LLM adapter for the orchestration loop.

The loop only needs one operation from a model: given the system prompt,
the transcript and the tool schemas, produce the next step (text, tool
calls and a finish reason). ChatModel is that seam; AnthropicChatModel
implements it with the Messages API.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic
from anthropic import AsyncAnthropic

from querydesk.config import AgentConfig
from querydesk.errors import ProviderError
from querydesk.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

FINISH_TOOL_CALLS = "tool-calls"
FINISH_STOP = "stop"
FINISH_LENGTH = "length"
FINISH_OTHER = "other"

_STOP_REASON_MAP = {
    "tool_use": FINISH_TOOL_CALLS,
    "end_turn": FINISH_STOP,
    "stop_sequence": FINISH_STOP,
    "max_tokens": FINISH_LENGTH,
}

CONVERSATION_ROLES = ("user", "assistant")


def map_finish_reason(stop_reason: str | None) -> str:
    """Translate a provider stop reason into the stream's finish reason."""
    return _STOP_REASON_MAP.get(stop_reason or "", FINISH_OTHER)


@dataclass(frozen=True)
class ModelToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    input: dict[str, Any]


@dataclass
class ModelStep:
    """Output of one model call.

    Attributes:
        text: Concatenated text produced in this step ("" when none).
        tool_calls: Tool calls requested in this step, in order.
        finish_reason: One of the FINISH_* constants.
        content: Assistant content blocks, appended to the transcript when
            the loop continues.
    """

    text: str = ""
    tool_calls: list[ModelToolCall] = field(default_factory=list)
    finish_reason: str = FINISH_STOP
    content: list[dict[str, Any]] = field(default_factory=list)


class ChatModel(Protocol):
    async def step(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ModelStep:
        ...


def build_transcript(
    messages: list[dict[str, Any]],
    query: str,
) -> list[dict[str, Any]]:
    """Turn chat messages into a provider transcript ending on ``query``.

    Turns before the most recent user message are kept as context; anything
    after it is dropped. Only user and assistant turns are sent. ``system``
    and ``data`` messages never reach the model, so the system prompt stays
    the server's own. Consecutive turns of the same role are merged and the
    transcript starts with a user turn.

    Args:
        messages: Chat messages with ``role`` and ``content``.
        query: The active user question, sent as the final user turn.

    Returns:
        Messages for the provider.
    """
    user_positions = [i for i, m in enumerate(messages) if m.get("role") == "user"]
    history = messages[:user_positions[-1]] if user_positions else messages

    transcript: list[dict[str, Any]] = []
    for message in history:
        role = message.get("role")
        content = message.get("content") or ""
        if role not in CONVERSATION_ROLES or not content.strip():
            continue
        if not transcript and role != "user":
            continue
        _append_turn(transcript, role, content)
    _append_turn(transcript, "user", query)
    return transcript


def _append_turn(transcript: list[dict[str, Any]], role: str, content: str) -> None:
    if transcript and transcript[-1]["role"] == role:
        transcript[-1]["content"] += "\n\n" + content
    else:
        transcript.append({"role": role, "content": content})


class AnthropicChatModel:
    """ChatModel backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        config: AgentConfig | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        """Initialize the model.

        Args:
            api_key: Anthropic API key supplied with the request.
            config: Model name and sampling settings.
            client: Optional preconfigured client (tests).
        """
        self._config = config or AgentConfig()
        self._client = client or AsyncAnthropic(api_key=api_key)

    async def step(
        self,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ModelStep:
        """Run one model call.

        Raises:
            ProviderError: The API call failed.
        """
        try:
            response = await self._client.messages.create(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                system=system,
                messages=messages,
                tools=tools,
            )
        except anthropic.AuthenticationError as e:
            logger.warning("LLM provider rejected the API key")
            raise ProviderError("The LLM provider rejected the API key.") from e
        except anthropic.APIError as e:
            message = sanitize_error_message(getattr(e, "message", None) or str(e))
            logger.error("LLM call failed: %s", message)
            raise ProviderError(f"LLM call failed: {message}") from e

        text_parts: list[str] = []
        tool_calls: list[ModelToolCall] = []
        content: list[dict[str, Any]] = []
        for block in response.content:
            if block.type == "text":
                if not block.text:
                    continue
                text_parts.append(block.text)
                content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                args = block.input if isinstance(block.input, dict) else {}
                tool_calls.append(ModelToolCall(id=block.id, name=block.name, input=args))
                content.append({
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": args,
                })

        return ModelStep(
            text="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=map_finish_reason(response.stop_reason),
            content=content,
        )
