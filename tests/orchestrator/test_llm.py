"""Tests for the LLM adapter and transcript building."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from querydesk.config import AgentConfig
from querydesk.errors import ProviderError
from querydesk.orchestrator.llm import (
    FINISH_LENGTH,
    FINISH_OTHER,
    FINISH_STOP,
    FINISH_TOOL_CALLS,
    AnthropicChatModel,
    build_transcript,
    map_finish_reason,
)

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


@pytest.mark.parametrize("stop_reason,expected", [
    ("tool_use", FINISH_TOOL_CALLS),
    ("end_turn", FINISH_STOP),
    ("stop_sequence", FINISH_STOP),
    ("max_tokens", FINISH_LENGTH),
    ("refusal", FINISH_OTHER),
    (None, FINISH_OTHER),
])
def test_map_finish_reason(stop_reason, expected):
    assert map_finish_reason(stop_reason) == expected


class TestBuildTranscript:
    def test_single_question(self):
        assert build_transcript([{"role": "user", "content": "hi"}], "hi") == [
            {"role": "user", "content": "hi"},
        ]

    def test_system_and_data_messages_dropped(self):
        transcript = build_transcript(
            [
                {"role": "system", "content": "Amounts are in cents."},
                {"role": "user", "content": "hi"},
                {"role": "data", "content": "{}"},
            ],
            "hi",
        )
        assert transcript == [{"role": "user", "content": "hi"}]

    def test_ends_on_active_query(self):
        """Turns after the latest user message are not sent."""
        transcript = build_transcript(
            [
                {"role": "user", "content": "How many orders?"},
                {"role": "assistant", "content": "Let me check"},
            ],
            "How many orders?",
        )
        assert transcript == [{"role": "user", "content": "How many orders?"}]

    def test_earlier_turns_kept_as_context(self):
        transcript = build_transcript(
            [
                {"role": "user", "content": "List tables"},
                {"role": "assistant", "content": "orders, users"},
                {"role": "user", "content": "Count users"},
            ],
            "Count users",
        )
        assert transcript == [
            {"role": "user", "content": "List tables"},
            {"role": "assistant", "content": "orders, users"},
            {"role": "user", "content": "Count users"},
        ]

    def test_leading_assistant_skipped(self):
        transcript = build_transcript(
            [{"role": "assistant", "content": "Welcome!"}, {"role": "user", "content": "hi"}],
            "hi",
        )
        assert transcript == [{"role": "user", "content": "hi"}]

    def test_consecutive_roles_merged(self):
        transcript = build_transcript(
            [
                {"role": "user", "content": "first"},
                {"role": "user", "content": "second"},
                {"role": "assistant", "content": "answer"},
                {"role": "user", "content": "   "},
                {"role": "user", "content": "third"},
            ],
            "third",
        )
        assert transcript == [
            {"role": "user", "content": "first\n\nsecond"},
            {"role": "assistant", "content": "answer"},
            {"role": "user", "content": "third"},
        ]

    def test_input_not_mutated(self):
        messages = [{"role": "user", "content": "a"}, {"role": "user", "content": "b"}]
        build_transcript(messages, "b")
        assert messages[0]["content"] == "a"


def _response(*blocks, stop_reason="end_turn"):
    return SimpleNamespace(content=list(blocks), stop_reason=stop_reason)


def _model(create: AsyncMock) -> AnthropicChatModel:
    client = MagicMock()
    client.messages.create = create
    return AnthropicChatModel("sk-ant-test", AgentConfig(model="test-model", max_tokens=100), client=client)


class TestAnthropicChatModel:
    @pytest.mark.asyncio
    async def test_text_and_tool_use(self):
        create = AsyncMock(return_value=_response(
            SimpleNamespace(type="text", text="Checking tables."),
            SimpleNamespace(type="tool_use", id="toolu_1", name="list_tables", input={"project_id": "p"}),
            stop_reason="tool_use",
        ))
        step = await _model(create).step("SYSTEM", [{"role": "user", "content": "hi"}], [{"name": "list_tables"}])

        assert step.text == "Checking tables."
        assert step.finish_reason == FINISH_TOOL_CALLS
        assert step.tool_calls[0].name == "list_tables"
        assert step.tool_calls[0].input == {"project_id": "p"}
        assert step.content[1] == {
            "type": "tool_use", "id": "toolu_1", "name": "list_tables", "input": {"project_id": "p"},
        }
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["system"] == "SYSTEM"
        assert kwargs["tools"] == [{"name": "list_tables"}]

    @pytest.mark.asyncio
    async def test_empty_text_blocks_skipped(self):
        create = AsyncMock(return_value=_response(SimpleNamespace(type="text", text="")))
        step = await _model(create).step("S", [], [])
        assert step.text == ""
        assert step.content == []

    @pytest.mark.asyncio
    async def test_authentication_error(self):
        error = anthropic.AuthenticationError(
            "invalid x-api-key",
            response=httpx.Response(401, request=_REQUEST),
            body=None,
        )
        with pytest.raises(ProviderError, match="rejected the API key"):
            await _model(AsyncMock(side_effect=error)).step("S", [], [])

    @pytest.mark.asyncio
    async def test_connection_error(self):
        error = anthropic.APIConnectionError(request=_REQUEST)
        with pytest.raises(ProviderError) as exc_info:
            await _model(AsyncMock(side_effect=error)).step("S", [], [])
        assert exc_info.value.code == "E-4001"
        assert exc_info.value.message.startswith("LLM call failed:")
