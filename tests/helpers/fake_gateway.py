"""In-memory tool gateway for orchestration tests.

Counts open/close calls and records every invocation so tests can assert
on resource discipline without spawning a tool server.
"""

from dataclasses import dataclass, field
from typing import Any

import anyio

from querydesk.services.tool_gateway import TOOL_SCHEMAS
from querydesk.services.tool_results import ToolResult, extract_tool_result


@dataclass
class InvocationRecord:
    """Record of a tool call made through the fake handle."""

    tool_name: str
    arguments: dict[str, Any]


class FakeToolHandle:
    """ToolHandle that answers from canned raw results."""

    def __init__(self, gateway: "FakeGateway") -> None:
        self._gateway = gateway

    def list_tools(self) -> dict[str, dict[str, Any]]:
        return TOOL_SCHEMAS

    async def invoke(self, name: str, args: dict[str, Any]) -> ToolResult:
        self._gateway.invocations.append(InvocationRecord(name, dict(args)))
        raw = self._gateway.responses.get(name, [{"type": "text", "text": "[]"}])
        return extract_tool_result(raw)

    async def close(self) -> None:
        self._gateway.close_count += 1
        if self._gateway.close_delay:
            await anyio.sleep(self._gateway.close_delay)
        self._gateway.close_finished += 1


@dataclass
class FakeGateway:
    """ToolGateway double.

    Attributes:
        responses: tool name -> raw result returned on invoke.
        open_error: Exception raised by open() when set.
        close_delay: Seconds each close() takes before it finishes.
    """

    responses: dict[str, Any] = field(default_factory=dict)
    open_error: Exception | None = None
    close_delay: float = 0.0
    open_count: int = 0
    close_count: int = 0
    close_finished: int = 0
    connection_strings: list[str] = field(default_factory=list)
    invocations: list[InvocationRecord] = field(default_factory=list)

    async def open(self, connection_string: str) -> FakeToolHandle:
        self.open_count += 1
        self.connection_strings.append(connection_string)
        if self.open_error is not None:
            raise self.open_error
        return FakeToolHandle(self)

    def factory(self, instance_ref: str) -> "FakeGateway":
        """Use as OrchestrationLoop(gateway_factory=...)."""
        return self
