"""Stdio session with a database tool server speaking MCP.

One MCPClient owns one server subprocess. connect() spawns it and waits for
the initialize handshake, disconnect() ends the session and reaps the
process. Tool calls return the text parts of the result; a result flagged
as an error is retried while its text looks transient (rate limits,
timeouts, dropped Postgres connections).

Example:
    params = StdioServerParameters(
        command="npx",
        args=["-y", "@modelcontextprotocol/server-postgres", conn],
    )
    async with MCPClient(params) as client:
        parts = await client.call_tool("query", {"sql": "SELECT 1"})
"""

import asyncio
import logging
import time
from contextlib import AsyncExitStack
from typing import Any, Callable, Iterator

from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.types import TextContent

from querydesk.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

NOT_CONNECTED = "no open session, call connect() first"


class MCPConnectionError(Exception):
    """The tool server could not be started or did not finish the handshake.

    Attributes:
        command: Launcher command of the server.
        reason: Sanitized failure description.
    """

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Tool server '{command}' unavailable: {reason}")


class MCPToolError(Exception):
    """A tool call kept returning an error result.

    Attributes:
        tool_name: Server-side tool that was called.
        error_text: Text of the last error result.
    """

    def __init__(self, tool_name: str, error_text: str) -> None:
        self.tool_name = tool_name
        self.error_text = error_text
        super().__init__(f"Tool '{tool_name}' returned an error: {error_text}")


_TRANSIENT_MARKERS = (
    "429",
    "502",
    "503",
    "rate limit",
    "timeout",
    "connection terminated",
)


def _default_is_retryable(error_text: str) -> bool:
    text = error_text.lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def _texts(result: Any) -> Iterator[str]:
    for item in result.content:
        if isinstance(item, TextContent):
            yield item.text


class MCPClient:
    """Client side of a single stdio tool server session."""

    def __init__(
        self,
        server_params: StdioServerParameters,
        max_retries: int = 1,
        base_delay: float = 0.5,
        handshake_timeout: float = 60.0,
        is_retryable: Callable[[str], bool] | None = None,
    ) -> None:
        """Configure the session without spawning anything yet.

        Args:
            server_params: Launcher command and arguments for the server.
            max_retries: Extra attempts for an error result judged transient.
            base_delay: First backoff delay in seconds, doubled per attempt.
            handshake_timeout: Seconds allowed for initialize to complete.
            is_retryable: Classifies error text as transient. Defaults to
                matching HTTP 429/502/503, rate limits, timeouts and
                terminated connections.
        """
        self._server_params = server_params
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._handshake_timeout = handshake_timeout
        self._is_retryable = is_retryable or _default_is_retryable
        self._session: ClientSession | None = None
        self._stack: AsyncExitStack | None = None

    @property
    def command(self) -> str:
        return self._server_params.command

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    async def __aenter__(self) -> "MCPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Spawn the server and complete the handshake. No-op when connected.

        Raises:
            MCPConnectionError: Spawn failed, the session could not be
                opened, or initialize did not answer in time.
        """
        if self._session is not None:
            return

        started = time.perf_counter()
        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await stack.enter_async_context(
                stdio_client(self._server_params)
            )
            session = await stack.enter_async_context(
                ClientSession(read_stream, write_stream)
            )
            await asyncio.wait_for(session.initialize(), timeout=self._handshake_timeout)
        except Exception as e:
            await self._close_stack(stack)
            if isinstance(e, asyncio.TimeoutError):
                reason = "handshake timed out"
            else:
                reason = sanitize_error_message(str(e)) or type(e).__name__
            raise MCPConnectionError(command=self.command, reason=reason) from e

        self._stack = stack
        self._session = session
        logger.info(
            "Tool server '%s' ready in %dms",
            self.command, int((time.perf_counter() - started) * 1000),
        )

    async def disconnect(self) -> None:
        """End the session and stop the server process. Safe to call twice."""
        stack, self._stack, self._session = self._stack, None, None
        if stack is not None:
            await self._close_stack(stack)

    @staticmethod
    async def _close_stack(stack: AsyncExitStack) -> None:
        try:
            await stack.aclose()
        except Exception:
            logger.debug("Tool server shutdown raised", exc_info=True)

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise MCPConnectionError(command=self.command, reason=NOT_CONNECTED)
        return self._session

    async def list_tool_names(self) -> list[str]:
        """Names of the tools the server advertises."""
        listing = await self._require_session().list_tools()
        return [tool.name for tool in listing.tools]

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Call a server tool, retrying transient error results.

        Args:
            name: Server-side tool name.
            arguments: Tool arguments.

        Returns:
            The result's text parts as ``[{"type": "text", "text": ...}]``.
            Non-text parts are dropped.

        Raises:
            MCPToolError: The last attempt still returned an error result.
            MCPConnectionError: Not connected.
        """
        session = self._require_session()
        attempts = self._max_retries + 1
        error_text = ""

        for attempt in range(1, attempts + 1):
            started = time.perf_counter()
            result = await session.call_tool(name, arguments)
            if not result.isError:
                logger.debug(
                    "Tool '%s' answered in %dms",
                    name, int((time.perf_counter() - started) * 1000),
                )
                return [{"type": "text", "text": text} for text in _texts(result)]

            error_text = next(_texts(result), "")
            if attempt == attempts or not self._is_retryable(error_text):
                break

            delay = self._base_delay * 2 ** (attempt - 1)
            logger.warning(
                "Tool '%s' attempt %d/%d hit a transient error, retrying in %.1fs: %s",
                name, attempt, attempts, delay,
                sanitize_error_message(error_text, max_length=200),
            )
            await asyncio.sleep(delay)

        raise MCPToolError(tool_name=name, error_text=error_text)
