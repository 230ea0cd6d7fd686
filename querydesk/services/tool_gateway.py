"""Tool gateway: database tools bound to one target database.

The gateway spawns ``@modelcontextprotocol/server-postgres`` over stdio for
the resolved connection string and exposes a fixed pair of tools to the
model:

    list_tables(project_id, schema="public")
    execute_sql(project_id, query)

Both run through the server's ``query`` tool. ``project_id`` must name the
instance the gateway was opened for; any other value is answered with an
error result, so one handle can only ever reach one database.

Every invocation failure comes back as a ToolResult with ``is_error=True``
rather than an exception, so the model can react to it within the loop.

Example:
    gateway = McpToolGateway(config.gateway, instance_ref="abcxyz")
    async with await gateway.open(connection_string) as handle:
        result = await handle.invoke("list_tables", {"project_id": "abcxyz"})
"""

import asyncio
import json
import logging
import re
import shutil
from typing import Any, Protocol

import sqlglot
from mcp import StdioServerParameters
from sqlglot import exp

from querydesk.config import GatewayConfig
from querydesk.errors import GatewayUnavailableError, LauncherNotFoundError
from querydesk.services.mcp_client import MCPClient, MCPConnectionError, MCPToolError
from querydesk.services.tool_results import ToolResult, extract_tool_result
from querydesk.utils.redaction import redact_for_logging, sanitize_error_message

logger = logging.getLogger(__name__)

LIST_TABLES = "list_tables"
EXECUTE_SQL = "execute_sql"
SERVER_QUERY_TOOL = "query"

TOOL_SCHEMAS: dict[str, dict[str, Any]] = {
    LIST_TABLES: {
        "description": (
            "List the tables in a schema of the connected project's database, "
            "with their columns and data types."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "project_id": {
                    "type": "string",
                    "description": "Project reference of the connected database.",
                },
                "schema": {
                    "type": "string",
                    "description": "Schema to list. Defaults to 'public'.",
                    "default": "public",
                },
            },
            "required": ["project_id"],
        },
    },
    EXECUTE_SQL: {
        "description": (
            "Execute a read-only SQL query against the connected project's "
            "database and return the resulting rows as JSON."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "project_id": {
                    "type": "string",
                    "description": "Project reference of the connected database.",
                },
                "query": {
                    "type": "string",
                    "description": "A single SELECT statement.",
                },
            },
            "required": ["project_id", "query"],
        },
    },
}

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

_LIST_TABLES_SQL = (
    "SELECT c.table_name, c.column_name, c.data_type, c.is_nullable "
    "FROM information_schema.columns c "
    "JOIN information_schema.tables t "
    "ON t.table_schema = c.table_schema AND t.table_name = c.table_name "
    "WHERE c.table_schema = '{schema}' AND t.table_type = 'BASE TABLE' "
    "ORDER BY c.table_name, c.ordinal_position"
)

_READ_ONLY_ROOTS = (exp.Select, exp.Union, exp.Intersect, exp.Except)
_WRITE_NODES = (exp.Insert, exp.Update, exp.Delete, exp.Drop, exp.Create, exp.Command)

_PROBE_TIMEOUT_SECONDS = 10.0


def check_read_only(query: str) -> str | None:
    """Return an error message when query is not a single read-only statement.

    Returns:
        None when the query is allowed, otherwise the reason it was rejected.
    """
    try:
        statements = [s for s in sqlglot.parse(query, read="postgres") if s is not None]
    except (sqlglot.errors.ParseError, sqlglot.errors.TokenError) as e:
        return f"Could not parse SQL: {e}"
    if len(statements) != 1:
        return "Only a single SQL statement is allowed"
    statement = statements[0]
    if not isinstance(statement, _READ_ONLY_ROOTS) or statement.find(*_WRITE_NODES):
        return "Only read-only SELECT statements are allowed"
    return None


async def probe_launcher(command: str) -> str:
    """Verify the launcher executable exists and runs.

    Args:
        command: Executable name, e.g. "npx".

    Returns:
        The launcher's reported version.

    Raises:
        LauncherNotFoundError: The executable is missing or fails to run.
    """
    path = shutil.which(command)
    if path is None:
        logger.error("Launcher '%s' not found on PATH", command)
        raise LauncherNotFoundError(command)

    try:
        proc = await asyncio.create_subprocess_exec(
            path, "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=_PROBE_TIMEOUT_SECONDS)
    except (OSError, asyncio.TimeoutError) as e:
        logger.error("Launcher '%s' failed to run: %s", command, e)
        raise LauncherNotFoundError(command) from e

    if proc.returncode != 0:
        logger.error("Launcher '%s' exited with status %s", command, proc.returncode)
        raise LauncherNotFoundError(command)

    version = stdout.decode("utf-8", errors="replace").strip()
    logger.debug("Launcher '%s' available: %s", command, version)
    return version


class ToolHandle(Protocol):
    """An open tool surface bound to one database."""

    def list_tools(self) -> dict[str, dict[str, Any]]:
        ...

    async def invoke(self, name: str, args: dict[str, Any]) -> ToolResult:
        ...

    async def close(self) -> None:
        ...


class ToolGateway(Protocol):
    """Factory for ToolHandles. One open() per orchestration run."""

    async def open(self, connection_string: str) -> ToolHandle:
        ...


class McpToolHandle:
    """ToolHandle over a connected MCPClient.

    close() stops the server process; calling it again is a no-op.
    """

    def __init__(
        self,
        client: MCPClient,
        instance_ref: str,
        read_only_guard: bool = False,
    ) -> None:
        self._client = client
        self._instance_ref = instance_ref
        self._read_only_guard = read_only_guard
        self._closed = False

    async def __aenter__(self) -> "McpToolHandle":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def list_tools(self) -> dict[str, dict[str, Any]]:
        return TOOL_SCHEMAS

    async def invoke(self, name: str, args: dict[str, Any]) -> ToolResult:
        """Execute one tool call.

        Args:
            name: Tool name from TOOL_SCHEMAS.
            args: Arguments as produced by the model.

        Returns:
            ToolResult. Failures are reported with is_error=True.
        """
        if self._closed:
            return self._error("Tool gateway is closed")
        if name not in TOOL_SCHEMAS:
            return self._error(f"Unknown tool '{name}'")

        project_id = args.get("project_id")
        if project_id != self._instance_ref:
            return self._error(
                f"project_id '{project_id}' does not match the connected project "
                f"'{self._instance_ref}'"
            )

        logger.debug("Invoking %s for %s with %s", name, self._instance_ref, redact_for_logging(args))
        if name == LIST_TABLES:
            schema = args.get("schema") or "public"
            if not _IDENTIFIER_PATTERN.match(schema):
                return self._error(f"Invalid schema name '{schema}'")
            sql = _LIST_TABLES_SQL.format(schema=schema)
        else:
            sql = args.get("query")
            if not isinstance(sql, str) or not sql.strip():
                return self._error("Missing required argument 'query'")
            if self._read_only_guard:
                rejection = check_read_only(sql)
                if rejection is not None:
                    logger.warning("Rejected SQL for %s: %s", self._instance_ref, rejection)
                    return self._error(rejection)

        try:
            parts = await self._client.call_tool(SERVER_QUERY_TOOL, {"sql": sql})
        except MCPToolError as e:
            logger.info("Tool %s returned an error: %s", name, sanitize_error_message(e.error_text, 200))
            return extract_tool_result(e.error_text or f"Tool '{name}' failed", is_error=True)
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, sanitize_error_message(str(e), 200))
            return self._error(sanitize_error_message(str(e)) or f"Tool '{name}' failed")

        return extract_tool_result(parts)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.disconnect()
        logger.info("Tool gateway closed for instance %s", self._instance_ref)

    @staticmethod
    def _error(message: str) -> ToolResult:
        return ToolResult.error(json.dumps({"error": message}), raw={"error": message})


class McpToolGateway:
    """ToolGateway that spawns the Postgres MCP server per open()."""

    def __init__(self, config: GatewayConfig, instance_ref: str) -> None:
        self._config = config
        self._instance_ref = instance_ref

    def server_params(self, connection_string: str) -> StdioServerParameters:
        return StdioServerParameters(
            command=self._config.command,
            args=["-y", self._config.package, connection_string],
        )

    async def open(self, connection_string: str) -> McpToolHandle:
        """Spawn the tool server and wait for the handshake.

        Raises:
            GatewayUnavailableError: Spawn or handshake failed, or the server
                does not offer the query tool.
        """
        client = MCPClient(
            self.server_params(connection_string),
            handshake_timeout=self._config.handshake_timeout,
        )
        try:
            await client.connect()
            tool_names = await client.list_tool_names()
        except MCPConnectionError as e:
            await client.disconnect()
            logger.error("Tool gateway unavailable for %s: %s", self._instance_ref, e.reason)
            raise GatewayUnavailableError(command=e.command, reason=e.reason) from e
        except Exception as e:
            await client.disconnect()
            reason = sanitize_error_message(f"listing tools failed: {e}")
            logger.error("Tool gateway unavailable for %s: %s", self._instance_ref, reason)
            raise GatewayUnavailableError(command=self._config.command, reason=reason) from e

        if SERVER_QUERY_TOOL not in tool_names:
            await client.disconnect()
            reason = f"server does not provide the '{SERVER_QUERY_TOOL}' tool"
            logger.error("Tool gateway unavailable for %s: %s", self._instance_ref, reason)
            raise GatewayUnavailableError(command=self._config.command, reason=reason)

        logger.info("Tool gateway opened for instance %s", self._instance_ref)
        return McpToolHandle(
            client, self._instance_ref, read_only_guard=self._config.read_only_guard,
        )
