"""Typed domain exceptions for API error mapping.

Every exception carries a registry code and the HTTP status used when it
is raised before the event stream starts. Once streaming has begun the
same exception is turned into a single ``error`` record instead.

Usage:
    # In service layer
    raise MissingCredentialError(instance_ref="abc123")

    # In route handler
    except QueryDeskError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_payload())
"""

from typing import Any

from querydesk.errors.registry import get_error


class QueryDeskError(Exception):
    """Base exception for all domain errors."""

    code = "E-1001"

    def __init__(self, message: str | None = None, *, details: dict[str, Any] | None = None) -> None:
        definition = get_error(self.code)
        self.message = message or (definition.message if definition else self.code)
        self.status_code = definition.status_code if definition else 500
        self.remediation = definition.remediation if definition else ""
        self.is_fatal = definition.is_fatal if definition else True
        self.details = details or {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """Return the wire form ``{error, error_code}``."""
        return {"error": self.message, "error_code": self.code}


class ValidationError(QueryDeskError):
    """Malformed chat request. Maps to HTTP 400, no resources opened."""

    code = "E-1001"


class NoUserMessageError(QueryDeskError):
    """Conversation contains no user-authored message. Maps to HTTP 400."""

    code = "E-1002"


class MissingReferenceError(QueryDeskError):
    """Connection string or instance reference is empty. Maps to HTTP 422."""

    code = "E-2001"


class MissingCredentialError(QueryDeskError):
    """No database password stored for the instance. Maps to HTTP 422."""

    code = "E-2002"

    def __init__(self, message: str | None = None, *, instance_ref: str = "") -> None:
        super().__init__(message, details={"instance_ref": instance_ref} if instance_ref else None)
        self.instance_ref = instance_ref


class GatewayUnavailableError(QueryDeskError):
    """Tool server failed to spawn or complete the MCP handshake. Maps to HTTP 503."""

    code = "E-3001"

    def __init__(self, message: str | None = None, *, command: str = "", reason: str = "") -> None:
        if message is None and reason:
            message = f"Failed to start tool server '{command}': {reason}"
        super().__init__(message, details={"command": command})
        self.command = command
        self.reason = reason


class LauncherNotFoundError(GatewayUnavailableError):
    """Launcher executable (e.g. npx) is missing from the environment."""

    code = "E-3002"

    def __init__(self, command: str) -> None:
        super().__init__(
            f"The '{command}' command is not available in the current environment. "
            "Please ensure Node.js is properly installed.",
            command=command,
            reason="launcher not found",
        )


class ToolExecutionError(QueryDeskError):
    """A tool call failed. Non-fatal: folded into the conversation as a tool result."""

    code = "E-3003"

    def __init__(self, tool_name: str, error_text: str) -> None:
        super().__init__(f"Tool '{tool_name}' failed: {error_text}")
        self.tool_name = tool_name
        self.error_text = error_text


class ProviderError(QueryDeskError):
    """LLM call failed. Fatal for the request. Maps to HTTP 502."""

    code = "E-4001"


class ManagementAPIError(QueryDeskError):
    """Supabase Management API call failed. Maps to HTTP 502."""

    code = "E-4002"

    def __init__(self, message: str | None = None, *, status: int | None = None) -> None:
        super().__init__(message, details={"status": status} if status else None)
        self.status = status


class NotAuthenticatedError(QueryDeskError):
    """No session access token. Maps to HTTP 401."""

    code = "E-5001"


class InternalError(QueryDeskError):
    """Unexpected failure with no more specific type. Maps to HTTP 500."""

    code = "E-9001"
