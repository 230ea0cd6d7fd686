"""Error code registry with E-XXXX format codes.

Categories:
- E-1xxx: Request errors
- E-2xxx: Credential errors
- E-3xxx: Tool gateway errors
- E-4xxx: Upstream provider errors
- E-5xxx: Authentication errors
- E-9xxx: Internal errors

Each error includes a code, title, default message, HTTP status and
remediation hint.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    REQUEST = "request"  # E-1xxx
    CREDENTIAL = "credential"  # E-2xxx
    GATEWAY = "gateway"  # E-3xxx
    PROVIDER = "provider"  # E-4xxx
    AUTH = "auth"  # E-5xxx
    INTERNAL = "internal"  # E-9xxx


@dataclass(frozen=True)
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message: Default human-readable message.
        status_code: HTTP status returned when raised before streaming.
        remediation: Action the user should take to resolve.
        is_fatal: Whether the error aborts the orchestration run.
    """

    code: str
    category: ErrorCategory
    title: str
    message: str
    status_code: int
    remediation: str
    is_fatal: bool = True


ERROR_REGISTRY: dict[str, ErrorCode] = {
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.REQUEST,
        title="Invalid Request",
        message="Request body is invalid.",
        status_code=400,
        remediation="Send messages, apiKey and projectRef in the request body.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.REQUEST,
        title="No User Message",
        message="No user message found",
        status_code=400,
        remediation="Include at least one message with role 'user'.",
    ),
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.CREDENTIAL,
        title="Missing Reference",
        message="Connection string and project reference are required",
        status_code=422,
        remediation="Select a project before asking a question.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.CREDENTIAL,
        title="Missing Database Password",
        message="No password found for this project",
        status_code=422,
        remediation="Enter the database password for this project.",
    ),
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.GATEWAY,
        title="Tool Gateway Unavailable",
        message="Database tool server could not be started.",
        status_code=503,
        remediation="Check database connectivity and retry.",
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.GATEWAY,
        title="Tool Launcher Missing",
        message="The tool launcher executable is not available in the current environment.",
        status_code=503,
        remediation="Install Node.js so that 'npx' is on PATH.",
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.GATEWAY,
        title="Tool Execution Failed",
        message="Tool call failed.",
        status_code=500,
        remediation="The assistant will see the error and may retry with a different query.",
        is_fatal=False,
    ),
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.PROVIDER,
        title="Model Provider Error",
        message="The language model request failed.",
        status_code=502,
        remediation="Check the Anthropic API key and retry.",
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.PROVIDER,
        title="Management API Error",
        message="Project details could not be fetched.",
        status_code=502,
        remediation="Sign in again or check that the project exists.",
    ),
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.AUTH,
        title="Not Authenticated",
        message="Not authenticated with Supabase",
        status_code=401,
        remediation="Sign in to connect your Supabase account.",
    ),
    "E-9001": ErrorCode(
        code="E-9001",
        category=ErrorCategory.INTERNAL,
        title="Internal Error",
        message="An unexpected error occurred.",
        status_code=500,
        remediation="Retry the request. Check the server logs if it keeps failing.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Look up an error definition by code."""
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Return all error definitions in a category."""
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
