"""Error handling framework for QueryDesk.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions mapped to HTTP statuses

Error categories:
- E-1xxx: Request errors
- E-2xxx: Credential errors
- E-3xxx: Tool gateway errors
- E-4xxx: Upstream provider errors
- E-5xxx: Authentication errors
- E-9xxx: Internal errors
"""

from querydesk.errors.domain import (
    GatewayUnavailableError,
    InternalError,
    LauncherNotFoundError,
    ManagementAPIError,
    MissingCredentialError,
    MissingReferenceError,
    NotAuthenticatedError,
    NoUserMessageError,
    ProviderError,
    QueryDeskError,
    ToolExecutionError,
    ValidationError,
)
from querydesk.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Domain
    "QueryDeskError",
    "ValidationError",
    "NoUserMessageError",
    "MissingReferenceError",
    "MissingCredentialError",
    "GatewayUnavailableError",
    "LauncherNotFoundError",
    "ToolExecutionError",
    "ProviderError",
    "ManagementAPIError",
    "NotAuthenticatedError",
    "InternalError",
]
