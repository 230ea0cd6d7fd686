"""Masking of secrets before they reach logs or clients.

Three things carry secrets in QueryDesk: tool argument dicts, Postgres
connection URLs with an inline password, and free-text errors coming back
from providers or the tool server.
"""

import re
from typing import Any

REDACTED = "***REDACTED***"

# Case-insensitive substrings; a dict key containing any of them is masked.
_SENSITIVE_KEY_PARTS = frozenset({
    "secret", "token", "authorization", "api_key", "apikey", "password",
    "credential",
})

# Masked wholesale, whatever they hold.
_OPAQUE_KEYS = frozenset({"credentials", "headers"})


def _masks_key(key: Any, sensitive_patterns: frozenset[str]) -> bool:
    lowered = str(key).lower()
    return lowered in _OPAQUE_KEYS or any(part in lowered for part in sensitive_patterns)


def _redact_value(value: Any, sensitive_patterns: frozenset[str]) -> Any:
    if isinstance(value, dict):
        return redact_for_logging(value, sensitive_patterns)
    if isinstance(value, list):
        return [_redact_value(item, sensitive_patterns) for item in value]
    return value


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _SENSITIVE_KEY_PARTS,
) -> dict:
    """Copy a dict with the values of secret-looking keys masked.

    Nested dicts and dicts inside lists are handled too. The input is not
    modified.

    Args:
        obj: Dict to copy.
        sensitive_patterns: Key substrings to mask, matched case-insensitively.

    Returns:
        The redacted copy.
    """
    return {
        key: REDACTED if _masks_key(key, sensitive_patterns) else _redact_value(value, sensitive_patterns)
        for key, value in obj.items()
    }


# scheme://user:<password>@
_URL_PASSWORD = re.compile(r"([a-zA-Z][a-zA-Z0-9+.-]*://[^:/@\s]+:)[^@\s]*(@)")


def redact_connection_string(connection_string: str | None) -> str:
    """Replace the password in a connection URL; None becomes ""."""
    if not connection_string:
        return ""
    return _URL_PASSWORD.sub(rf"\g<1>{REDACTED}\g<2>", connection_string)


_SECRET_WORDS = (
    r"secret|token|password|api_key|apikey|x-api-key|authorization|credential"
)
_SECRET_IN_TEXT = re.compile(
    r"(?i)"
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|sk-ant-[A-Za-z0-9_\-]+"
    rf'|"[\w-]*(?:{_SECRET_WORDS})[\w-]*"\s*:\s*"[^"]*"'
    rf'|[\w-]*(?:{_SECRET_WORDS})\s*[=:]\s*(?:"[^"]*"|\S+)'
)


def sanitize_error_message(msg: str | None, max_length: int = 2000) -> str | None:
    """Mask secrets in an error message and cap its length.

    Connection-URL passwords, bearer headers, Anthropic keys and
    ``key=value`` / ``"key": "value"`` pairs with a secret-looking key are
    replaced. Messages longer than max_length end in "...".

    Args:
        msg: Message to clean. None is returned unchanged.
        max_length: Upper bound on the result length.

    Returns:
        The cleaned message.
    """
    if msg is None:
        return None
    cleaned = _SECRET_IN_TEXT.sub(REDACTED, redact_connection_string(msg))
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned
