"""
Token limit error detection.

Decides whether an agent failure was caused by exceeding the model's context
window, which makes it recoverable by compacting history and retrying.
"""

import re

from ..errors import ContextLimitError, ExecutionError

# Matched case-insensitively against the error message
TOKEN_LIMIT_ERROR_PATTERNS = (
    "prompt is too long",
    "context window",
    "context length",
    "max_tokens",
    "maximum context",
    "token limit",
    "tokens exceed",
    "exceeds the maximum",
    "too many tokens",
    "context limit",
    "input too long",
    "request too large",
)

# Status codes used for oversized-request rejections
TOKEN_LIMIT_STATUS_CODES = frozenset({400, 413, 422})

_TOKEN_COUNT_RE = re.compile(r"(\d+)\s*tokens?", re.IGNORECASE)

GENERIC_DESCRIPTION = "Request exceeded the model's context window. Context will be compacted."


def _error_message(error: BaseException) -> str:
    return str(error) or ""


def _status_code(error: BaseException) -> int | None:
    for attr in ("status_code", "status", "statusCode"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def message_contains_token_limit_pattern(message: str) -> bool:
    lowered = message.lower()
    return any(pattern in lowered for pattern in TOKEN_LIMIT_ERROR_PATTERNS)


def is_token_limit_error(error: object) -> bool:
    """Check whether error means the model's input budget was exceeded.

    The message must contain a known pattern. If the error carries a status
    code, it must also be one of TOKEN_LIMIT_STATUS_CODES, so unrelated
    client errors sharing a message fragment are not misclassified.
    """
    if isinstance(error, ContextLimitError):
        return True
    if not isinstance(error, BaseException):
        return False

    if not message_contains_token_limit_pattern(_error_message(error)):
        return False

    status = _status_code(error)
    if status is None:
        return True
    return status in TOKEN_LIMIT_STATUS_CODES


def get_token_limit_error_description(error: object) -> str | None:
    """Human-readable description of a token limit error, None otherwise."""
    if not is_token_limit_error(error):
        return None

    match = _TOKEN_COUNT_RE.search(_error_message(error))  # type: ignore[arg-type]
    if match:
        return f"Request exceeded token limit ({match.group(1)} tokens). Context will be compacted."
    return GENERIC_DESCRIPTION


def classify_error(error: BaseException) -> ExecutionError:
    """Wrap an agent failure as ContextLimitError or ExecutionError."""
    if isinstance(error, ExecutionError):
        return error

    message = _error_message(error) or error.__class__.__name__
    if is_token_limit_error(error):
        return ContextLimitError(message, cause=error)
    return ExecutionError(message, cause=error)
