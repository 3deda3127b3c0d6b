"""Dynamics 365 Web API error parsing.

Failed responses look like::

    {"error": {"code": "0x80040220", "message": "...",
               "innererror": {"message": "...", "type": "...", "stacktrace": "..."}}}

``parse_error`` turns one into an immutable ``ParsedError`` that knows
whether it is retryable and carries a message safe to show users.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from ..errors import PortalError

D365_ERROR_CODES = {
    # Authentication/authorization
    "UNAUTHORIZED": "0x80040220",
    "INSUFFICIENT_PRIVILEGES": "0x80040221",
    "ACCESS_DENIED": "0x80042f09",
    # Data validation
    "DUPLICATE_RECORD": "0x80040237",
    "INVALID_ARGUMENT": "0x80040203",
    "MISSING_REQUIRED": "0x80040200",
    "INVALID_RELATIONSHIP": "0x80040217",
    # Business logic
    "BUSINESS_RULE_ERROR": "0x80040265",
    "PLUGIN_ERROR": "0x80040266",
    "WORKFLOW_ERROR": "0x80045001",
    # System
    "GENERIC_SQL_ERROR": "0x80044150",
    "TIMEOUT": "0x80044151",
    "DEADLOCK": "0x80044152",
    "THROTTLING": "0x80072321",
    "SERVICE_UNAVAILABLE": "0x80044184",
    # Query
    "INVALID_QUERY": "0x8004024a",
    "QUERY_BUILDER_NO_ATTRIBUTE": "0x80040236",
    "INVALID_FILTER": "0x8004025c",
}

_C = D365_ERROR_CODES

ERROR_USER_MESSAGES = {
    _C["UNAUTHORIZED"]: "You are not authorized to access this resource",
    _C["INSUFFICIENT_PRIVILEGES"]: "You do not have sufficient privileges to perform this operation",
    _C["ACCESS_DENIED"]: "Access denied to the requested resource",
    _C["DUPLICATE_RECORD"]: "A record with these values already exists",
    _C["INVALID_ARGUMENT"]: "Invalid data provided",
    _C["MISSING_REQUIRED"]: "Required fields are missing",
    _C["INVALID_RELATIONSHIP"]: "Invalid relationship reference",
    _C["BUSINESS_RULE_ERROR"]: "Business rule validation failed",
    _C["PLUGIN_ERROR"]: "Server processing error occurred",
    _C["WORKFLOW_ERROR"]: "Workflow processing error occurred",
    _C["GENERIC_SQL_ERROR"]: "Database error occurred",
    _C["TIMEOUT"]: "Request timed out",
    _C["DEADLOCK"]: "Database conflict occurred, please retry",
    _C["THROTTLING"]: "Too many requests, please try again later",
    _C["SERVICE_UNAVAILABLE"]: "Service is temporarily unavailable",
    _C["INVALID_QUERY"]: "Invalid query syntax",
    _C["QUERY_BUILDER_NO_ATTRIBUTE"]: "Invalid field name in query",
    _C["INVALID_FILTER"]: "Invalid filter condition",
}

STATUS_USER_MESSAGES = {
    400: "Invalid request data",
    401: "Authentication required",
    403: "Access denied",
    404: "Resource not found",
    409: "Conflict with existing data",
    429: "Too many requests, please try again later",
    500: "Internal server error",
    502: "Service temporarily unavailable",
    503: "Service temporarily unavailable",
    504: "Request timed out",
}

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_ERROR_CODES = frozenset({
    _C["DEADLOCK"],
    _C["TIMEOUT"],
    _C["THROTTLING"],
    _C["SERVICE_UNAVAILABLE"],
})

_GUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_STACK_LINE_RE = re.compile(r"\n\s*at\s+.*$", re.MULTILINE)
_DOTNET_EXCEPTION_RE = re.compile(r"System\.\w+Exception:\s*")

_FIELD_PATTERNS = [
    re.compile(r"attributes?\s+['\"]?(\w+)['\"]?", re.IGNORECASE),
    re.compile(r"fields?\s+['\"]?(\w+)['\"]?", re.IGNORECASE),
    re.compile(r"property\s+['\"]?(\w+)['\"]?", re.IGNORECASE),
    re.compile(r"['\"]?(\w+)['\"]?\s+is\s+required", re.IGNORECASE),
    re.compile(r"['\"]?(\w+)['\"]?\s+is\s+invalid", re.IGNORECASE),
]


@dataclass(frozen=True)
class ParsedError:
    status_code: int
    error_code: str
    message: str
    is_retryable: bool
    user_message: str
    details: str | None = None
    type: str | None = None

    @property
    def safe_message(self) -> str:
        return sanitize_message(self.message)


def sanitize_message(message: str | None) -> str:
    """Strip GUIDs, stack frames and .NET exception prefixes from a message."""
    message = message or ""
    message = _GUID_RE.sub("[ID]", message)
    message = _STACK_LINE_RE.sub("", message)
    message = _DOTNET_EXCEPTION_RE.sub("", message)
    message = message.strip()
    if message and message[0].islower():
        message = message[0].upper() + message[1:]
    if message and not message.endswith((".", "!", "?")):
        message += "."
    return message or "An unexpected error occurred."


def is_retryable(status_code: int, error_code: str = "", retryable_status_codes=RETRYABLE_STATUS_CODES) -> bool:
    return status_code in retryable_status_codes or error_code in RETRYABLE_ERROR_CODES


def user_message_for(status_code: int, error_code: str, message: str) -> str:
    if error_code and error_code in ERROR_USER_MESSAGES:
        return ERROR_USER_MESSAGES[error_code]
    if status_code in STATUS_USER_MESSAGES:
        return STATUS_USER_MESSAGES[status_code]
    return sanitize_message(message)


def _load_body(body: Any) -> dict | None:
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except ValueError:
            return None
    return body if isinstance(body, dict) else None


def parse_error(
    status_code: int,
    body: Any = None,
    reason: str = "",
    retryable_status_codes=RETRYABLE_STATUS_CODES,
) -> ParsedError:
    """Interpret a failed response body (dict, JSON text or bytes)."""
    error = (_load_body(body) or {}).get("error") or {}
    if not isinstance(error, dict):
        error = {}
    inner = error.get("innererror") or {}
    if not isinstance(inner, dict):
        inner = {}

    error_code = str(error.get("code") or "")
    message = str(error.get("message") or reason or "Unknown error")
    return ParsedError(
        status_code=status_code,
        error_code=error_code,
        message=message,
        is_retryable=is_retryable(status_code, error_code, retryable_status_codes),
        user_message=user_message_for(status_code, error_code, message),
        details=inner.get("message"),
        type=inner.get("type"),
    )


def extract_field_from_error(message: str) -> str | None:
    """Best-effort field name from a validation error message."""
    for pattern in _FIELD_PATTERNS:
        match = pattern.search(message or "")
        if match:
            return match.group(1)
    return None


def format_error_for_logging(error: ParsedError) -> str:
    parts = [
        f"D365 Error: {error.message}",
        f"Status: {error.status_code}",
        f"Code: {error.error_code or 'N/A'}",
    ]
    if error.type:
        parts.append(f"Type: {error.type}")
    if error.details:
        parts.append(f"Details: {error.details}")
    parts.append(f"Retryable: {'Yes' if error.is_retryable else 'No'}")
    return " | ".join(parts)


class D365Error(PortalError):
    """A failed Dynamics 365 call. ``parsed`` holds the interpreted response."""

    def __init__(self, parsed: ParsedError):
        self.parsed = parsed
        super().__init__(
            format_error_for_logging(parsed),
            parsed.status_code,
            parsed.error_code or None,
            parsed.user_message,
        )

    @property
    def is_retryable(self) -> bool:
        return self.parsed.is_retryable


class D365TransportError(D365Error):
    """Timeout or connection failure before a response arrived."""

    def __init__(self, message: str, timed_out: bool = False):
        status = 504 if timed_out else 503
        super().__init__(
            ParsedError(
                status_code=status,
                error_code="",
                message=message,
                is_retryable=True,
                user_message=STATUS_USER_MESSAGES[status],
            )
        )
        self.timed_out = timed_out


class D365ResponseError(D365Error):
    """A success status whose body could not be decoded."""

    def __init__(self, message: str):
        super().__init__(
            ParsedError(
                status_code=502,
                error_code="INVALID_RESPONSE",
                message=message,
                is_retryable=False,
                user_message=STATUS_USER_MESSAGES[502],
            )
        )


class D365ConfigurationError(PortalError):
    """Missing CRM URL or access token. Never retried."""

    default_user_message = "Service configuration error. Please contact your administrator."
    is_retryable = False

    def __init__(self, message: str):
        super().__init__(message, 500, "D365_CONFIGURATION")


class RetryExhaustedError(PortalError):
    """Every attempt failed, or the deadline passed before the next one."""

    default_user_message = "Service temporarily unavailable"
    is_retryable = False

    def __init__(
        self,
        attempts: int,
        total_delay: float,
        last_error: BaseException | None = None,
        deadline_exceeded: bool = False,
    ):
        self.attempts = attempts
        self.total_delay = total_delay
        self.last_error = last_error
        self.deadline_exceeded = deadline_exceeded
        self.parsed: ParsedError | None = getattr(last_error, "parsed", None)
        detail = str(last_error) if last_error else "deadline exceeded"
        super().__init__(
            f"Operation failed after {attempts} attempts: {detail}", 503, "RETRY_EXHAUSTED"
        )
