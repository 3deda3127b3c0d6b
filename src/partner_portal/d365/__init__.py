"""Dynamics 365 Web API access."""

from .auth import ClientCredentialsTokenProvider, StaticTokenProvider, TokenError, TokenProvider
from .client import D365_HEADERS, NO_CONTENT, D365Client
from .errors import (
    D365_ERROR_CODES,
    D365ConfigurationError,
    D365Error,
    D365ResponseError,
    D365TransportError,
    ParsedError,
    RetryExhaustedError,
    parse_error,
    sanitize_message,
)
from .retry import RetryPolicy, with_retry

__all__ = [
    "ClientCredentialsTokenProvider",
    "StaticTokenProvider",
    "TokenError",
    "TokenProvider",
    "D365_HEADERS",
    "NO_CONTENT",
    "D365Client",
    "D365_ERROR_CODES",
    "D365ConfigurationError",
    "D365Error",
    "D365ResponseError",
    "D365TransportError",
    "ParsedError",
    "RetryExhaustedError",
    "parse_error",
    "sanitize_message",
    "RetryPolicy",
    "with_retry",
]
