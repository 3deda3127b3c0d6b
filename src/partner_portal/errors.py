"""Portal error hierarchy.

Every error carries the HTTP status it should surface as and a
``user_message`` that is safe to put in a response body. Internal detail
stays in ``message`` and in the logs.
"""

from __future__ import annotations


class PortalError(Exception):
    """Base exception for partner portal errors."""

    default_user_message = "An unexpected error occurred."

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: str | None = None,
        user_message: str | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.user_message = user_message or self.default_user_message
        super().__init__(self.message)


class ConfigurationError(PortalError):
    """The process was started with an unusable configuration."""

    default_user_message = "Service configuration error. Please contact your administrator."

    def __init__(self, message: str):
        super().__init__(message, 500, "CONFIGURATION_ERROR")


class NoInitiativeAssigned(PortalError):
    """None of the caller's groups map to an initiative."""

    default_user_message = (
        "User is not assigned to any initiative group. Please contact your administrator."
    )

    def __init__(self, message: str = "No initiative group matched"):
        super().__init__(message, 403, "NO_INITIATIVE")


class InvalidInitiativeConfig(PortalError):
    """An initiative has no usable CRM GUID (unknown, disabled or placeholder)."""

    default_user_message = "Initiative configuration error. Please contact your administrator."

    def __init__(self, message: str = "Invalid initiative configuration"):
        super().__init__(message, 500, "INVALID_INITIATIVE_CONFIG")


class MissingInitiativeError(PortalError):
    """A security context reached the data layer without an initiative."""

    def __init__(self, message: str = "Initiative filter is required for all queries"):
        super().__init__(message, 500, "MISSING_INITIATIVE")


class LeadNotFound(PortalError):
    default_user_message = "Lead not found"

    def __init__(self, lead_id: str):
        super().__init__(f"Lead {lead_id} not found", 404, "NOT_FOUND")


class LeadQueryError(PortalError):
    """Upstream failure surfaced by the lead service with a sanitized message."""

    def __init__(self, message: str, status_code: int, user_message: str, code: str | None = None):
        super().__init__(message, status_code, code or "LEAD_QUERY_FAILED", user_message)
