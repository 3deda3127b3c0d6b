"""Structured security audit events.

Events go to the ``partner_portal.audit`` logger and to any registered
sinks. A failing sink is logged and skipped; it never reaches the code
path whose action was being audited.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
DEFAULT_REDACT_FIELDS = ("password", "token", "secret", "authorization")


class SecurityEventType(str, Enum):
    ACCESS_GRANTED = "ACCESS_GRANTED"
    ACCESS_DENIED = "ACCESS_DENIED"
    CROSS_TENANT_ATTEMPT = "CROSS_TENANT_ATTEMPT"
    FILTER_APPLIED = "FILTER_APPLIED"
    QUERY_EXECUTED = "QUERY_EXECUTED"
    QUERY_FAILED = "QUERY_FAILED"
    MISSING_ORG_CONTEXT = "MISSING_ORG_CONTEXT"
    INVALID_ORG_TYPE = "INVALID_ORG_TYPE"
    INITIATIVE_MAPPING_FAILED = "INITIATIVE_MAPPING_FAILED"
    EMPTY_RESULT_SECURITY = "EMPTY_RESULT_SECURITY"
    INVALID_SORT_FIELD = "INVALID_SORT_FIELD"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    UNKNOWN_TENANT_GUID = "UNKNOWN_TENANT_GUID"


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @property
    def log_level(self) -> int:
        return getattr(logging, self.value)


_SEVERITY_ORDER = [Severity.INFO, Severity.WARNING, Severity.ERROR, Severity.CRITICAL]

_ERROR_EVENTS = frozenset({
    SecurityEventType.ACCESS_DENIED,
    SecurityEventType.QUERY_FAILED,
    SecurityEventType.INITIATIVE_MAPPING_FAILED,
    SecurityEventType.INVALID_CONFIGURATION,
})

_WARNING_EVENTS = frozenset({
    SecurityEventType.MISSING_ORG_CONTEXT,
    SecurityEventType.INVALID_ORG_TYPE,
    SecurityEventType.EMPTY_RESULT_SECURITY,
    SecurityEventType.INVALID_SORT_FIELD,
    SecurityEventType.UNKNOWN_TENANT_GUID,
})


def severity_for(event_type: SecurityEventType, result: str | None = None) -> Severity:
    if event_type is SecurityEventType.CROSS_TENANT_ATTEMPT:
        return Severity.CRITICAL
    if event_type in _ERROR_EVENTS or result == "failure":
        return Severity.ERROR
    if event_type in _WARNING_EVENTS:
        return Severity.WARNING
    return Severity.INFO


@dataclass(frozen=True)
class AuditEvent:
    """One emitted security event."""

    event_type: SecurityEventType
    severity: Severity
    timestamp: str
    user_id: str | None = None
    initiative: str | None = None
    organization_id: str | None = None
    resource: str | None = None
    action: str | None = None
    result: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "eventType": self.event_type.value,
            "severity": self.severity.value,
        }
        optional = {
            "userId": self.user_id,
            "initiative": self.initiative,
            "organizationId": self.organization_id,
            "resource": self.resource,
            "action": self.action,
            "result": self.result,
            "errorMessage": self.error_message,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        if self.details:
            data["details"] = self.details
        return data

    def format(self) -> str:
        parts = []
        if self.user_id:
            parts.append(f"User: {self.user_id}")
        if self.initiative:
            parts.append(f"Initiative: {self.initiative}")
        if self.resource:
            parts.append(f"Resource: {self.resource}")
        if self.action:
            parts.append(f"Action: {self.action}")
        if self.result:
            parts.append(f"Result: {self.result}")
        if self.error_message:
            parts.append(f"Error: {self.error_message}")
        if self.details:
            parts.append(f"Details: {self.details}")
        return " | ".join(parts)


AuditSink = Callable[[AuditEvent], None]


def redact(value: Any, redact_fields: Iterable[str] = DEFAULT_REDACT_FIELDS) -> Any:
    """Replace values under sensitive keys, recursing through dicts and lists."""
    needles = tuple(f.lower() for f in redact_fields)
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if isinstance(key, str) and any(n in key.lower() for n in needles):
                out[key] = REDACTED
            else:
                out[key] = redact(item, needles)
        return out
    if isinstance(value, (list, tuple)):
        return [redact(item, needles) for item in value]
    return value


class AuditLogger:
    """Emits ``AuditEvent`` records to the audit log and registered sinks.

    Usage:
        audit = AuditLogger(min_severity=Severity.WARNING)
        audit.add_sink(ship_to_siem)
        audit.log(SecurityEventType.ACCESS_DENIED, user_id="u1", resource="lead:42")
    """

    def __init__(
        self,
        min_severity: Severity | str = Severity.INFO,
        sinks: Iterable[AuditSink] | None = None,
        console_enabled: bool = True,
        redact_fields: Iterable[str] = DEFAULT_REDACT_FIELDS,
    ):
        self.min_severity = Severity(min_severity)
        self.console_enabled = console_enabled
        self.redact_fields = tuple(redact_fields)
        self._sinks: list[AuditSink] = list(sinks or [])

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def log(
        self,
        event_type: SecurityEventType,
        *,
        user_id: str | None = None,
        initiative: str | None = None,
        organization_id: str | None = None,
        resource: str | None = None,
        action: str | None = None,
        result: str | None = None,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Emit an event. Returns it, or ``None`` if below ``min_severity``."""
        severity = severity_for(event_type, result)
        if severity.rank < self.min_severity.rank:
            return None

        event = AuditEvent(
            event_type=event_type,
            severity=severity,
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=user_id,
            initiative=initiative,
            organization_id=organization_id,
            resource=resource,
            action=action,
            result=result,
            error_message=error_message,
            details=redact(details or {}, self.redact_fields),
        )

        if self.console_enabled:
            logger.log(
                severity.log_level,
                "[AUDIT:%s] %s %s",
                severity.value,
                event_type.value,
                event.format(),
                extra={"audit_event": event.to_dict()},
            )

        for sink in self._sinks:
            try:
                sink(event)
            except Exception:
                logger.exception("Audit sink %r failed for %s", sink, event_type.value)

        return event

    # Convenience helpers for the common events

    def access_granted(self, user_id: str | None, resource: str, **details: Any) -> AuditEvent | None:
        return self.log(
            SecurityEventType.ACCESS_GRANTED,
            user_id=user_id, resource=resource, result="success", details=details,
        )

    def access_denied(
        self, user_id: str | None, resource: str, reason: str, **details: Any
    ) -> AuditEvent | None:
        return self.log(
            SecurityEventType.ACCESS_DENIED,
            user_id=user_id, resource=resource, result="failure",
            error_message=reason, details=details,
        )

    def cross_tenant_attempt(
        self,
        user_id: str | None,
        user_initiative: str,
        resource: str,
        expected_guid: str,
        actual_guid: str | None,
        target_initiative: str | None = None,
    ) -> AuditEvent | None:
        return self.log(
            SecurityEventType.CROSS_TENANT_ATTEMPT,
            user_id=user_id,
            initiative=user_initiative,
            resource=resource,
            result="failure",
            details={
                "userInitiative": user_initiative,
                "targetInitiative": target_initiative or "unknown",
                "expectedGuid": expected_guid,
                "actualGuid": actual_guid,
                "blocked": True,
            },
        )

    def filter_applied(
        self, user_id: str | None, initiative: str, filters: dict[str, Any], endpoint: str
    ) -> AuditEvent | None:
        return self.log(
            SecurityEventType.FILTER_APPLIED,
            user_id=user_id, initiative=initiative, action=endpoint,
            details={"filters": filters, "endpoint": endpoint},
        )

    def query_executed(
        self, user_id: str | None, entity: str, filter_text: str, result_count: int | None
    ) -> AuditEvent | None:
        return self.log(
            SecurityEventType.QUERY_EXECUTED,
            user_id=user_id, resource=entity, result="success",
            details={"entity": entity, "filters": filter_text, "resultCount": result_count},
        )

    def query_failed(
        self,
        user_id: str | None,
        entity: str,
        error_message: str,
        error_code: str | None = None,
        **details: Any,
    ) -> AuditEvent | None:
        return self.log(
            SecurityEventType.QUERY_FAILED,
            user_id=user_id, resource=entity, result="failure",
            error_message=error_message,
            details={"entity": entity, "errorCode": error_code or "", **details},
        )


class InMemoryAuditSink:
    """Collects events in a list."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def __call__(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: SecurityEventType) -> list[AuditEvent]:
        return [e for e in self.events if e.event_type is event_type]

    def clear(self) -> None:
        self.events.clear()
