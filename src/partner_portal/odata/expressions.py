"""OData expression helpers for Dynamics 365 Web API queries.

Everything here is a pure string builder. The one rule that matters:
values are only ever interpolated through ``quote_string`` (single quotes
doubled), and field names only after ``validate_field_name``.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Iterable
from urllib.parse import parse_qsl, quote, urlsplit

ODATA_OPERATORS = {
    "EQUALS": "eq",
    "NOT_EQUALS": "ne",
    "GREATER_THAN": "gt",
    "GREATER_THAN_OR_EQUAL": "ge",
    "LESS_THAN": "lt",
    "LESS_THAN_OR_EQUAL": "le",
    "AND": "and",
    "OR": "or",
    "NOT": "not",
    "CONTAINS": "contains",
    "STARTS_WITH": "startswith",
    "ENDS_WITH": "endswith",
    "IN": "in",
}

# Operators usable as "<field> <op> <value>"
COMPARISON_OPERATORS = ("EQUALS", "NOT_EQUALS", "GREATER_THAN", "GREATER_THAN_OR_EQUAL",
                        "LESS_THAN", "LESS_THAN_OR_EQUAL")

ODATA_PARAMS = {
    "SELECT": "$select",
    "FILTER": "$filter",
    "ORDER_BY": "$orderby",
    "TOP": "$top",
    "SKIP": "$skip",
    "COUNT": "$count",
    "EXPAND": "$expand",
    "SEARCH": "$search",
}

ODATA_FUNCTIONS = {
    "ANY": "any",
    "ALL": "all",
    "TO_LOWER": "tolower",
    "TO_UPPER": "toupper",
}

FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_./]*$")
LAMBDA_ALIAS_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ODataExpressionError(ValueError):
    """Raised when an expression cannot be built safely."""


def escape_string(value: Any) -> str:
    """Double every single quote. Non-strings escape to an empty string."""
    if not isinstance(value, str):
        return ""
    return value.replace("'", "''")


def unescape_string(value: str) -> str:
    """Inverse of ``escape_string``."""
    return value.replace("''", "'")


def quote_string(value: str) -> str:
    return f"'{escape_string(value)}'"


def format_guid(value: str | None) -> str:
    """Strip surrounding braces from a GUID."""
    if not isinstance(value, str) or not value:
        return ""
    return value.replace("{", "").replace("}", "")


def format_date(value: datetime | date | str) -> str:
    """Format a date/datetime (or ISO string) as an OData ISO-8601 literal."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ODataExpressionError(f"Invalid date value: {value!r}") from exc
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return value.isoformat()


def validate_field_name(field: str | None) -> str:
    """Return ``field`` if it is a safe OData property path, else raise."""
    if not isinstance(field, str) or not field:
        raise ODataExpressionError("Field name must be a non-empty string")
    if not FIELD_NAME_PATTERN.match(field):
        raise ODataExpressionError(
            f"Invalid field name format: {field!r}. Field names must start with a letter "
            "or underscore and contain only letters, numbers, underscores, dots, or slashes."
        )
    return field


def format_value(value: Any) -> str:
    """Render a Python value as an OData literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, (datetime, date)):
        return format_date(value)
    if isinstance(value, (int, float)):
        return str(value)
    raise ODataExpressionError(f"Unsupported OData value type: {type(value).__name__}")


def build_filter_expression(field: str, operator: str, value: Any) -> str:
    """Build ``<field> <op> <literal>``.

    Args:
        field: Property name (validated)
        operator: Key of ``ODATA_OPERATORS`` limited to comparisons, e.g. ``"EQUALS"``
        value: str, bool, int, float, date or datetime
    """
    if operator not in COMPARISON_OPERATORS:
        raise ODataExpressionError(f"Invalid OData operator: {operator}")
    try:
        validate_field_name(field)
    except ODataExpressionError as exc:
        raise ODataExpressionError(f"Invalid field name in filter expression: {field!r}") from exc
    return f"{field} {ODATA_OPERATORS[operator]} {format_value(value)}"


def combine_filters(filters: Iterable[str], operator: str = "and") -> str:
    """Join expressions with ``and``/``or``, parenthesizing each when there are several."""
    if operator not in ("and", "or"):
        raise ODataExpressionError(f"Invalid logical operator: {operator}")
    valid = [f for f in filters if f and f.strip()]
    if not valid:
        return ""
    if len(valid) == 1:
        return valid[0]
    return f" {operator} ".join(f"({f})" for f in valid)


def build_contains_expression(field: str, term: str, case_sensitive: bool = False) -> str:
    validate_field_name(field)
    escaped = escape_string(term)
    if case_sensitive:
        return f"contains({field}, '{escaped}')"
    return f"contains({ODATA_FUNCTIONS['TO_LOWER']}({field}), '{escaped.lower()}')"


def build_in_expression(field: str, values: list[str | int]) -> str:
    """Equality against any of ``values``; an empty list matches nothing."""
    if not values:
        return "false"
    if len(values) == 1:
        return build_filter_expression(field, "EQUALS", values[0])
    return combine_filters(
        [build_filter_expression(field, "EQUALS", v) for v in values], "or"
    )


def build_date_range_filter(
    field: str,
    start: datetime | date | str | None = None,
    end: datetime | date | str | None = None,
) -> str:
    """Inclusive range; either bound may be omitted."""
    filters = []
    if start:
        filters.append(build_filter_expression(field, "GREATER_THAN_OR_EQUAL", _as_temporal(start)))
    if end:
        filters.append(build_filter_expression(field, "LESS_THAN_OR_EQUAL", _as_temporal(end)))
    return combine_filters(filters, "and")


def _as_temporal(value: datetime | date | str) -> datetime | date:
    # Strings would otherwise be quoted as text literals
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ODataExpressionError(f"Invalid date value: {value!r}") from exc
    return value


def build_any_expression(navigation_property: str, alias: str, predicate: str) -> str:
    """``nav/any(alias:predicate)`` over a collection navigation property."""
    validate_field_name(navigation_property)
    if not LAMBDA_ALIAS_PATTERN.match(alias or ""):
        raise ODataExpressionError(f"Invalid lambda alias: {alias!r}")
    return f"{navigation_property}/{ODATA_FUNCTIONS['ANY']}({alias}:{predicate})"


def build_order_by(fields: Iterable[tuple[str, str | None]]) -> str:
    parts = []
    for field, direction in fields:
        validate_field_name(field)
        parts.append(f"{field} desc" if direction == "desc" else field)
    return ",".join(parts)


def build_query_string(params: dict[str, Any]) -> str:
    """Encode query params, skipping ``None``/empty values and joining lists with commas."""
    parts = []
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            text = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            text = "true" if value else "false"
        else:
            text = str(value)
        parts.append(f"{key}={quote(text, safe='')}")
    return "&".join(parts)


def parse_next_link(next_link: str) -> dict[str, str]:
    """Return the query parameters carried by an ``@odata.nextLink`` URL."""
    if not isinstance(next_link, str) or not next_link:
        raise ODataExpressionError("Invalid nextLink: must be a non-empty string")
    parts = urlsplit(next_link)
    if not parts.scheme or not parts.netloc:
        raise ODataExpressionError("Failed to parse next link: not an absolute URL")
    return dict(parse_qsl(parts.query, keep_blank_values=True))


def build_d365_url(
    base_url: str,
    entity_set: str,
    resource_id: str | None = None,
    params: dict[str, Any] | None = None,
    api_version: str = "v9.2",
) -> str:
    """Build ``{base}/api/data/{version}/{entity}[(id)][?query]``."""
    if not base_url or not entity_set:
        raise ODataExpressionError("Base URL and entity set are required")
    validate_field_name(entity_set)
    url = f"{base_url.rstrip('/')}/api/data/{api_version}/{entity_set}"
    if resource_id:
        url += f"({format_guid(resource_id)})"
    if params:
        query = build_query_string(params)
        if query:
            url += f"?{query}"
    return url


def build_complex_filter(condition: dict[str, Any]) -> str:
    """Build a filter from a nested ``{"and": [...]}`` / ``{"or": [...]}`` tree.

    Leaves look like ``{"field": "statecode", "operator": "EQUALS", "value": 0}``.
    """
    if "and" in condition:
        return combine_filters([build_complex_filter(c) for c in condition["and"]], "and")
    if "or" in condition:
        return combine_filters([build_complex_filter(c) for c in condition["or"]], "or")
    if condition.get("field") and condition.get("operator") and "value" in condition:
        return build_filter_expression(condition["field"], condition["operator"], condition["value"])
    return ""
