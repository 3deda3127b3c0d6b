"""OData expression building and the secure lead filter."""

from .expressions import (
    ODATA_OPERATORS,
    ODATA_PARAMS,
    ODataExpressionError,
    build_any_expression,
    build_contains_expression,
    build_d365_url,
    build_filter_expression,
    build_in_expression,
    build_query_string,
    combine_filters,
    escape_string,
    parse_next_link,
    unescape_string,
    validate_field_name,
)
from .filters import (
    DirectLookup,
    FailSecureEmpty,
    JunctionAny,
    QueryParamsBuilder,
    SecureFilterBuilder,
    SecureFilterExpression,
)

__all__ = [
    "ODATA_OPERATORS",
    "ODATA_PARAMS",
    "ODataExpressionError",
    "build_any_expression",
    "build_contains_expression",
    "build_d365_url",
    "build_filter_expression",
    "build_in_expression",
    "build_query_string",
    "combine_filters",
    "escape_string",
    "parse_next_link",
    "unescape_string",
    "validate_field_name",
    "DirectLookup",
    "FailSecureEmpty",
    "JunctionAny",
    "QueryParamsBuilder",
    "SecureFilterBuilder",
    "SecureFilterExpression",
]
