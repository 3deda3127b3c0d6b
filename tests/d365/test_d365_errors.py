"""Tests for D365 error parsing."""

import json

import pytest

from partner_portal.d365.errors import (
    D365_ERROR_CODES,
    D365Error,
    D365TransportError,
    extract_field_from_error,
    format_error_for_logging,
    parse_error,
    sanitize_message,
)
from tests.conftest import MOCK_D365_ERROR


class TestParseError:
    """Tests for parse_error."""

    def test_full_body(self):
        """Should read code, message and inner error from a full body."""
        parsed = parse_error(400, MOCK_D365_ERROR)

        assert parsed.status_code == 400
        assert parsed.error_code == D365_ERROR_CODES["BUSINESS_RULE_ERROR"]
        assert parsed.user_message == "Business rule validation failed"
        assert parsed.details == "Plugin threw"
        assert parsed.type == "System.ServiceModel.FaultException"
        assert not parsed.is_retryable

    def test_json_text_and_bytes(self):
        """Should accept JSON as str or bytes."""
        text = json.dumps(MOCK_D365_ERROR)

        assert parse_error(400, text) == parse_error(400, text.encode())
        assert parse_error(400, text).error_code == "0x80040265"

    def test_non_json_body_falls_back_to_reason(self):
        """Should use the reason phrase when the body is not JSON."""
        parsed = parse_error(502, "<html>Bad Gateway</html>", "Bad Gateway")

        assert parsed.message == "Bad Gateway"
        assert parsed.error_code == ""
        assert parsed.user_message == "Service temporarily unavailable"
        assert parsed.is_retryable

    def test_empty_body(self):
        """Should fall back to a generic message without a body."""
        parsed = parse_error(418)

        assert parsed.message == "Unknown error"
        assert parsed.user_message == "Unknown error."

    def test_status_message_when_code_unknown(self):
        """Should use the status message for unknown vendor codes."""
        parsed = parse_error(403, {"error": {"code": "0xdeadbeef", "message": "nope"}})

        assert parsed.user_message == "Access denied"

    @pytest.mark.parametrize("code_name", ["DEADLOCK", "TIMEOUT", "THROTTLING", "SERVICE_UNAVAILABLE"])
    def test_retryable_codes(self, code_name):
        """Should mark transient vendor codes retryable even on 400."""
        parsed = parse_error(400, {"error": {"code": D365_ERROR_CODES[code_name], "message": "x"}})

        assert parsed.is_retryable

    def test_custom_retryable_statuses(self):
        """Should honor a custom retryable status set."""
        assert not parse_error(500, retryable_status_codes=frozenset({503})).is_retryable


class TestSanitizeMessage:
    """Tests for message sanitization."""

    def test_strips_guids(self):
        """Should replace GUIDs with [ID]."""
        assert sanitize_message("record 11111111-2222-3333-4444-555555555555 missing") == (
            "Record [ID] missing."
        )

    def test_strips_stack_and_dotnet_prefix(self):
        """Should drop stack frames and .NET exception prefixes."""
        message = "System.InvalidOperationException: bad thing\n   at Foo.Bar()\n   at Baz()"

        assert sanitize_message(message) == "Bad thing."

    def test_empty(self):
        """Should return a generic message for None."""
        assert sanitize_message(None) == "An unexpected error occurred."

    def test_safe_message(self):
        """Should expose the sanitized message on ParsedError."""
        parsed = parse_error(400, MOCK_D365_ERROR)

        assert "[ID]" in parsed.safe_message
        assert "11111111" not in parsed.safe_message


class TestHelpers:
    """Tests for field extraction and log formatting."""

    @pytest.mark.parametrize(
        "message,field",
        [
            ("Attribute 'tc_name' is missing", "tc_name"),
            ("tc_email is required", "tc_email"),
            ("Invalid property tc_score", "tc_score"),
            ("Something else happened", None),
        ],
    )
    def test_extract_field(self, message, field):
        """Should pull the offending field name out of common messages."""
        assert extract_field_from_error(message) == field

    def test_format_for_logging(self):
        """Should format a single log line."""
        text = format_error_for_logging(parse_error(429, {"error": {"message": "slow down"}}))

        assert text == "D365 Error: slow down | Status: 429 | Code: N/A | Retryable: Yes"


class TestExceptions:
    """Tests for D365Error types."""

    def test_d365_error_fields(self):
        """Should copy status, code and user message from the parsed error."""
        exc = D365Error(parse_error(404, {"error": {"code": "0x80040217", "message": "gone"}}))

        assert exc.status_code == 404
        assert exc.code == "0x80040217"
        assert exc.user_message == "Invalid relationship reference"
        assert not exc.is_retryable

    def test_transport_error(self):
        """Should map timeouts to 504 and other transport errors to 503."""
        assert D365TransportError("x", timed_out=True).status_code == 504
        assert D365TransportError("x").status_code == 503
        assert D365TransportError("x").is_retryable
