"""Error taxonomy mapper tests."""

from __future__ import annotations

import httpx
import pytest
from github_lean_mcp.errors import (
    ErrorKind,
    SafeError,
    failure_to_result,
    internal_error,
    is_retriable_status,
    map_error,
)
from github_lean_mcp.rate import Quota


@pytest.mark.parametrize(
    ("status", "retriable"),
    [(400, False), (401, False), (404, False), (422, False), (429, True), (500, True), (502, True), (599, True)],
)
def test_numeric_status_maps_to_http_code(status: int, retriable: bool) -> None:
    record = map_error({"status": status, "message": "boom"})
    assert record.code == f"HTTP_{status}"
    assert record.retriable is retriable
    assert record.kind is ErrorKind.HTTP_STATUS
    assert record.message == "boom"


def test_status_nested_in_response_is_used() -> None:
    record = map_error({"response": {"status": 503}})
    assert record.code == "HTTP_503"
    assert record.retriable is True


def test_integral_float_status_counts_as_numeric() -> None:
    record = map_error({"status": 503.0})
    assert record.code == "HTTP_503"
    assert record.retriable is True
    assert map_error({"status": 503.5}).code == "UNKNOWN"


def test_digit_string_status_counts_as_numeric() -> None:
    record = map_error({"status": "404"})
    assert record.code == "HTTP_404"


def test_literal_status_is_upper_cased_and_never_retriable() -> None:
    record = map_error({"status": "not_found", "message": "Could not resolve"})
    assert record.code == "NOT_FOUND"
    assert record.kind is ErrorKind.STATUS_LITERAL
    assert record.retriable is False


def test_code_field_is_the_last_status_signal() -> None:
    assert map_error({"code": "ECONNRESET"}).code == "ECONNRESET"


def test_transport_exception_maps_to_type_name() -> None:
    record = map_error(httpx.ConnectError("connection refused"))
    assert record.code == "CONNECTERROR"
    assert record.kind is ErrorKind.ERROR_TYPE
    assert record.retriable is False
    assert record.message == "connection refused"


def test_named_error_record_maps_to_name() -> None:
    assert map_error({"name": "AbortError"}).code == "ABORTERROR"


def test_unknown_failure() -> None:
    record = map_error(object())
    assert record.code == "UNKNOWN"
    assert record.kind is ErrorKind.UNKNOWN
    assert record.message == "Unknown error"
    assert record.retriable is False


def test_exception_without_message_gets_default_message() -> None:
    record = map_error(ValueError())
    assert record.code == "VALUEERROR"
    assert record.message == "Unknown error"


def test_safe_error_codes() -> None:
    assert map_error(SafeError(code="Validation", message="bad")).code == "VALIDATION"
    not_found = map_error(SafeError(code="GitHub", message="Not Found", status_code=404))
    assert not_found.code == "HTTP_404"
    assert not_found.message == "Not Found"


def test_safe_error_hint_is_appended_to_message() -> None:
    record = map_error(SafeError(code="GitHub", message="GitHub request failed", hint="Bad credentials", status_code=401))
    assert record.message == "GitHub request failed: Bad credentials"


def test_message_text_never_influences_retriability() -> None:
    assert map_error({"status": 400, "message": "please retry later, timeout"}).retriable is False
    assert map_error({"status": "RATE_LIMITED", "message": "rate limit"}).retriable is False


def test_is_retriable_status() -> None:
    assert is_retriable_status(None) is False
    assert is_retriable_status(429) is True
    assert is_retriable_status(600) is False


def test_failure_envelope_carries_rate_and_no_payload() -> None:
    exc = SafeError(code="GitHub", message="GitHub rate limit exceeded", status_code=403, rate=Quota(remaining=0, used=5000))
    result = failure_to_result(exc)
    assert result == {
        "error": {"code": "HTTP_403", "message": "GitHub rate limit exceeded", "retriable": False},
        "meta": {"rate": {"remaining": 0, "used": 5000}},
    }
    assert "items" not in result
    assert "item" not in result


def test_failure_envelope_without_rate_has_no_meta() -> None:
    result = failure_to_result(SafeError(code="Validation", message="Missing required field: owner"))
    assert set(result) == {"error"}


def test_internal_error_envelope() -> None:
    assert internal_error("Tool execution failed") == {
        "error": {"code": "INTERNAL", "message": "Tool execution failed", "retriable": False}
    }
