"""Unit tests for the error taxonomy."""

from missionforce.core.domain.errors import (
    ExternalAPIError,
    MissionforceError,
    StepError,
    ToolTimeoutError,
    ToolUnavailableError,
    error_payload,
)


def test_timeout_is_an_external_api_error():
    error = ToolTimeoutError("slow", tool_name="send_email", timeout_seconds=2)
    assert isinstance(error, ExternalAPIError)
    assert isinstance(error, StepError)
    assert error.code == "timeout"
    assert error.details == {"timeout_seconds": 2, "tool_name": "send_email"}


def test_error_payload_for_domain_error():
    payload = error_payload(ToolUnavailableError("No calendar", tool_name="get_availability"))
    assert payload == {
        "error": "No calendar",
        "error_type": "ToolUnavailableError",
        "code": "tool_unavailable",
        "details": {"tool_name": "get_availability"},
    }


def test_error_payload_for_plain_exception():
    payload = error_payload(RuntimeError("boom"), extra={"step_id": "s1"})
    assert payload == {"error": "boom", "error_type": "RuntimeError", "step_id": "s1"}


def test_base_error_str():
    assert str(MissionforceError("bad")) == "bad"
