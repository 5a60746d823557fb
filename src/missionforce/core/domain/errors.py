"""Domain-specific exception types for Missionforce.

Step-level errors (tool unavailable, external API failure, timeout, missing
input) are captured on the failing step and route the mission to the user.
Mission-level errors (fatal invariant violations, unreachable persistence)
are the only ones that fail a mission outright.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class MissionforceError(Exception):
    """Base exception for Missionforce domain errors."""

    message: str
    code: str = "missionforce_error"
    details: Dict[str, Any] | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.details is None:
            self.details = {}


class StepError(MissionforceError):
    """Base for errors that fail a single step but not the mission."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "step_error",
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class ToolUnavailableError(StepError):
    """An integration is not connected (no calendar, no mailbox credentials)."""

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if tool_name:
            details.setdefault("tool_name", tool_name)
        self.tool_name = tool_name
        super().__init__(message, code="tool_unavailable", details=details)


class ExternalAPIError(StepError):
    """Rate limiting, auth expiry or a transient failure from a tool adapter."""

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        details: Dict[str, Any] | None = None,
        code: str = "external_api_error",
    ) -> None:
        details = dict(details or {})
        if tool_name:
            details.setdefault("tool_name", tool_name)
        self.tool_name = tool_name
        super().__init__(message, code=code, details=details)


class ToolTimeoutError(ExternalAPIError):
    """A tool adapter call exceeded its allotted time."""

    def __init__(
        self,
        message: str,
        *,
        tool_name: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, tool_name=tool_name, details=details, code="timeout")


class MissingInputError(StepError):
    """A step lacks the input it needs (e.g. no thread id to read)."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message, code="missing_input", details=details)


class PlanValidationError(MissionforceError):
    """The plan generator returned a malformed or unusable plan."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="plan_validation_error", details=details)


class InvalidTransitionError(MissionforceError):
    """A mission or step status change that the state machine forbids."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="invalid_transition", details=details)


class MissionNotFoundError(MissionforceError):
    """No mission with the given id exists for the owner."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="not_found", details=details)


class MissionClosedError(MissionforceError):
    """The mission is completed or failed; nothing more may be added or run."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="mission_closed", details=details)


class ConcurrencyConflictError(MissionforceError):
    """An optimistic version check failed while updating a mission."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="concurrency_conflict", details=details)


class FatalMissionError(MissionforceError):
    """Unrecoverable failure: persistence unreachable or an invariant broken."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="fatal", details=details)


class ConfigError(MissionforceError):
    """Error raised for configuration failures."""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="config_error", details=details)


def error_payload(
    error: BaseException, extra: Dict[str, Any] | None = None
) -> Dict[str, Any]:
    """Convert an exception into the payload stored on a step and its audit entry."""
    payload: Dict[str, Any] = {
        "error": str(error) or type(error).__name__,
        "error_type": type(error).__name__,
    }
    if isinstance(error, MissionforceError):
        payload["code"] = error.code
        payload["details"] = error.details or {}
    if extra:
        payload.update(extra)
    return payload
