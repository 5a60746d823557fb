"""Core domain models for Missionforce."""

from missionforce.core.domain.autopilot import (
    AutopilotRule,
    PolicyDecision,
    PolicyEffect,
    ProposedAction,
)
from missionforce.core.domain.enums import (
    ActionType,
    DeadlineWarning,
    MissionStatus,
    ResultKind,
    RiskFlag,
    RuleType,
    StepStatus,
)
from missionforce.core.domain.mission import AuditEntry, Mission, Step
from missionforce.core.domain.outcome import StepOutcome
from missionforce.core.domain.suggestion import MissionSuggestion

__all__ = [
    "ActionType",
    "AuditEntry",
    "AutopilotRule",
    "DeadlineWarning",
    "Mission",
    "MissionStatus",
    "MissionSuggestion",
    "PolicyDecision",
    "PolicyEffect",
    "ProposedAction",
    "ResultKind",
    "RiskFlag",
    "RuleType",
    "Step",
    "StepOutcome",
    "StepStatus",
]
