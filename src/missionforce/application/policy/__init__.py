"""Autopilot policy engine."""

from missionforce.application.policy.autopilot import (
    AutopilotPolicyEngine,
    EvaluationClock,
    applicable_rules,
    can_auto_act,
    mentions_pricing,
)

__all__ = [
    "AutopilotPolicyEngine",
    "EvaluationClock",
    "applicable_rules",
    "can_auto_act",
    "mentions_pricing",
]
