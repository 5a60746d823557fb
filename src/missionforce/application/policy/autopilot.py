"""Autopilot policy engine.

Decides whether a proposed action may run without human approval. The core
is the pure function :func:`can_auto_act`: a conjunction over the enabled
rules that apply to the mission, failing closed when ``auto_send`` is absent.
:class:`AutopilotPolicyEngine` wraps it with configuration and decision
logging and is called once per proposed action, right before execution.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

import structlog

from missionforce.core.domain.autopilot import (
    DEFAULT_PRICING_KEYWORDS,
    AutopilotRule,
    PolicyDecision,
    PolicyEffect,
    ProposedAction,
)
from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.domain.enums import RuleType
from missionforce.core.domain.mission import Mission
from missionforce.core.utils.time import local_hour

logger = structlog.get_logger(__name__)

# A rule check returns a denial reason, or None when the rule does not object.
RuleCheck = Callable[[AutopilotRule, ProposedAction, Mission, "EvaluationClock"], "str | None"]


class EvaluationClock:
    """The instant and owner clock a decision is evaluated against."""

    __slots__ = ("now", "timezone", "pricing_keywords")

    def __init__(
        self,
        now: datetime,
        timezone: str = "UTC",
        pricing_keywords: Sequence[str] = DEFAULT_PRICING_KEYWORDS,
    ) -> None:
        self.now = now
        self.timezone = timezone
        self.pricing_keywords = tuple(pricing_keywords)


def _pricing_pattern(keywords: Iterable[str]) -> re.Pattern[str]:
    words = "|".join(re.escape(k.lower()) for k in keywords if k)
    return re.compile(rf"\b(?:{words})s?\b", re.IGNORECASE)


def mentions_pricing(text: str, keywords: Sequence[str] = DEFAULT_PRICING_KEYWORDS) -> bool:
    """True if ``text`` contains a pricing keyword as a whole word."""
    if not text or not keywords:
        return False
    return _pricing_pattern(keywords).search(text) is not None


def _check_auto_send(
    rule: AutopilotRule, action: ProposedAction, mission: Mission, clock: EvaluationClock
) -> str | None:
    return None


def _check_follow_up_limit(
    rule: AutopilotRule, action: ProposedAction, mission: Mission, clock: EvaluationClock
) -> str | None:
    limit = int(rule.config.get("max_follow_ups", 2))
    if action.follow_ups_sent >= limit:
        return f"Follow-up limit reached ({action.follow_ups_sent}/{limit})"
    return None


def _check_new_contact(
    rule: AutopilotRule, action: ProposedAction, mission: Mission, clock: EvaluationClock
) -> str | None:
    # No contact-history lookup is wired in, so every recipient counts as new.
    if rule.config.get("require_approval", True) and action.recipients:
        return "Recipients without prior interaction history require approval"
    return None


def _check_time_window(
    rule: AutopilotRule, action: ProposedAction, mission: Mission, clock: EvaluationClock
) -> str | None:
    start = int(rule.config.get("start_hour", 9))
    end = int(rule.config.get("end_hour", 18))
    hour = local_hour(clock.now, rule.config.get("timezone") or clock.timezone)
    if start < end:
        inside = start <= hour < end
    else:
        inside = hour >= start or hour < end
    if not inside:
        return f"Outside the allowed sending window ({start:02d}:00-{end:02d}:00, now {hour:02d}:00)"
    return None


def _check_pricing(
    rule: AutopilotRule, action: ProposedAction, mission: Mission, clock: EvaluationClock
) -> str | None:
    if not rule.config.get("require_approval", True):
        return None
    keywords = rule.config.get("keywords") or clock.pricing_keywords
    if mentions_pricing(f"{action.subject}\n{action.content}", keywords):
        return "Content mentions pricing or payment terms"
    return None


RULE_CHECKS: dict[RuleType, RuleCheck] = {
    RuleType.AUTO_SEND: _check_auto_send,
    RuleType.FOLLOW_UP_LIMIT: _check_follow_up_limit,
    RuleType.NEW_CONTACT_APPROVAL: _check_new_contact,
    RuleType.TIME_WINDOW: _check_time_window,
    RuleType.PRICING_APPROVAL: _check_pricing,
}


def applicable_rules(rules: Iterable[AutopilotRule], mission: Mission) -> list[AutopilotRule]:
    """Enabled rules that the mission references (all of them when unrestricted)."""
    refs = mission.autopilot_rule_refs
    return [
        rule
        for rule in rules
        if rule.enabled and (refs is None or rule.rule_type in refs)
    ]


def can_auto_act(
    rules: Iterable[AutopilotRule],
    action: ProposedAction,
    mission: Mission,
    clock: EvaluationClock,
) -> PolicyDecision:
    """Evaluate the autopilot rules for one proposed action.

    Pure function of (rules, action, mission, clock): no state is read or
    written beyond the arguments.

    Args:
        rules: The owner's rules; disabled ones are ignored
        action: What the engine wants to do
        mission: The mission the action belongs to (for rule scoping)
        clock: Evaluation instant, owner timezone and pricing keywords

    Returns:
        ALLOW only if ``auto_send`` is enabled and no other enabled rule denies.
    """
    active = applicable_rules(rules, mission)
    evaluated = tuple(dict.fromkeys(rule.rule_type for rule in active))
    reasons: list[str] = []
    denied_by: list[RuleType] = []

    if RuleType.AUTO_SEND not in evaluated:
        reasons.append("Autopilot sending is not enabled (auto_send rule missing or disabled)")
        denied_by.append(RuleType.AUTO_SEND)

    for rule in active:
        reason = RULE_CHECKS[rule.rule_type](rule, action, mission, clock)
        if reason:
            reasons.append(reason)
            if rule.rule_type not in denied_by:
                denied_by.append(rule.rule_type)

    if reasons:
        return PolicyDecision(
            effect=PolicyEffect.DENY,
            reasons=tuple(reasons),
            denied_by=tuple(denied_by),
            evaluated=evaluated,
        )
    return PolicyDecision(effect=PolicyEffect.ALLOW, evaluated=evaluated)


class AutopilotPolicyEngine:
    """Configured front end for :func:`can_auto_act` with decision logging."""

    def __init__(self, config: EngineConfig | None = None) -> None:
        self.config = config or EngineConfig()
        self._logger = logger.bind(component="autopilot_policy")

    def evaluate(
        self,
        rules: Iterable[AutopilotRule],
        action: ProposedAction,
        mission: Mission,
        now: datetime,
    ) -> PolicyDecision:
        """Evaluate a proposed action against the owner's rules.

        Args:
            rules: The owner's autopilot rules
            action: The proposed action
            mission: The mission proposing it
            now: Evaluation instant

        Returns:
            PolicyDecision indicating whether the action may run unattended
        """
        clock = EvaluationClock(
            now=now,
            timezone=self.config.owner_timezone,
            pricing_keywords=self.config.pricing_keywords,
        )
        decision = can_auto_act(rules, action, mission, clock)
        self._logger.info(
            "policy.decision",
            mission_id=mission.id,
            action=action.kind,
            allowed=decision.allowed,
            denied_by=[r.value for r in decision.denied_by],
        )
        return decision
