"""
Unit tests for the autopilot policy engine

Tests verify:
- Fail-closed behavior without an enabled auto_send rule
- Conjunction of rule decisions
- Each rule type's semantics
- Rule scoping by mission references
- Evaluation has no side effects
"""

import copy
import itertools
from datetime import UTC, datetime

import pytest

from missionforce.application.policy.autopilot import (
    AutopilotPolicyEngine,
    EvaluationClock,
    can_auto_act,
    mentions_pricing,
)
from missionforce.core.domain.autopilot import AutopilotRule, ProposedAction
from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.domain.enums import RuleType
from missionforce.core.domain.mission import Mission


def at_hour(hour: int) -> EvaluationClock:
    return EvaluationClock(now=datetime(2026, 3, 2, hour, 30, tzinfo=UTC))


def rule(rule_type: RuleType, enabled: bool = True, **config) -> AutopilotRule:
    return AutopilotRule(rule_type=rule_type, config=config, enabled=enabled, owner_id="o")


@pytest.fixture
def mission():
    return Mission(owner_id="o", goal="follow up with Sarah")


@pytest.fixture
def followup():
    return ProposedAction(
        kind="draft_followup",
        recipients=("sarah@partner.example",),
        subject="Re: Contract review",
        content="Just checking in on the contract.",
    )


class TestFailClosed:
    def test_no_rules_denies(self, mission, followup):
        decision = can_auto_act([], followup, mission, at_hour(10))
        assert not decision.allowed
        assert decision.denied_by == (RuleType.AUTO_SEND,)

    def test_disabled_auto_send_denies(self, mission, followup):
        decision = can_auto_act(
            [rule(RuleType.AUTO_SEND, enabled=False)], followup, mission, at_hour(10)
        )
        assert not decision.allowed

    def test_auto_send_alone_allows(self, mission, followup):
        decision = can_auto_act([rule(RuleType.AUTO_SEND)], followup, mission, at_hour(10))
        assert decision.allowed
        assert decision.reasons == ()

    def test_without_auto_send_every_combination_denies(self, mission, followup):
        others = [
            rule(RuleType.FOLLOW_UP_LIMIT, max_follow_ups=10),
            rule(RuleType.NEW_CONTACT_APPROVAL, require_approval=False),
            rule(RuleType.TIME_WINDOW, start_hour=0, end_hour=24),
            rule(RuleType.PRICING_APPROVAL, require_approval=False),
        ]
        disabled_auto_send = [[], [rule(RuleType.AUTO_SEND, enabled=False)]]
        for size in range(len(others) + 1):
            for combo in itertools.combinations(others, size):
                for extra in disabled_auto_send:
                    for hour in (0, 10, 20):
                        decision = can_auto_act(
                            list(combo) + extra, followup, mission, at_hour(hour)
                        )
                        assert not decision.allowed


class TestTimeWindow:
    def test_outside_window_denies_even_with_auto_send(self, mission, followup):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.TIME_WINDOW, start_hour=9, end_hour=18)]
        decision = can_auto_act(rules, followup, mission, at_hour(20))
        assert not decision.allowed
        assert decision.denied_by == (RuleType.TIME_WINDOW,)
        assert "window" in decision.reasons[0]

    def test_inside_window_allows(self, mission, followup):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.TIME_WINDOW, start_hour=9, end_hour=18)]
        assert can_auto_act(rules, followup, mission, at_hour(9)).allowed
        assert not can_auto_act(rules, followup, mission, at_hour(18)).allowed

    def test_overnight_window(self, mission, followup):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.TIME_WINDOW, start_hour=22, end_hour=6)]
        assert can_auto_act(rules, followup, mission, at_hour(23)).allowed
        assert can_auto_act(rules, followup, mission, at_hour(2)).allowed
        assert not can_auto_act(rules, followup, mission, at_hour(12)).allowed

    def test_evaluated_on_owner_clock(self, mission, followup):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.TIME_WINDOW, start_hour=9, end_hour=18)]
        # 20:30 UTC is 12:30 in Los Angeles (PST, UTC-8 in early March).
        clock = EvaluationClock(
            now=datetime(2026, 3, 2, 20, 30, tzinfo=UTC), timezone="America/Los_Angeles"
        )
        assert can_auto_act(rules, followup, mission, clock).allowed


class TestOtherRules:
    def test_follow_up_limit_counts_follow_ups_already_sent(self, mission):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.FOLLOW_UP_LIMIT, max_follow_ups=2)]
        second = ProposedAction(kind="draft_followup", follow_ups_sent=1)
        assert can_auto_act(rules, second, mission, at_hour(10)).allowed
        third = ProposedAction(kind="draft_followup", follow_ups_sent=2)
        decision = can_auto_act(rules, third, mission, at_hour(10))
        assert decision.denied_by == (RuleType.FOLLOW_UP_LIMIT,)
        assert decision.reasons == ("Follow-up limit reached (2/2)",)

    def test_limit_of_one_allows_the_first_follow_up(self, mission):
        mission.nudge_count = 1
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.FOLLOW_UP_LIMIT, max_follow_ups=1)]
        first = ProposedAction(kind="draft_followup", follow_ups_sent=0)
        assert can_auto_act(rules, first, mission, at_hour(10)).allowed

    def test_new_contact_approval_denies_conservatively(self, mission, followup):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.NEW_CONTACT_APPROVAL, require_approval=True)]
        assert not can_auto_act(rules, followup, mission, at_hour(10)).allowed

        relaxed = [rule(RuleType.AUTO_SEND), rule(RuleType.NEW_CONTACT_APPROVAL, require_approval=False)]
        assert can_auto_act(relaxed, followup, mission, at_hour(10)).allowed

    def test_pricing_approval(self, mission):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.PRICING_APPROVAL, require_approval=True)]
        priced = ProposedAction(kind="send_email", subject="Quote", content="Our pricing is attached")
        plain = ProposedAction(kind="send_email", subject="Hello", content="Let's separate the topics")
        assert not can_auto_act(rules, priced, mission, at_hour(10)).allowed
        assert can_auto_act(rules, plain, mission, at_hour(10)).allowed

    def test_pricing_custom_keywords(self, mission):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.PRICING_APPROVAL, keywords=["discount"])]
        action = ProposedAction(kind="send_email", content="We can offer a discount")
        assert not can_auto_act(rules, action, mission, at_hour(10)).allowed

    def test_all_denials_are_reported(self, mission):
        followup = ProposedAction(kind="draft_followup", follow_ups_sent=5)
        rules = [
            rule(RuleType.AUTO_SEND),
            rule(RuleType.FOLLOW_UP_LIMIT, max_follow_ups=2),
            rule(RuleType.TIME_WINDOW, start_hour=9, end_hour=18),
        ]
        decision = can_auto_act(rules, followup, mission, at_hour(20))
        assert set(decision.denied_by) == {RuleType.FOLLOW_UP_LIMIT, RuleType.TIME_WINDOW}
        assert len(decision.reasons) == 2


class TestScopingAndPurity:
    def test_mission_rule_refs_limit_rules(self, mission, followup):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.TIME_WINDOW, start_hour=9, end_hour=18)]
        mission.autopilot_rule_refs = [RuleType.AUTO_SEND]
        assert can_auto_act(rules, followup, mission, at_hour(20)).allowed

        mission.autopilot_rule_refs = [RuleType.TIME_WINDOW]
        assert not can_auto_act(rules, followup, mission, at_hour(10)).allowed

    def test_evaluation_does_not_mutate_inputs(self, mission, followup):
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.FOLLOW_UP_LIMIT, max_follow_ups=1)]
        before_rules = [r.to_dict() for r in rules]
        before_mission = copy.deepcopy(mission.to_dict())
        can_auto_act(rules, followup, mission, at_hour(10))
        assert [r.to_dict() for r in rules] == before_rules
        assert mission.to_dict() == before_mission


class TestPolicyEngine:
    def test_engine_uses_configured_timezone(self, mission, followup):
        engine = AutopilotPolicyEngine(EngineConfig(owner_timezone="Asia/Tokyo"))
        rules = [rule(RuleType.AUTO_SEND), rule(RuleType.TIME_WINDOW, start_hour=9, end_hour=18)]
        # 01:00 UTC is 10:00 in Tokyo.
        now = datetime(2026, 3, 2, 1, 0, tzinfo=UTC)
        assert engine.evaluate(rules, followup, mission, now).allowed


@pytest.mark.parametrize(
    "text,expected",
    [
        ("What is the price?", True),
        ("Prices went up", True),
        ("Please send the invoice", True),
        ("Let's separate concerns", False),
        ("accurate numbers", False),
        ("", False),
    ],
)
def test_mentions_pricing(text, expected):
    assert mentions_pricing(text) is expected
