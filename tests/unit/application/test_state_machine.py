"""
Unit tests for MissionStateMachine

Tests verify:
- Allowed and forbidden mission transitions
- Terminal states reject changes
- At most one running step
- Outcome application and follow-on insertion
- Settling once no pending step remains
"""

import pytest

from missionforce.application.state_machine import MissionStateMachine, derive_status
from missionforce.core.domain.enums import ActionType, MissionStatus, StepStatus
from missionforce.core.domain.errors import (
    ExternalAPIError,
    FatalMissionError,
    InvalidTransitionError,
    MissionClosedError,
)
from missionforce.core.domain.mission import Mission, Step
from missionforce.core.domain.outcome import StepOutcome


@pytest.fixture
def sm(clock):
    return MissionStateMachine(clock)


def _mission(*action_types: ActionType, status=MissionStatus.EXECUTING) -> Mission:
    mission = Mission(owner_id="o", goal="g", status=status)
    mission.steps = [Step(action_type=a, order=i) for i, a in enumerate(action_types, start=1)]
    return mission


class TestMissionTransitions:
    def test_happy_path(self, sm):
        mission = Mission(owner_id="o", goal="g")
        assert sm.transition(mission, MissionStatus.THINKING)
        mission.steps.append(Step(action_type=ActionType.DONE, order=1))
        assert sm.transition(mission, MissionStatus.EXECUTING)
        assert sm.transition(mission, MissionStatus.WAITING_ON_OTHER)
        assert sm.transition(mission, MissionStatus.EXECUTING)
        assert sm.transition(mission, MissionStatus.COMPLETED)

    def test_same_state_is_noop(self, sm):
        mission = _mission(ActionType.DONE)
        assert sm.transition(mission, MissionStatus.EXECUTING) is False

    def test_draft_cannot_skip_planning(self, sm):
        mission = Mission(owner_id="o", goal="g")
        with pytest.raises(InvalidTransitionError):
            sm.transition(mission, MissionStatus.EXECUTING)

    def test_executing_requires_steps(self, sm):
        mission = Mission(owner_id="o", goal="g", status=MissionStatus.THINKING)
        with pytest.raises(InvalidTransitionError):
            sm.transition(mission, MissionStatus.EXECUTING)

    def test_waiting_on_other_only_from_execution(self, sm):
        mission = _mission(ActionType.DONE, status=MissionStatus.WAITING_ON_USER)
        with pytest.raises(InvalidTransitionError):
            sm.transition(mission, MissionStatus.WAITING_ON_OTHER)

    @pytest.mark.parametrize("terminal", [MissionStatus.COMPLETED, MissionStatus.FAILED])
    def test_terminal_states_are_closed(self, sm, terminal):
        mission = _mission(ActionType.DONE, status=terminal)
        with pytest.raises(MissionClosedError):
            sm.transition(mission, MissionStatus.EXECUTING)
        with pytest.raises(MissionClosedError):
            sm.append_steps(mission, [Step(action_type=ActionType.DONE, order=0)])

    @pytest.mark.parametrize(
        "status",
        [s for s in MissionStatus if not s.is_terminal],
    )
    def test_any_open_state_can_fail(self, sm, status):
        mission = _mission(ActionType.DONE, status=status)
        sm.fail(mission, FatalMissionError("disk gone"))
        assert mission.status == MissionStatus.FAILED
        assert mission.outcome_log == "Failed: disk gone"

    def test_at_risk_reverts_to_executing(self, sm):
        mission = _mission(ActionType.DONE, status=MissionStatus.AT_RISK)
        sm.resume(mission, reason="fresh activity")
        assert mission.status == MissionStatus.EXECUTING

    def test_close_sets_outcome(self, sm):
        mission = _mission(ActionType.DONE, status=MissionStatus.WAITING_ON_OTHER)
        sm.close(mission, "Sarah signed")
        assert mission.status == MissionStatus.COMPLETED
        assert mission.outcome_log == "Sarah signed"


class TestStepTransitions:
    def test_only_one_running_step(self, sm):
        mission = _mission(ActionType.SEARCH_EMAIL, ActionType.READ_THREAD)
        first, second = mission.ordered_steps()
        sm.start_step(mission, first)
        with pytest.raises(FatalMissionError):
            sm.start_step(mission, second)
        assert [s.id for s in mission.running_steps()] == [first.id]

    def test_done_step_cannot_restart(self, sm):
        mission = _mission(ActionType.SEARCH_EMAIL)
        step = mission.steps[0]
        sm.start_step(mission, step)
        sm.apply_outcome(mission, step, StepOutcome.succeeded({"count": 0}))
        with pytest.raises(FatalMissionError):
            sm.start_step(mission, step)

    def test_failed_outcome_routes_to_user(self, sm):
        mission = _mission(ActionType.READ_THREAD, ActionType.DRAFT_REPLY)
        step = mission.ordered_steps()[0]
        sm.start_step(mission, step)
        sm.apply_outcome(mission, step, StepOutcome.failed(ExternalAPIError("rate limited")))
        assert step.status == StepStatus.FAILED
        assert step.error == "rate limited"
        assert step.error_details["code"] == "external_api_error"
        assert mission.status == MissionStatus.WAITING_ON_USER

    def test_outcome_links_and_records_activity(self, sm, clock):
        mission = _mission(ActionType.SEARCH_EMAIL)
        step = mission.steps[0]
        sm.start_step(mission, step)
        clock.advance(minutes=5)
        sm.apply_outcome(
            mission,
            step,
            StepOutcome.succeeded({"count": 1}, thread_ids=("t1",), email_ids=("m1",)),
        )
        assert mission.linked_thread_ids == ["t1"]
        assert mission.linked_email_ids == ["m1"]
        assert mission.last_activity_at == clock()
        assert mission.status == MissionStatus.EXECUTING

    def test_follow_on_steps_inserted_after_current(self, sm):
        mission = _mission(ActionType.DRAFT_REPLY, ActionType.SCHEDULE_CHECK)
        draft, check = mission.ordered_steps()
        sm.start_step(mission, draft)
        send = Step(action_type=ActionType.SEND_EMAIL, order=0)
        sm.apply_outcome(mission, draft, StepOutcome.succeeded({}, follow_on=[send]))
        assert [s.action_type for s in mission.ordered_steps()] == [
            ActionType.DRAFT_REPLY,
            ActionType.SEND_EMAIL,
            ActionType.SCHEDULE_CHECK,
        ]
        assert check.order == 3

    def test_cannot_insert_before_executed_steps(self, sm):
        mission = _mission(ActionType.DRAFT_REPLY, ActionType.SEND_EMAIL)
        draft, send = mission.ordered_steps()
        draft.status = StepStatus.DONE
        send.status = StepStatus.FAILED
        with pytest.raises(InvalidTransitionError):
            sm.insert_after(mission, draft, [Step(action_type=ActionType.SEND_EMAIL, order=0)])


class TestSettle:
    def test_all_done_completes(self, sm):
        mission = _mission(ActionType.DONE)
        mission.steps[0].status = StepStatus.DONE
        assert sm.settle(mission, awaiting_other=False) == MissionStatus.COMPLETED
        assert mission.outcome_log

    def test_sent_message_waits_on_other(self, sm):
        mission = _mission(ActionType.SEND_EMAIL)
        mission.steps[0].status = StepStatus.DONE
        assert sm.settle(mission, awaiting_other=True) == MissionStatus.WAITING_ON_OTHER

    def test_last_failure_waits_on_user(self, sm):
        mission = _mission(ActionType.SEARCH_EMAIL)
        mission.steps[0].status = StepStatus.FAILED
        assert sm.settle(mission, awaiting_other=True) == MissionStatus.WAITING_ON_USER


class TestDeriveStatus:
    def test_derivations(self):
        mission = _mission(ActionType.SEARCH_EMAIL, ActionType.SEND_EMAIL)
        search, send = mission.ordered_steps()
        assert derive_status(Mission(owner_id="o", goal="g")) == MissionStatus.DRAFT
        assert derive_status(mission) == MissionStatus.EXECUTING
        search.status = StepStatus.DONE
        send.status = StepStatus.WAITING
        assert derive_status(mission) == MissionStatus.WAITING_ON_USER
        send.status = StepStatus.DONE
        assert derive_status(mission) == MissionStatus.COMPLETED
