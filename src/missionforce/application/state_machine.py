"""
Mission State Machine

The only place where ``Mission.status`` and ``Step.status`` change. Step
handlers describe what happened through a StepOutcome; the executor and the
escalation monitor ask this module to apply it.

Mission transitions::

    draft -> thinking -> executing -> {waiting_on_user, waiting_on_other,
                                       at_risk, completed, failed}

``waiting_on_user``, ``waiting_on_other`` and ``at_risk`` return to
``executing`` when fresh input arrives. ``completed`` and ``failed`` are
terminal. ``at_risk`` overlays another status, which is kept in
``Mission.status_before_risk`` until the mission leaves ``at_risk``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime

import structlog

from missionforce.core.domain.enums import MissionStatus, StepStatus
from missionforce.core.domain.errors import (
    FatalMissionError,
    InvalidTransitionError,
    MissionClosedError,
    error_payload,
)
from missionforce.core.domain.mission import Mission, Step
from missionforce.core.domain.outcome import StepOutcome
from missionforce.core.utils.time import utc_now

logger = structlog.get_logger(__name__)

_OPEN_TARGETS = frozenset(
    {
        MissionStatus.EXECUTING,
        MissionStatus.WAITING_ON_USER,
        MissionStatus.AT_RISK,
        MissionStatus.COMPLETED,
        MissionStatus.FAILED,
    }
)

MISSION_TRANSITIONS: dict[MissionStatus, frozenset[MissionStatus]] = {
    MissionStatus.DRAFT: frozenset(
        {MissionStatus.THINKING, MissionStatus.AT_RISK, MissionStatus.FAILED}
    ),
    MissionStatus.THINKING: frozenset(
        {
            MissionStatus.EXECUTING,
            MissionStatus.WAITING_ON_USER,
            MissionStatus.AT_RISK,
            MissionStatus.FAILED,
        }
    ),
    MissionStatus.EXECUTING: _OPEN_TARGETS | {MissionStatus.WAITING_ON_OTHER},
    MissionStatus.WAITING_ON_USER: _OPEN_TARGETS,
    MissionStatus.WAITING_ON_OTHER: _OPEN_TARGETS,
    MissionStatus.AT_RISK: _OPEN_TARGETS,
    MissionStatus.COMPLETED: frozenset(),
    MissionStatus.FAILED: frozenset(),
}

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.WAITING}),
    # RUNNING -> PENDING only when recovering an interrupted idempotent step.
    StepStatus.RUNNING: frozenset(
        {StepStatus.DONE, StepStatus.FAILED, StepStatus.WAITING, StepStatus.PENDING}
    ),
    StepStatus.WAITING: frozenset({StepStatus.PENDING}),
    StepStatus.DONE: frozenset(),
    StepStatus.FAILED: frozenset(),
}


def derive_status(mission: Mission) -> MissionStatus:
    """Mission status implied by its steps alone.

    Useful as a consistency check: the stored status can be an overlay
    (``at_risk``, ``waiting_on_other``) but never contradicts the steps.
    """
    steps = mission.ordered_steps()
    if not steps:
        return MissionStatus.DRAFT
    if any(s.status == StepStatus.RUNNING for s in steps):
        return MissionStatus.EXECUTING
    if any(s.status == StepStatus.WAITING for s in steps):
        return MissionStatus.WAITING_ON_USER
    last = mission.last_executed_step()
    if last is not None and last.status == StepStatus.FAILED:
        return MissionStatus.WAITING_ON_USER
    if any(s.status == StepStatus.PENDING for s in steps):
        return MissionStatus.EXECUTING
    return MissionStatus.COMPLETED


class MissionStateMachine:
    """Applies validated status transitions to missions and their steps."""

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._logger = logger.bind(component="state_machine")

    # ------------------------------------------------------------------
    # Mission transitions
    # ------------------------------------------------------------------

    @staticmethod
    def can_transition(current: MissionStatus, target: MissionStatus) -> bool:
        return current == target or target in MISSION_TRANSITIONS[current]

    def ensure_open(self, mission: Mission) -> None:
        """Raise MissionClosedError if the mission is completed or failed."""
        if mission.status.is_terminal:
            raise MissionClosedError(
                f"Mission {mission.id} is {mission.status.value}",
                details={"mission_id": mission.id, "status": mission.status.value},
            )

    def transition(self, mission: Mission, target: MissionStatus, *, reason: str = "") -> bool:
        """Move the mission to ``target``.

        Returns:
            True if the status changed, False for a same-state no-op

        Raises:
            MissionClosedError: The mission is terminal
            InvalidTransitionError: The move is not in the transition table
        """
        current = mission.status
        if current == target:
            return False
        self.ensure_open(mission)
        if target not in MISSION_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot move mission from {current.value} to {target.value}",
                details={"mission_id": mission.id, "from": current.value, "to": target.value},
            )
        if target == MissionStatus.EXECUTING and not mission.steps:
            raise InvalidTransitionError(
                "A mission needs at least one step before it can execute",
                details={"mission_id": mission.id},
            )
        mission.status_before_risk = current if target == MissionStatus.AT_RISK else None
        mission.status = target
        mission.updated_at = self._clock()
        self._logger.info(
            "mission.transition",
            mission_id=mission.id,
            from_status=current.value,
            to_status=target.value,
            reason=reason,
        )
        return True

    def resume(self, mission: Mission, *, reason: str) -> bool:
        """Return a waiting, at-risk or freshly planned mission to ``executing``."""
        return self.transition(mission, MissionStatus.EXECUTING, reason=reason)

    def fail(self, mission: Mission, error: BaseException) -> None:
        """Fail a mission after an unrecoverable error."""
        if mission.status.is_terminal:
            return
        mission.add_thought(f"Mission failed: {error}")
        mission.outcome_log = f"Failed: {error}"
        self.transition(mission, MissionStatus.FAILED, reason=type(error).__name__)

    def close(self, mission: Mission, outcome: str) -> None:
        """Explicitly complete a mission with an outcome summary."""
        self.ensure_open(mission)
        if mission.running_steps():
            raise InvalidTransitionError(
                "Cannot close a mission while a step is running",
                details={"mission_id": mission.id},
            )
        mission.outcome_log = outcome
        self.transition(mission, MissionStatus.COMPLETED, reason="closed")

    def settle(self, mission: Mission, *, awaiting_other: bool) -> MissionStatus:
        """Pick the resting status once the executor has no pending step left."""
        target = derive_status(mission)
        if target == MissionStatus.COMPLETED and awaiting_other:
            target = MissionStatus.WAITING_ON_OTHER
        if target == MissionStatus.COMPLETED and not mission.outcome_log:
            mission.outcome_log = "All steps completed"
        self.transition(mission, target, reason="settled")
        return mission.status

    def record_activity(self, mission: Mission) -> None:
        mission.last_activity_at = self._clock()

    # ------------------------------------------------------------------
    # Step transitions
    # ------------------------------------------------------------------

    def _move_step(self, mission: Mission, step: Step, target: StepStatus) -> None:
        if target not in STEP_TRANSITIONS[step.status]:
            raise FatalMissionError(
                f"Step {step.id} cannot move from {step.status.value} to {target.value}",
                details={"mission_id": mission.id, "step_id": step.id},
            )
        step.status = target

    def start_step(self, mission: Mission, step: Step) -> None:
        """Mark ``step`` running, enforcing a single running step per mission."""
        self.ensure_open(mission)
        others = [s.id for s in mission.running_steps() if s.id != step.id]
        if others:
            raise FatalMissionError(
                "Two steps racing to running",
                details={"mission_id": mission.id, "step_id": step.id, "running": others},
            )
        self._move_step(mission, step, StepStatus.RUNNING)
        step.started_at = self._clock()
        step.error = None
        step.error_details = None

    def requeue_step(self, mission: Mission, step: Step) -> None:
        """Put a waiting (or interrupted idempotent) step back in the queue."""
        self._move_step(mission, step, StepStatus.PENDING)
        step.started_at = None
        step.completed_at = None

    def fail_step(self, mission: Mission, step: Step, error: BaseException) -> None:
        """Mark a step failed without going through a handler outcome."""
        self._move_step(mission, step, StepStatus.FAILED)
        step.error = str(error)
        step.error_details = error_payload(error)
        step.completed_at = self._clock()

    def apply_outcome(self, mission: Mission, step: Step, outcome: StepOutcome) -> None:
        """Record a handler's outcome on the step and the mission.

        Links references, inserts follow-on steps and, when the outcome asks for
        the user, moves the mission to ``waiting_on_user``.
        """
        self._move_step(mission, step, outcome.status)
        step.result = outcome.result
        step.completed_at = self._clock()
        if outcome.error is not None:
            step.error = str(outcome.error) or type(outcome.error).__name__
            step.error_details = error_payload(outcome.error)

        for thread_id in outcome.thread_ids:
            mission.link_thread(thread_id)
        for email_id in outcome.email_ids:
            mission.link_email(email_id)
        if outcome.next_check_at is not None:
            mission.next_check_at = outcome.next_check_at
        if outcome.thought:
            mission.add_thought(outcome.thought)
        if outcome.follow_on:
            self.insert_after(mission, step, outcome.follow_on)
        self.record_activity(mission)

        if outcome.stops_loop:
            self.transition(mission, MissionStatus.WAITING_ON_USER, reason=f"step_{step.status.value}")

    def insert_after(self, mission: Mission, anchor: Step, new_steps: Iterable[Step]) -> None:
        """Insert steps directly after ``anchor``, shifting later steps down."""
        self.ensure_open(mission)
        new_steps = list(new_steps)
        if not new_steps:
            return
        later_executed = [
            s.id for s in mission.steps if s.order > anchor.order and s.status.is_terminal
        ]
        if later_executed:
            raise InvalidTransitionError(
                "Cannot insert steps before steps that already ran",
                details={"mission_id": mission.id, "step_ids": later_executed},
            )
        shift = len(new_steps)
        for existing in mission.steps:
            if existing.order > anchor.order:
                existing.order += shift
        for offset, new_step in enumerate(new_steps, start=1):
            new_step.order = anchor.order + offset
            mission.steps.append(new_step)

    def append_steps(self, mission: Mission, new_steps: Iterable[Step]) -> None:
        """Append steps at the end of the sequence."""
        self.ensure_open(mission)
        for new_step in new_steps:
            new_step.order = mission.next_order()
            mission.steps.append(new_step)
