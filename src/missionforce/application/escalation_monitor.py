"""
Escalation Monitor

Looks at one mission on demand (a scheduler outside the engine decides when)
and either queues a follow-up, hands the mission to the user once the
follow-up budget is spent, or flags it at risk when its deadline is close.
The monitor never dispatches anything itself; a queued follow-up is run by
the step executor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from missionforce.application.audit import AuditTrail
from missionforce.application.context import EngineContext
from missionforce.application.persistence import load_mission, save_mission
from missionforce.application.state_machine import MissionStateMachine
from missionforce.core.domain.enums import ActionType, DeadlineWarning, MissionStatus, StepStatus
from missionforce.core.domain.mission import Mission, Step
from missionforce.core.utils.time import days_between

logger = structlog.get_logger(__name__)


def awaits_other_party(mission: Mission) -> bool:
    """True if the mission is waiting on a third party, even under an at_risk flag."""
    if mission.status == MissionStatus.WAITING_ON_OTHER:
        return True
    if mission.status != MissionStatus.AT_RISK:
        return False
    if mission.status_before_risk is not None:
        return mission.status_before_risk == MissionStatus.WAITING_ON_OTHER
    last = mission.last_executed_step()
    return (
        last is not None
        and last.action_type == ActionType.SEND_EMAIL
        and last.status == StepStatus.DONE
        and not mission.waiting_steps()
    )


def deadline_warning(deadline: datetime | None, now: datetime) -> DeadlineWarning:
    """Deadline proximity: overdue, due today (<1 day), due tomorrow (<2 days)."""
    if deadline is None:
        return DeadlineWarning.NONE
    days_until = days_between(now, deadline)
    if days_until < 0:
        return DeadlineWarning.OVERDUE
    if days_until < 1:
        return DeadlineWarning.DUE_TODAY
    if days_until < 2:
        return DeadlineWarning.DUE_TOMORROW
    return DeadlineWarning.NONE


@dataclass(frozen=True)
class EscalationReport:
    """What the monitor computed for a mission at ``now``."""

    days_since_activity: float
    deadline_warning: DeadlineWarning
    follow_up_limit_reached: bool
    should_escalate: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "days_since_activity": round(self.days_since_activity, 2),
            "deadline_warning": self.deadline_warning.value,
            "follow_up_limit_reached": self.follow_up_limit_reached,
            "should_escalate": self.should_escalate,
        }


class MonitorAction(str, Enum):
    """What the monitor did."""

    NONE = "none"
    SKIPPED = "skipped"
    NUDGED = "nudged"
    ESCALATED = "escalated"
    FLAGGED_AT_RISK = "flagged_at_risk"


@dataclass
class MonitorResult:
    mission: Mission
    report: EscalationReport | None
    action: MonitorAction

    @property
    def needs_execution(self) -> bool:
        return self.action == MonitorAction.NUDGED


def assess(mission: Mission, now: datetime, stale_after_days: float = 3.0) -> EscalationReport:
    """Compute staleness, deadline proximity and follow-up budget."""
    days_since = days_between(mission.last_activity_at, now)
    limit_reached = mission.nudge_count >= mission.max_nudges
    return EscalationReport(
        days_since_activity=days_since,
        deadline_warning=deadline_warning(mission.deadline, now),
        follow_up_limit_reached=limit_reached,
        should_escalate=days_since > stale_after_days and not limit_reached,
    )


class EscalationMonitor:
    """Queues follow-ups for stale missions and escalates exhausted ones."""

    def __init__(
        self,
        context: EngineContext,
        *,
        state_machine: MissionStateMachine | None = None,
        audit: AuditTrail | None = None,
    ) -> None:
        self._ctx = context
        self._sm = state_machine or MissionStateMachine(context.clock)
        self._audit = audit or AuditTrail(context.clock)
        self._logger = logger.bind(component="escalation_monitor")

    async def check(self, owner_id: str, mission_id: str) -> MonitorResult:
        """Run the monitor for one mission under its lock and persist the result."""
        async with self._ctx.locks.hold(owner_id, mission_id):
            mission = await load_mission(self._ctx.store, owner_id, mission_id)
            result = self.evaluate(mission)
            if result.action not in (MonitorAction.NONE, MonitorAction.SKIPPED):
                await save_mission(self._ctx.store, mission)
            return result

    def evaluate(self, mission: Mission) -> MonitorResult:
        """Apply the monitor's decision to an in-memory mission."""
        if mission.status.is_terminal:
            return MonitorResult(mission, None, MonitorAction.SKIPPED)

        now = self._ctx.clock()
        report = assess(mission, now, self._ctx.config.stale_after_days)
        log = self._logger.bind(mission_id=mission.id, **report.to_dict())
        waiting_on_other = awaits_other_party(mission)

        if waiting_on_other and report.should_escalate:
            self._queue_follow_up(mission, report)
            log.info("monitor.nudge_queued", nudge_count=mission.nudge_count)
            return MonitorResult(mission, report, MonitorAction.NUDGED)

        if waiting_on_other and report.follow_up_limit_reached:
            message = (
                f"No response after {mission.nudge_count} follow-up(s). "
                "How would you like to proceed?"
            )
            mission.add_thought(message)
            self._audit.record(
                mission,
                "escalation",
                extra={"message": message, "report": report.to_dict()},
            )
            self._sm.transition(mission, MissionStatus.WAITING_ON_USER, reason="follow_up_limit")
            log.info("monitor.escalated")
            return MonitorResult(mission, report, MonitorAction.ESCALATED)

        if (
            report.deadline_warning in (DeadlineWarning.DUE_TODAY, DeadlineWarning.OVERDUE)
            and mission.status != MissionStatus.AT_RISK
            and self._sm.can_transition(mission.status, MissionStatus.AT_RISK)
        ):
            mission.add_thought(f"Deadline is {report.deadline_warning.value.replace('_', ' ')}.")
            self._audit.record(mission, "at_risk", extra={"report": report.to_dict()})
            self._sm.transition(mission, MissionStatus.AT_RISK, reason=report.deadline_warning.value)
            log.info("monitor.flagged_at_risk")
            return MonitorResult(mission, report, MonitorAction.FLAGGED_AT_RISK)

        return MonitorResult(mission, report, MonitorAction.NONE)

    def _queue_follow_up(self, mission: Mission, report: EscalationReport) -> None:
        number = mission.nudge_count + 1
        step = Step(
            action_type=ActionType.DRAFT_REPLY,
            order=mission.next_order(),
            label=f"Follow-up #{number}",
            description=f"Follow up on: {mission.goal}",
            params={"follow_up": True, "nudge_number": number},
        )
        self._sm.append_steps(mission, [step])
        now = self._ctx.clock()
        mission.nudge_count = number
        mission.last_nudge_at = now
        self._sm.record_activity(mission)
        self._audit.record(
            mission,
            "nudge",
            extra={"step_id": step.id, "nudge_number": number, "report": report.to_dict()},
        )
        self._sm.resume(mission, reason="follow_up_queued")
