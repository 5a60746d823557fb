"""
Mission Engine

Facade over planning, execution, escalation and rule management. Each
operation is owner-scoped and serialized per mission through the engine's
lock registry; long runs release the lock only between operations, never
mid-step.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from missionforce.application.audit import AuditTrail
from missionforce.application.context import EngineContext
from missionforce.application.escalation_monitor import EscalationMonitor, MonitorResult
from missionforce.application.mission_detector import MissionDetector
from missionforce.application.persistence import load_mission, save_mission
from missionforce.application.plan_builder import PlanBuilder
from missionforce.application.policy.autopilot import AutopilotPolicyEngine
from missionforce.application.state_machine import MissionStateMachine
from missionforce.application.step_executor import StepExecutor
from missionforce.core.domain.autopilot import AutopilotRule, validate_rule_config
from missionforce.core.domain.enums import (
    ActionType,
    MissionStatus,
    RuleType,
    StepStatus,
)
from missionforce.core.domain.errors import (
    ConfigError,
    ExternalAPIError,
    InvalidTransitionError,
    MissingInputError,
    ToolTimeoutError,
)
from missionforce.core.domain.mission import Mission, Step
from missionforce.core.domain.queries import is_at_risk, is_due_today
from missionforce.core.domain.reply import ApprovalPayload
from missionforce.core.domain.suggestion import MissionSuggestion
from missionforce.core.interfaces.persistence import MissionFilters

logger = structlog.get_logger(__name__)

DEFAULT_APPROVER = "user"

_ACTIVE = frozenset({MissionStatus.DRAFT, MissionStatus.THINKING, MissionStatus.EXECUTING})
_WAITING = frozenset({MissionStatus.WAITING_ON_USER, MissionStatus.WAITING_ON_OTHER})
_MEETING_OVERRIDES = ("slot", "title", "attendees", "location")


@dataclass
class Dashboard:
    """Missions bucketed the way the owner triages them."""

    due_today: list[Mission] = field(default_factory=list)
    waiting: list[Mission] = field(default_factory=list)
    at_risk: list[Mission] = field(default_factory=list)
    active: list[Mission] = field(default_factory=list)
    completed: list[Mission] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            "due_today": len(self.due_today),
            "waiting": len(self.waiting),
            "at_risk": len(self.at_risk),
            "active": len(self.active),
            "completed": len(self.completed),
        }


class MissionEngine:
    """Entry point for creating, running, approving and monitoring missions."""

    def __init__(self, context: EngineContext) -> None:
        self._ctx = context
        self._sm = MissionStateMachine(context.clock)
        self._audit = AuditTrail(context.clock)
        self._policy = AutopilotPolicyEngine(context.config)
        self._planner = PlanBuilder(context.plan_generator, context.config)
        self._executor = StepExecutor(
            context, state_machine=self._sm, audit=self._audit, policy=self._policy
        )
        self._monitor = EscalationMonitor(context, state_machine=self._sm, audit=self._audit)
        self._detector = MissionDetector(context.tools, context.mission_suggester, context.config)
        self._cancel_events: dict[tuple[str, str], asyncio.Event] = {}
        self._logger = logger.bind(component="mission_engine")

    @property
    def context(self) -> EngineContext:
        return self._ctx

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_mission(
        self,
        owner_id: str,
        goal: str,
        *,
        success_condition: str | None = None,
        thread_id: str | None = None,
        linked_thread_ids: Iterable[str] = (),
        linked_email_ids: Iterable[str] = (),
        deadline: datetime | None = None,
        max_nudges: int | None = None,
        autopilot_rule_refs: Iterable[RuleType | str] | None = None,
    ) -> Mission:
        """Create a mission and plan it.

        The mission passes through ``draft`` and ``thinking`` and ends in
        ``executing`` with a non-empty plan, or in ``waiting_on_user`` when the
        plan generator was unsure. Steps are not run; call :meth:`run_mission`.

        Raises:
            MissingInputError: Empty goal
        """
        goal = (goal or "").strip()
        if not goal:
            raise MissingInputError("A mission needs a goal")
        now = self._ctx.clock()
        mission = Mission(
            owner_id=owner_id,
            goal=goal,
            success_condition=success_condition,
            deadline=deadline,
            max_nudges=self._ctx.config.default_max_nudges if max_nudges is None else max_nudges,
            autopilot_rule_refs=(
                [RuleType(r) for r in autopilot_rule_refs]
                if autopilot_rule_refs is not None
                else None
            ),
            created_at=now,
            updated_at=now,
            last_activity_at=now,
        )
        mission.link_thread(thread_id)
        for linked in linked_thread_ids:
            mission.link_thread(linked)
        for email_id in linked_email_ids:
            mission.link_email(email_id)

        mission = await self._ctx.store.create_mission(owner_id, mission)
        self._logger.info("mission.created", mission_id=mission.id, owner_id=owner_id)

        async with self._ctx.locks.hold(owner_id, mission.id):
            self._sm.transition(mission, MissionStatus.THINKING, reason="planning")
            await save_mission(self._ctx.store, mission)

            plan = await self._planner.build(mission)
            self._sm.append_steps(mission, plan.steps)
            if plan.used_fallback:
                mission.add_thought(f"Using the standard plan ({plan.fallback_reason}).")
            if plan.ambiguous:
                questions = "; ".join(plan.questions) or "Please confirm the plan."
                mission.add_thought(f"Plan needs confirmation: {questions}")
                self._sm.transition(mission, MissionStatus.WAITING_ON_USER, reason="ambiguous_plan")
            else:
                self._sm.resume(mission, reason="planned")
            await save_mission(self._ctx.store, mission)
        return mission

    async def get_mission(self, owner_id: str, mission_id: str) -> Mission:
        return await load_mission(self._ctx.store, owner_id, mission_id)

    async def run_mission(
        self,
        owner_id: str,
        mission_id: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> Mission:
        """Execute pending steps; :meth:`cancel_mission` stops the run between steps."""
        key = (owner_id, mission_id)
        event = cancel or asyncio.Event()
        self._cancel_events[key] = event
        try:
            return await self._executor.run(owner_id, mission_id, cancel=event)
        finally:
            if self._cancel_events.get(key) is event:
                del self._cancel_events[key]

    def cancel_mission(self, owner_id: str, mission_id: str) -> bool:
        """Signal a running mission to stop before its next step.

        Returns:
            False if the mission is not currently running in this engine
        """
        event = self._cancel_events.get((owner_id, mission_id))
        if event is None:
            return False
        event.set()
        self._logger.info("mission.cancel_requested", mission_id=mission_id)
        return True

    async def approve(
        self,
        owner_id: str,
        mission_id: str,
        approval_payload: dict[str, Any] | None = None,
        *,
        approved_by: str = DEFAULT_APPROVER,
    ) -> Mission:
        """Approve what the mission is waiting for and resume it.

        A waiting ``send_email`` step receives the approval payload (fields not
        given are taken from the latest reply proposal). A waiting
        ``create_meeting`` step is approved with optional slot, title, attendee
        or location overrides. Without a waiting step, a new ``send_email``
        step is inserted after the latest draft.

        Raises:
            MissingInputError: Nothing to approve or an incomplete payload
            MissionClosedError: The mission is completed or failed
        """
        payload = dict(approval_payload or {})
        async with self._ctx.locks.hold(owner_id, mission_id):
            mission = await load_mission(self._ctx.store, owner_id, mission_id)
            self._sm.ensure_open(mission)
            waiting = mission.waiting_steps()
            step = waiting[0] if waiting else None

            if step is not None and step.action_type == ActionType.SEND_EMAIL:
                step.params["approval"] = self._send_approval(mission, payload, approved_by)
                self._sm.requeue_step(mission, step)
            elif step is not None and step.action_type == ActionType.CREATE_MEETING:
                step.params.update({k: payload[k] for k in _MEETING_OVERRIDES if k in payload})
                step.params["approval"] = {"approved_by": approved_by}
                self._sm.requeue_step(mission, step)
            elif step is not None:
                raise InvalidTransitionError(
                    f"A waiting {step.action_type.value} step cannot be approved",
                    details={"mission_id": mission_id, "step_id": step.id},
                )
            else:
                draft = self._latest_draft(mission)
                last = mission.last_executed_step()
                anchor = last if last is not None and last.order > draft.order else draft
                send = Step(
                    action_type=ActionType.SEND_EMAIL,
                    order=anchor.order + 1,
                    label="Send approved reply",
                    params={"approval": self._send_approval(mission, payload, approved_by)},
                )
                self._sm.insert_after(mission, anchor, [send])

            mission.add_thought(f"Approved by {approved_by}.")
            self._sm.record_activity(mission)
            self._sm.resume(mission, reason="approved")
            await save_mission(self._ctx.store, mission)
            self._logger.info("mission.approved", mission_id=mission_id, approved_by=approved_by)
        return await self.run_mission(owner_id, mission_id)

    async def check_mission(self, owner_id: str, mission_id: str) -> MonitorResult:
        """Run the escalation monitor and execute a queued follow-up."""
        result = await self._monitor.check(owner_id, mission_id)
        if result.needs_execution:
            result.mission = await self.run_mission(owner_id, mission_id)
        return result

    async def close_mission(
        self, owner_id: str, mission_id: str, outcome: str = "Completed"
    ) -> Mission:
        async with self._ctx.locks.hold(owner_id, mission_id):
            mission = await load_mission(self._ctx.store, owner_id, mission_id)
            self._sm.close(mission, outcome)
            await save_mission(self._ctx.store, mission)
        self._logger.info("mission.closed", mission_id=mission_id)
        return mission

    async def delete_mission(self, owner_id: str, mission_id: str) -> bool:
        async with self._ctx.locks.hold(owner_id, mission_id):
            deleted = await self._ctx.store.delete_mission(owner_id, mission_id)
        self._ctx.locks.discard(owner_id, mission_id)
        if deleted:
            self._logger.info("mission.deleted", mission_id=mission_id)
        return deleted

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def suggest_missions(self, owner_id: str) -> list[MissionSuggestion]:
        """Suggest missions from recent mail that no open mission tracks.

        Never raises for mailbox or suggester failures; those yield ``[]``.
        """
        missions = await self._ctx.store.list_missions(owner_id)
        open_missions = [m for m in missions if not m.status.is_terminal]
        suggestions = await self._detector.detect(open_missions)
        self._logger.info("mission.suggested", owner_id=owner_id, count=len(suggestions))
        return suggestions

    async def create_from_suggestion(
        self, owner_id: str, suggestion: MissionSuggestion, **options: Any
    ) -> Mission:
        """Create (and plan) a mission from an accepted suggestion."""
        return await self.create_mission(
            owner_id,
            suggestion.title,
            success_condition=suggestion.success_condition,
            linked_thread_ids=suggestion.linked_thread_ids,
            linked_email_ids=suggestion.linked_email_ids,
            **options,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_missions(
        self,
        owner_id: str,
        status: MissionStatus | str | None = None,
        due_today: bool = False,
        at_risk: bool = False,
    ) -> list[Mission]:
        filters = MissionFilters(
            status=MissionStatus(status) if status is not None else None,
            due_today=due_today,
            at_risk=at_risk,
        )
        return await self._ctx.store.list_missions(
            owner_id,
            filters,
            now=self._ctx.clock(),
            stale_after_days=self._ctx.config.stale_after_days,
        )

    async def dashboard(self, owner_id: str) -> Dashboard:
        missions = await self._ctx.store.list_missions(owner_id)
        now = self._ctx.clock()
        stale = self._ctx.config.stale_after_days
        board = Dashboard()
        for mission in missions:
            if is_due_today(mission, now):
                board.due_today.append(mission)
            if mission.status in _WAITING:
                board.waiting.append(mission)
            if is_at_risk(mission, now, stale):
                board.at_risk.append(mission)
            if mission.status in _ACTIVE:
                board.active.append(mission)
            if mission.status == MissionStatus.COMPLETED:
                board.completed.append(mission)
        return board

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    async def save_proposal_as_draft(self, owner_id: str, mission_id: str) -> dict[str, Any]:
        """Store the latest reply proposal as a mailbox draft.

        Raises:
            MissingInputError: The mission has no usable proposal
            ExternalAPIError: The adapter failed or timed out
        """
        async with self._ctx.locks.hold(owner_id, mission_id):
            mission = await load_mission(self._ctx.store, owner_id, mission_id)
            proposal = mission.latest_proposal()
            if not proposal or not proposal.get("body"):
                raise MissingInputError("The mission has no reply proposal to save")
            payload = {
                "to": list(proposal.get("to") or []),
                "subject": proposal.get("subject") or "",
                "body": proposal["body"],
                "thread_id": proposal.get("thread_id") or mission.known_thread_id(),
            }
            timeout = self._ctx.config.timeout_for(ActionType.DRAFT_REPLY)
            try:
                response = await asyncio.wait_for(
                    self._ctx.tools.create_draft(payload), timeout=timeout
                )
            except (TimeoutError, asyncio.TimeoutError) as exc:
                raise ToolTimeoutError(
                    f"create_draft timed out after {timeout:g}s",
                    tool_name="create_draft",
                    timeout_seconds=timeout,
                ) from exc
            if response.get("error") or not response.get("draft_id"):
                raise ExternalAPIError(
                    str(response.get("error") or "create_draft returned no draft id"),
                    tool_name="create_draft",
                )
            mission.link_thread(response.get("thread_id"))
            mission.add_thought(f"Saved proposal as draft {response['draft_id']}.")
            await save_mission(self._ctx.store, mission)
        return response

    # ------------------------------------------------------------------
    # Autopilot rules
    # ------------------------------------------------------------------

    async def set_rule(
        self,
        owner_id: str,
        rule_type: RuleType | str,
        config: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> AutopilotRule:
        """Create or replace the owner's rule of ``rule_type``.

        Raises:
            ConfigError: Unknown rule type or invalid config
        """
        try:
            rule_type = RuleType(rule_type)
        except ValueError as exc:
            raise ConfigError(
                f"Unknown autopilot rule type: {rule_type}",
                details={"known": [r.value for r in RuleType]},
            ) from exc
        normalized = validate_rule_config(rule_type, config)
        existing = await self._ctx.store.get_rule(owner_id, rule_type)
        rule = AutopilotRule(
            rule_type=rule_type,
            config=normalized,
            enabled=enabled,
            owner_id=owner_id,
            updated_at=self._ctx.clock(),
        )
        if existing is not None:
            rule.rule_id = existing.rule_id
        stored = await self._ctx.store.set_rule(owner_id, rule)
        self._logger.info(
            "rule.set", owner_id=owner_id, rule_type=rule_type.value, enabled=enabled
        )
        return stored

    async def list_rules(self, owner_id: str) -> list[AutopilotRule]:
        return await self._ctx.store.list_rules(owner_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _latest_draft(mission: Mission) -> Step:
        for step in reversed(mission.ordered_steps()):
            if step.action_type == ActionType.DRAFT_REPLY and step.status == StepStatus.DONE:
                later_sends = [
                    s
                    for s in mission.steps
                    if s.action_type == ActionType.SEND_EMAIL
                    and s.order > step.order
                    and s.status != StepStatus.FAILED
                ]
                if later_sends:
                    raise InvalidTransitionError(
                        "The latest draft already has a send step",
                        details={"mission_id": mission.id, "step_id": later_sends[0].id},
                    )
                return step
        raise MissingInputError("Nothing to approve: the mission has no drafted reply")

    @staticmethod
    def _send_approval(
        mission: Mission, payload: dict[str, Any], approved_by: str
    ) -> dict[str, Any]:
        proposal = mission.latest_proposal() or {}
        merged: dict[str, Any] = {
            "to": proposal.get("to") or [],
            "subject": proposal.get("subject") or "",
            "body": proposal.get("body") or "",
            "thread_id": proposal.get("thread_id") or mission.known_thread_id(),
        }
        merged.update({k: v for k, v in payload.items() if v is not None})
        try:
            approval = ApprovalPayload.model_validate(merged)
        except ValidationError as exc:
            raise MissingInputError(
                "Approval payload is incomplete",
                details={"errors": exc.errors(include_url=False, include_input=False)},
            ) from exc
        data = approval.model_dump(exclude_none=True)
        data["approved_by"] = approved_by
        return data
