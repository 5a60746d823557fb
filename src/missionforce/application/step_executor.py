"""
Step Executor

Runs a mission's pending steps in ascending order until every step is
terminal, a step moves the mission away from ``executing``, the run is
cancelled, or an unrecoverable error fails the mission.

Every status change is persisted before the next external call:

1. the step is marked ``running`` and saved,
2. non-idempotent steps save a dispatch marker right before the adapter call,
3. the outcome and its single audit entry are saved before the next step.

A run that finds a ``running`` step left behind by a crash requeues it if it
is safe to repeat. A send or booking whose dispatch marker is set is never
dispatched again; it is failed and handed to the user instead.
"""

from __future__ import annotations

import asyncio

import structlog

from missionforce.application.audit import AuditTrail
from missionforce.application.context import EngineContext
from missionforce.application.persistence import load_mission, save_mission
from missionforce.application.policy.autopilot import AutopilotPolicyEngine
from missionforce.application.state_machine import MissionStateMachine
from missionforce.application.step_handlers import STEP_HANDLERS, StepContext
from missionforce.core.domain.autopilot import AutopilotRule
from missionforce.core.domain.enums import SYSTEM_APPROVER, MissionStatus
from missionforce.core.domain.errors import (
    ExternalAPIError,
    FatalMissionError,
    MissionforceError,
    StepError,
)
from missionforce.core.domain.mission import Mission, Step
from missionforce.core.domain.outcome import StepOutcome

logger = structlog.get_logger(__name__)


class StepExecutor:
    """Executes mission steps sequentially against the tool adapter."""

    def __init__(
        self,
        context: EngineContext,
        *,
        state_machine: MissionStateMachine | None = None,
        audit: AuditTrail | None = None,
        policy: AutopilotPolicyEngine | None = None,
    ) -> None:
        self._ctx = context
        self._sm = state_machine or MissionStateMachine(context.clock)
        self._audit = audit or AuditTrail(context.clock)
        self._policy = policy or AutopilotPolicyEngine(context.config)
        self._logger = logger.bind(component="step_executor")

    async def run(
        self,
        owner_id: str,
        mission_id: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> Mission:
        """Load the mission under its lock and execute its pending steps.

        Args:
            owner_id: Owning principal
            mission_id: Mission to run
            cancel: Checked before each step dispatch; when set, the run stops
                and the mission waits on the user with pending steps intact

        Returns:
            The mission as persisted at the end of the run

        Raises:
            MissionNotFoundError: Unknown mission
            ConcurrencyConflictError: Another writer updated the mission
        """
        async with self._ctx.locks.hold(owner_id, mission_id):
            mission = await load_mission(self._ctx.store, owner_id, mission_id)
            return await self.run_locked(mission, cancel=cancel)

    async def run_locked(self, mission: Mission, *, cancel: asyncio.Event | None = None) -> Mission:
        """Execute a mission the caller already holds the lock for."""
        if mission.status.is_terminal:
            self._logger.info(
                "executor.skip_closed", mission_id=mission.id, status=mission.status.value
            )
            return mission
        try:
            await self._execute(mission, cancel)
        except FatalMissionError as exc:
            await self._fail(mission, exc)
        return mission

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _execute(self, mission: Mission, cancel: asyncio.Event | None) -> None:
        rules = await self._ctx.store.get_enabled_rules(mission.owner_id)

        if self._recover_interrupted(mission):
            await self._save(mission)
            return
        if not mission.pending_steps():
            if mission.status == MissionStatus.EXECUTING:
                self._sm.settle(mission, awaiting_other=False)
                await self._save(mission)
            return

        self._sm.resume(mission, reason="run")
        await self._save(mission)

        awaiting_other = False
        while True:
            if cancel is not None and cancel.is_set():
                mission.add_thought("Run cancelled before the next step.")
                self._sm.transition(mission, MissionStatus.WAITING_ON_USER, reason="cancelled")
                await self._save(mission)
                self._logger.info("executor.cancelled", mission_id=mission.id)
                return

            step = mission.next_pending_step()
            if step is None:
                status = self._sm.settle(mission, awaiting_other=awaiting_other)
                await self._save(mission)
                self._logger.info("executor.settled", mission_id=mission.id, status=status.value)
                return

            self._sm.start_step(mission, step)
            await self._save(mission)

            outcome = await self._dispatch(mission, step, rules)
            self._sm.apply_outcome(mission, step, outcome)
            self._audit.record_step(mission, step, approved_by=outcome.approved_by)
            await self._save(mission)

            if outcome.request == MissionStatus.WAITING_ON_OTHER:
                awaiting_other = True
            if mission.status != MissionStatus.EXECUTING:
                return

    async def _dispatch(
        self, mission: Mission, step: Step, rules: list[AutopilotRule]
    ) -> StepOutcome:
        handler = STEP_HANDLERS[step.action_type]

        async def begin_dispatch() -> None:
            if step.dispatch_started_at is not None:
                raise FatalMissionError(
                    "Non-idempotent step dispatched twice",
                    details={"mission_id": mission.id, "step_id": step.id},
                )
            step.dispatch_started_at = self._ctx.clock()
            await self._save(mission)

        context = StepContext(
            mission=mission,
            step=step,
            tools=self._ctx.tools,
            composer=self._ctx.reply_composer,
            policy=self._policy,
            rules=rules,
            config=self._ctx.config,
            now=self._ctx.clock(),
            begin_dispatch=begin_dispatch,
        )
        log = self._logger.bind(
            mission_id=mission.id, step_id=step.id, action_type=step.action_type.value
        )
        log.info("step.started", order=step.order)
        try:
            outcome = await handler(context)
        except StepError as exc:
            log.warning("step.failed", error=exc.message, code=exc.code)
            return StepOutcome.failed(exc)
        except MissionforceError:
            raise
        except Exception as exc:
            log.error("step.failed", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            return StepOutcome.failed(exc)
        log.info(
            "step.finished",
            status=outcome.status.value,
            request=outcome.request.value if outcome.request else None,
        )
        return outcome

    # ------------------------------------------------------------------
    # Recovery and failure
    # ------------------------------------------------------------------

    def _recover_interrupted(self, mission: Mission) -> bool:
        """Deal with steps left ``running`` by an interrupted run.

        Returns:
            True if the mission now waits on the user
        """
        running = mission.running_steps()
        if len(running) > 1:
            raise FatalMissionError(
                "More than one step is running",
                details={"mission_id": mission.id, "running": [s.id for s in running]},
            )
        if not running:
            return False

        step = running[0]
        if step.action_type.is_idempotent or step.dispatch_started_at is None:
            self._sm.requeue_step(mission, step)
            self._logger.info("step.requeued", mission_id=mission.id, step_id=step.id)
            return False

        error = ExternalAPIError(
            f"{step.action_type.value} was interrupted after dispatch; "
            "its outcome is unknown and it was not retried",
            tool_name=step.action_type.value,
            code="dispatch_outcome_unknown",
        )
        self._sm.fail_step(mission, step, error)
        self._audit.record_step(mission, step, approved_by=SYSTEM_APPROVER)
        mission.add_thought("Check whether the interrupted action went through before retrying.")
        self._sm.transition(mission, MissionStatus.WAITING_ON_USER, reason="dispatch_outcome_unknown")
        self._logger.warning("step.dispatch_unknown", mission_id=mission.id, step_id=step.id)
        return True

    async def _fail(self, mission: Mission, error: FatalMissionError) -> None:
        self._logger.error(
            "mission.failed", mission_id=mission.id, error=error.message, details=error.details
        )
        self._sm.fail(mission, error)
        self._audit.record_error(mission, "mission_failed", error)
        try:
            await self._save(mission)
        except MissionforceError as save_error:
            self._logger.error(
                "mission.fail_not_persisted", mission_id=mission.id, error=str(save_error)
            )
            raise error from save_error

    async def _save(self, mission: Mission) -> None:
        await save_mission(self._ctx.store, mission)
