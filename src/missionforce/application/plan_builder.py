"""
Plan Builder

Asks the plan generator for steps, validates its answer strictly and falls
back to the fixed template when the generator fails or returns anything that
does not validate as a whole. The resulting plan is always non-empty.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import ValidationError

from missionforce.application.audit import AuditTrail
from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.domain.enums import ActionType
from missionforce.core.domain.errors import PlanValidationError
from missionforce.core.domain.mission import Mission, Step
from missionforce.core.domain.plan import PlanEnvelope
from missionforce.core.interfaces.planning import PlanGeneratorProtocol

logger = structlog.get_logger(__name__)


@dataclass
class PlanResult:
    """Steps ready to attach to a mission, plus how they were obtained."""

    steps: list[Step]
    used_fallback: bool = False
    ambiguous: bool = False
    questions: list[str] = field(default_factory=list)
    confidence: float | None = None
    fallback_reason: str | None = None


def validate_plan(raw: Any) -> PlanEnvelope:
    """Validate raw generator output.

    Raises:
        PlanValidationError: If the output is empty or malformed in any part.
    """
    if raw is None or raw == [] or raw == {}:
        raise PlanValidationError("Plan generator returned an empty plan")
    try:
        return PlanEnvelope.model_validate(raw)
    except ValidationError as exc:
        raise PlanValidationError(
            "Plan generator returned a malformed plan",
            details={"errors": exc.errors(include_url=False, include_input=False)},
        ) from exc


def template_plan(mission: Mission) -> list[Step]:
    """search_email -> read_thread -> draft_reply, skipping the search when a thread is known."""
    thread_id = mission.known_thread_id()
    steps: list[Step] = []
    if thread_id is None:
        steps.append(
            Step(
                action_type=ActionType.SEARCH_EMAIL,
                order=0,
                label="Search for the relevant conversation",
                description=mission.goal,
            )
        )
    steps.append(
        Step(
            action_type=ActionType.READ_THREAD,
            order=0,
            label="Read the conversation",
            params={"thread_id": thread_id} if thread_id else {},
        )
    )
    steps.append(
        Step(
            action_type=ActionType.DRAFT_REPLY,
            order=0,
            label="Draft a reply",
            description=mission.goal,
        )
    )
    for index, step in enumerate(steps, start=1):
        step.order = index
    return steps


def plan_context(mission: Mission, recent_entries: int) -> dict[str, Any]:
    return {
        "thread_id": mission.known_thread_id(),
        "success_condition": mission.success_condition,
        "linked_thread_ids": list(mission.linked_thread_ids),
        "deadline": mission.deadline.isoformat() if mission.deadline else None,
        "recent_audit": [e.to_dict() for e in AuditTrail.recent(mission, recent_entries)],
    }


class PlanBuilder:
    """Turns a mission goal into a validated, runnable step list."""

    def __init__(
        self,
        generator: PlanGeneratorProtocol | None,
        config: EngineConfig | None = None,
    ) -> None:
        self._generator = generator
        self._config = config or EngineConfig()
        self._logger = logger.bind(component="plan_builder")

    async def build(self, mission: Mission) -> PlanResult:
        if self._generator is None:
            return self._fallback(mission, "no plan generator configured")

        context = plan_context(mission, self._config.audit_context_entries)
        try:
            raw = await asyncio.wait_for(
                self._generator.generate_plan(mission.goal, context),
                timeout=self._config.llm.timeout_seconds,
            )
            envelope = validate_plan(raw)
        except PlanValidationError as exc:
            return self._fallback(mission, exc.message)
        except (TimeoutError, asyncio.TimeoutError):
            return self._fallback(mission, "plan generator timed out")
        except Exception as exc:
            return self._fallback(mission, f"plan generator failed: {exc}")

        steps = [
            Step(
                action_type=planned.action_type,
                order=index,
                label=planned.label,
                description=planned.description or (
                    mission.goal if planned.action_type == ActionType.SEARCH_EMAIL else ""
                ),
                params=dict(planned.params),
            )
            for index, planned in enumerate(envelope.steps, start=1)
        ]
        ambiguous = envelope.is_ambiguous(self._config.low_confidence_threshold)
        self._logger.info(
            "plan.generated",
            mission_id=mission.id,
            step_count=len(steps),
            confidence=envelope.confidence,
            ambiguous=ambiguous,
        )
        return PlanResult(
            steps=steps,
            ambiguous=ambiguous,
            questions=list(envelope.questions),
            confidence=envelope.confidence,
        )

    def _fallback(self, mission: Mission, reason: str) -> PlanResult:
        self._logger.warning("plan.fallback", mission_id=mission.id, reason=reason)
        return PlanResult(
            steps=template_plan(mission),
            used_fallback=True,
            fallback_reason=reason,
        )
