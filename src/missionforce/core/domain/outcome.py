"""Step outcomes.

Step handlers never touch ``mission.status``. They return a StepOutcome that
describes what happened to the step and what the mission should do next
("succeeded with result X, requesting approval"); the executor hands that
intent to the state machine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from missionforce.core.domain.enums import SYSTEM_APPROVER, MissionStatus, StepStatus
from missionforce.core.domain.mission import Step


@dataclass
class StepOutcome:
    """What a handler reports back to the executor.

    Attributes:
        status: Final step status (DONE, FAILED or WAITING)
        result: Payload stored on the step
        error: Exception captured when the step failed
        request: Mission status the handler asks for, if any. WAITING_ON_USER
            stops the loop immediately; WAITING_ON_OTHER is applied once no
            pending steps remain.
        thread_ids: External thread ids to link to the mission
        email_ids: External message ids to link to the mission
        follow_on: Steps to insert directly after this one
        thought: Optional reasoning note appended to the mission
        approved_by: Who authorized the action recorded in the audit entry
        next_check_at: When the escalation monitor should look again
    """

    status: StepStatus
    result: Any = None
    error: BaseException | None = None
    request: MissionStatus | None = None
    thread_ids: tuple[str, ...] = ()
    email_ids: tuple[str, ...] = ()
    follow_on: list[Step] = field(default_factory=list)
    thought: str | None = None
    approved_by: str = SYSTEM_APPROVER
    next_check_at: datetime | None = None

    @classmethod
    def succeeded(cls, result: Any, **kwargs: Any) -> StepOutcome:
        return cls(status=StepStatus.DONE, result=result, **kwargs)

    @classmethod
    def needs_user(cls, result: Any, **kwargs: Any) -> StepOutcome:
        """The step succeeded and its product is a request for human input."""
        return cls(
            status=StepStatus.DONE,
            result=result,
            request=MissionStatus.WAITING_ON_USER,
            **kwargs,
        )

    @classmethod
    def waiting(cls, result: Any, **kwargs: Any) -> StepOutcome:
        """The step cannot run yet (e.g. no approval payload)."""
        return cls(
            status=StepStatus.WAITING,
            result=result,
            request=MissionStatus.WAITING_ON_USER,
            **kwargs,
        )

    @classmethod
    def failed(cls, error: BaseException, result: Any = None) -> StepOutcome:
        return cls(
            status=StepStatus.FAILED,
            result=result,
            error=error,
            request=MissionStatus.WAITING_ON_USER,
        )

    @property
    def stops_loop(self) -> bool:
        return self.request == MissionStatus.WAITING_ON_USER
