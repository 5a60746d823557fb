"""Append-only audit trail for missions."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from missionforce.core.domain.enums import SYSTEM_APPROVER
from missionforce.core.domain.errors import error_payload
from missionforce.core.domain.mission import AuditEntry, Mission, Step
from missionforce.core.utils.time import utc_now

logger = structlog.get_logger(__name__)


class AuditTrail:
    """Writes audit entries and serves the "last N" read path.

    The trail is a record, not a source of truth: control decisions read
    mission and step status fields, never the entries written here.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    def record(
        self,
        mission: Mission,
        action_type: str,
        *,
        approved_by: str = SYSTEM_APPROVER,
        extra: dict[str, Any] | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            mission_id=mission.id,
            action_type=action_type,
            approved_by=approved_by,
            extra=extra or {},
            timestamp=self._clock(),
        )
        mission.audit_trail.append(entry)
        logger.debug(
            "audit.recorded",
            mission_id=mission.id,
            action_type=action_type,
            approved_by=approved_by,
        )
        return entry

    def record_step(self, mission: Mission, step: Step, *, approved_by: str) -> AuditEntry:
        """One entry per step completion, snapshotting its result or error."""
        extra: dict[str, Any] = {
            "step_id": step.id,
            "order": step.order,
            "status": step.status.value,
            "result": step.result,
        }
        if step.error_details:
            extra["error"] = dict(step.error_details)
        return self.record(
            mission, step.action_type.value, approved_by=approved_by, extra=extra
        )

    def record_error(
        self, mission: Mission, action_type: str, error: BaseException
    ) -> AuditEntry:
        return self.record(mission, action_type, extra={"error": error_payload(error)})

    @staticmethod
    def recent(mission: Mission, limit: int) -> list[AuditEntry]:
        """The last ``limit`` entries, oldest first."""
        if limit <= 0:
            return []
        return list(mission.audit_trail[-limit:])
