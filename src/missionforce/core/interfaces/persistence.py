"""
Mission Persistence Protocol

This module defines the access contract for mission and autopilot rule
storage. Implementations must make ``update_mission`` atomic per mission id
and honor the optimistic version check so that concurrent executor and
monitor invocations cannot silently overwrite each other.

Error Handling:
    - get_mission: Returns None when the mission does not exist
    - update_mission: Raises MissionNotFoundError or ConcurrencyConflictError
    - Storage failures: Raise FatalMissionError
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from datetime import datetime

    from missionforce.core.domain.autopilot import AutopilotRule
    from missionforce.core.domain.enums import MissionStatus, RuleType
    from missionforce.core.domain.mission import Mission


@dataclass(frozen=True)
class MissionFilters:
    """Filters for ``list_missions``.

    Attributes:
        status: Only missions in this status
        due_today: Only missions whose deadline falls on ``now``'s date
        at_risk: Only open missions marked at risk or idle past the stale threshold
    """

    status: MissionStatus | None = None
    due_today: bool = False
    at_risk: bool = False


class MissionStoreProtocol(Protocol):
    """Protocol defining the contract for mission and rule persistence."""

    async def create_mission(self, owner_id: str, mission: Mission) -> Mission:
        """Persist a new mission and return the stored copy (version 1)."""
        ...

    async def get_mission(self, owner_id: str, mission_id: str) -> Mission | None:
        """Load a mission owned by ``owner_id``, or None."""
        ...

    async def update_mission(
        self,
        owner_id: str,
        mission_id: str,
        patch: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> Mission:
        """
        Apply a patch of serialized mission fields atomically.

        Args:
            owner_id: Owning principal
            mission_id: Mission to update
            patch: Serialized fields to replace (see ``Mission.to_patch``)
            expected_version: When given, the stored version must match or
                ConcurrencyConflictError is raised

        Returns:
            The updated mission with its version incremented
        """
        ...

    async def delete_mission(self, owner_id: str, mission_id: str) -> bool:
        """Delete a mission; returns False if it did not exist."""
        ...

    async def list_missions(
        self,
        owner_id: str,
        filters: MissionFilters | None = None,
        *,
        now: datetime | None = None,
        stale_after_days: float = 3.0,
    ) -> list[Mission]:
        """List the owner's missions, newest first."""
        ...

    async def get_enabled_rules(self, owner_id: str) -> list[AutopilotRule]:
        """Enabled autopilot rules for the owner."""
        ...

    async def list_rules(self, owner_id: str) -> list[AutopilotRule]:
        """All autopilot rules for the owner, enabled or not."""
        ...

    async def set_rule(self, owner_id: str, rule: AutopilotRule) -> AutopilotRule:
        """Insert or replace the owner's rule of ``rule.rule_type``."""
        ...

    async def get_rule(self, owner_id: str, rule_type: RuleType) -> AutopilotRule | None:
        """The owner's rule of the given type, if any."""
        ...
