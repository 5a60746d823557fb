"""In-memory mission store for tests and the sandbox profile."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable
from datetime import datetime
from typing import Any

from missionforce.core.domain.autopilot import AutopilotRule
from missionforce.core.domain.enums import RuleType
from missionforce.core.domain.errors import ConcurrencyConflictError, MissionNotFoundError
from missionforce.core.domain.mission import Mission
from missionforce.core.domain.queries import matches
from missionforce.core.interfaces.persistence import MissionFilters, MissionStoreProtocol
from missionforce.core.utils.time import format_timestamp, utc_now
from missionforce.infrastructure.persistence.mission_records import apply_patch


class InMemoryMissionStore(MissionStoreProtocol):
    """Keeps serialized missions in a dict; every read returns a fresh copy."""

    def __init__(self, time_provider: Callable[[], datetime] | None = None) -> None:
        self._missions: dict[tuple[str, str], dict[str, Any]] = {}
        self._rules: dict[str, dict[RuleType, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self._time_provider = time_provider or utc_now

    async def create_mission(self, owner_id: str, mission: Mission) -> Mission:
        async with self._lock:
            key = (owner_id, mission.id)
            if key in self._missions:
                raise ConcurrencyConflictError(
                    f"Mission already exists: {mission.id}", details={"mission_id": mission.id}
                )
            data = mission.to_dict()
            data["owner_id"] = owner_id
            data["version"] = 1
            data["updated_at"] = format_timestamp(self._time_provider())
            self._missions[key] = data
            return Mission.from_dict(copy.deepcopy(data))

    async def get_mission(self, owner_id: str, mission_id: str) -> Mission | None:
        data = self._missions.get((owner_id, mission_id))
        return Mission.from_dict(copy.deepcopy(data)) if data else None

    async def update_mission(
        self,
        owner_id: str,
        mission_id: str,
        patch: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> Mission:
        async with self._lock:
            stored = self._missions.get((owner_id, mission_id))
            if stored is None:
                raise MissionNotFoundError(
                    f"Mission not found: {mission_id}", details={"mission_id": mission_id}
                )
            updated = apply_patch(
                stored,
                copy.deepcopy(patch),
                expected_version=expected_version,
                now=self._time_provider(),
            )
            self._missions[(owner_id, mission_id)] = updated
            return Mission.from_dict(copy.deepcopy(updated))

    async def delete_mission(self, owner_id: str, mission_id: str) -> bool:
        async with self._lock:
            return self._missions.pop((owner_id, mission_id), None) is not None

    async def list_missions(
        self,
        owner_id: str,
        filters: MissionFilters | None = None,
        *,
        now: datetime | None = None,
        stale_after_days: float = 3.0,
    ) -> list[Mission]:
        filters = filters or MissionFilters()
        now = now or self._time_provider()
        missions = [
            Mission.from_dict(copy.deepcopy(data))
            for (owner, _), data in self._missions.items()
            if owner == owner_id
        ]
        selected = [
            m
            for m in missions
            if matches(
                m,
                now=now,
                status=filters.status,
                due_today=filters.due_today,
                at_risk=filters.at_risk,
                stale_after_days=stale_after_days,
            )
        ]
        selected.sort(key=lambda m: m.created_at, reverse=True)
        return selected

    async def list_rules(self, owner_id: str) -> list[AutopilotRule]:
        rules = self._rules.get(owner_id, {})
        return [AutopilotRule.from_dict(copy.deepcopy(rules[t])) for t in sorted(rules)]

    async def get_enabled_rules(self, owner_id: str) -> list[AutopilotRule]:
        return [rule for rule in await self.list_rules(owner_id) if rule.enabled]

    async def get_rule(self, owner_id: str, rule_type: RuleType) -> AutopilotRule | None:
        data = self._rules.get(owner_id, {}).get(rule_type)
        return AutopilotRule.from_dict(copy.deepcopy(data)) if data else None

    async def set_rule(self, owner_id: str, rule: AutopilotRule) -> AutopilotRule:
        async with self._lock:
            rule.owner_id = owner_id
            self._rules.setdefault(owner_id, {})[rule.rule_type] = rule.to_dict()
        return rule
