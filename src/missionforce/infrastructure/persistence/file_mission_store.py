"""
File-Based Mission Store

JSON-file implementation of MissionStoreProtocol for development and the CLI.

Layout::

    {work_dir}/missions/{owner_id}/{mission_id}.json
    {work_dir}/rules/{owner_id}.json

Writes are atomic (temporary file, then rename) and serialized per record by
asyncio locks. ``update_mission`` enforces the optimistic version check.
"""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from missionforce.core.domain.autopilot import AutopilotRule
from missionforce.core.domain.enums import RuleType
from missionforce.core.domain.errors import (
    ConcurrencyConflictError,
    FatalMissionError,
    MissionNotFoundError,
)
from missionforce.core.domain.mission import Mission
from missionforce.core.domain.queries import matches
from missionforce.core.interfaces.persistence import MissionFilters, MissionStoreProtocol
from missionforce.core.utils.time import format_timestamp, utc_now
from missionforce.infrastructure.persistence.mission_records import apply_patch

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.@-]")


def safe_key(value: str) -> str:
    """File-system safe form of an owner or mission id."""
    key = _SAFE_KEY.sub("_", value)
    if not key or key.strip(".") == "":
        raise ValueError(f"Invalid identifier: {value!r}")
    return key


class FileMissionStore(MissionStoreProtocol):
    """
    File-based mission and rule persistence.

    Thread Safety:
        Uses asyncio locks per record to prevent concurrent writes.

    Example:
        >>> store = FileMissionStore(work_dir=".missionforce")
        >>> mission = await store.create_mission("owner_1", Mission("owner_1", "goal"))
        >>> loaded = await store.get_mission("owner_1", mission.id)
        >>> assert loaded.version == 1
    """

    def __init__(
        self,
        work_dir: str | Path = ".missionforce",
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.missions_dir = self.work_dir / "missions"
        self.rules_dir = self.work_dir / "rules"
        self.missions_dir.mkdir(parents=True, exist_ok=True)
        self.rules_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()
        self._time_provider = time_provider or utc_now
        self.logger = structlog.get_logger(__name__).bind(component="file_mission_store")

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _mission_file(self, owner_id: str, mission_id: str) -> Path:
        return self.missions_dir / safe_key(owner_id) / f"{safe_key(mission_id)}.json"

    def _rules_file(self, owner_id: str) -> Path:
        return self.rules_dir / f"{safe_key(owner_id)}.json"

    async def _get_lock(self, key: str) -> asyncio.Lock:
        async with self._locks_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    async def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
            return json.loads(content)
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.error("store.read_failed", path=str(path), error=str(exc))
            raise FatalMissionError(
                f"Cannot read {path.name}", details={"path": str(path), "error": str(exc)}
            ) from exc

    async def _write_json(self, path: Path, data: Any) -> None:
        temp_file = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(data, indent=2, ensure_ascii=False)
            async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
                await f.write(payload)
            temp_file.replace(path)
        except (OSError, TypeError, ValueError) as exc:
            self.logger.error("store.write_failed", path=str(path), error=str(exc))
            raise FatalMissionError(
                f"Cannot write {path.name}", details={"path": str(path), "error": str(exc)}
            ) from exc

    # ------------------------------------------------------------------
    # Missions
    # ------------------------------------------------------------------

    async def create_mission(self, owner_id: str, mission: Mission) -> Mission:
        path = self._mission_file(owner_id, mission.id)
        async with await self._get_lock(str(path)):
            if path.exists():
                raise ConcurrencyConflictError(
                    f"Mission already exists: {mission.id}", details={"mission_id": mission.id}
                )
            data = mission.to_dict()
            data["owner_id"] = owner_id
            data["version"] = 1
            data["updated_at"] = format_timestamp(self._time_provider())
            await self._write_json(path, data)
        self.logger.info("store.mission_created", mission_id=mission.id)
        return Mission.from_dict(data)

    async def get_mission(self, owner_id: str, mission_id: str) -> Mission | None:
        data = await self._read_json(self._mission_file(owner_id, mission_id))
        return Mission.from_dict(data) if data else None

    async def update_mission(
        self,
        owner_id: str,
        mission_id: str,
        patch: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> Mission:
        path = self._mission_file(owner_id, mission_id)
        async with await self._get_lock(str(path)):
            stored = await self._read_json(path)
            if not stored:
                raise MissionNotFoundError(
                    f"Mission not found: {mission_id}", details={"mission_id": mission_id}
                )
            try:
                updated = apply_patch(
                    stored, patch, expected_version=expected_version, now=self._time_provider()
                )
            except ConcurrencyConflictError as exc:
                self.logger.warning("store.conflict", mission_id=mission_id, details=exc.details)
                raise
            await self._write_json(path, updated)
        self.logger.debug("store.mission_updated", mission_id=mission_id, version=updated["version"])
        return Mission.from_dict(updated)

    async def delete_mission(self, owner_id: str, mission_id: str) -> bool:
        path = self._mission_file(owner_id, mission_id)
        async with await self._get_lock(str(path)):
            if not path.exists():
                return False
            try:
                path.unlink()
            except OSError as exc:
                raise FatalMissionError(
                    f"Cannot delete {path.name}", details={"error": str(exc)}
                ) from exc
        async with self._locks_lock:
            self._locks.pop(str(path), None)
        self.logger.info("store.mission_deleted", mission_id=mission_id)
        return True

    async def list_missions(
        self,
        owner_id: str,
        filters: MissionFilters | None = None,
        *,
        now: datetime | None = None,
        stale_after_days: float = 3.0,
    ) -> list[Mission]:
        owner_dir = self.missions_dir / safe_key(owner_id)
        if not owner_dir.exists():
            return []
        filters = filters or MissionFilters()
        now = now or self._time_provider()
        missions: list[Mission] = []
        for path in sorted(owner_dir.glob("*.json")):
            data = await self._read_json(path)
            if not data:
                continue
            mission = Mission.from_dict(data)
            if matches(
                mission,
                now=now,
                status=filters.status,
                due_today=filters.due_today,
                at_risk=filters.at_risk,
                stale_after_days=stale_after_days,
            ):
                missions.append(mission)
        missions.sort(key=lambda m: m.created_at, reverse=True)
        return missions

    # ------------------------------------------------------------------
    # Autopilot rules
    # ------------------------------------------------------------------

    async def list_rules(self, owner_id: str) -> list[AutopilotRule]:
        data = await self._read_json(self._rules_file(owner_id)) or []
        return [AutopilotRule.from_dict(item) for item in data]

    async def get_enabled_rules(self, owner_id: str) -> list[AutopilotRule]:
        return [rule for rule in await self.list_rules(owner_id) if rule.enabled]

    async def get_rule(self, owner_id: str, rule_type: RuleType) -> AutopilotRule | None:
        for rule in await self.list_rules(owner_id):
            if rule.rule_type == rule_type:
                return rule
        return None

    async def set_rule(self, owner_id: str, rule: AutopilotRule) -> AutopilotRule:
        path = self._rules_file(owner_id)
        async with await self._get_lock(str(path)):
            rules = [
                r
                for r in (await self._read_json(path) or [])
                if r.get("rule_type") != rule.rule_type.value
            ]
            rule.owner_id = owner_id
            rules.append(rule.to_dict())
            rules.sort(key=lambda r: r["rule_type"])
            await self._write_json(path, rules)
        self.logger.info("store.rule_set", owner_id=owner_id, rule_type=rule.rule_type.value)
        return rule
