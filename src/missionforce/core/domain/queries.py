"""Mission predicates shared by stores and the dashboard."""

from __future__ import annotations

from datetime import datetime

from missionforce.core.domain.enums import MissionStatus
from missionforce.core.domain.mission import Mission
from missionforce.core.utils.time import days_between, ensure_utc


def is_due_today(mission: Mission, now: datetime) -> bool:
    """Open mission whose deadline falls on ``now``'s (UTC) date."""
    if mission.deadline is None or mission.status.is_terminal:
        return False
    return ensure_utc(mission.deadline).date() == ensure_utc(now).date()


def is_stale(mission: Mission, now: datetime, stale_after_days: float) -> bool:
    return days_between(mission.last_activity_at, now) > stale_after_days


def is_at_risk(mission: Mission, now: datetime, stale_after_days: float) -> bool:
    """Open mission flagged at risk, or idle past the stale threshold."""
    if mission.status.is_terminal:
        return False
    return mission.status == MissionStatus.AT_RISK or is_stale(mission, now, stale_after_days)


def matches(
    mission: Mission,
    *,
    now: datetime,
    status: MissionStatus | None = None,
    due_today: bool = False,
    at_risk: bool = False,
    stale_after_days: float = 3.0,
) -> bool:
    if status is not None and mission.status != status:
        return False
    if due_today and not is_due_today(mission, now):
        return False
    if at_risk and not is_at_risk(mission, now, stale_after_days):
        return False
    return True
