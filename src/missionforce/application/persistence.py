"""Read-modify-write helpers over the mission store."""

from __future__ import annotations

from missionforce.core.domain.errors import MissionNotFoundError
from missionforce.core.domain.mission import Mission
from missionforce.core.interfaces.persistence import MissionStoreProtocol


async def load_mission(store: MissionStoreProtocol, owner_id: str, mission_id: str) -> Mission:
    """Load a mission or raise MissionNotFoundError."""
    mission = await store.get_mission(owner_id, mission_id)
    if mission is None:
        raise MissionNotFoundError(
            f"Mission not found: {mission_id}",
            details={"owner_id": owner_id, "mission_id": mission_id},
        )
    return mission


async def save_mission(store: MissionStoreProtocol, mission: Mission) -> Mission:
    """Write the mission back, guarded by its version.

    The in-memory mission picks up the new version so that it can be saved
    again; a concurrent writer makes the store raise ConcurrencyConflictError.
    """
    stored = await store.update_mission(
        mission.owner_id,
        mission.id,
        mission.to_patch(),
        expected_version=mission.version,
    )
    mission.version = stored.version
    mission.updated_at = stored.updated_at
    return mission
