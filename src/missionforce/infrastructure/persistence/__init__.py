"""Mission stores."""

from missionforce.infrastructure.persistence.file_mission_store import FileMissionStore
from missionforce.infrastructure.persistence.memory_mission_store import InMemoryMissionStore

__all__ = ["FileMissionStore", "InMemoryMissionStore"]
