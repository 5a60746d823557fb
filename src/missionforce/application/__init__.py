"""Application layer: state machine, executor, monitor and the engine facade."""

from missionforce.application.context import EngineContext
from missionforce.application.mission_engine import Dashboard, MissionEngine

__all__ = ["Dashboard", "EngineContext", "MissionEngine"]
