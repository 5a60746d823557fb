"""Protocol interfaces for Missionforce collaborators."""

from missionforce.core.interfaces.persistence import MissionFilters, MissionStoreProtocol
from missionforce.core.interfaces.planning import (
    MissionSuggesterProtocol,
    PlanGeneratorProtocol,
    ReplyComposerProtocol,
)
from missionforce.core.interfaces.tools import ToolAdapterProtocol

__all__ = [
    "MissionFilters",
    "MissionStoreProtocol",
    "MissionSuggesterProtocol",
    "PlanGeneratorProtocol",
    "ReplyComposerProtocol",
    "ToolAdapterProtocol",
]
