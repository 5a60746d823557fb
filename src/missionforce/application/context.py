"""Engine context.

The explicit, constructed bundle of collaborators every engine component
receives. There is no global registry; build one per engine instance.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from missionforce.application.locks import MissionLocks
from missionforce.application.mission_detector import InboxHeuristicSuggester
from missionforce.application.reply_composer import TemplateReplyComposer
from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.interfaces.persistence import MissionStoreProtocol
from missionforce.core.interfaces.planning import (
    MissionSuggesterProtocol,
    PlanGeneratorProtocol,
    ReplyComposerProtocol,
)
from missionforce.core.interfaces.tools import ToolAdapterProtocol
from missionforce.core.utils.time import utc_now


@dataclass
class EngineContext:
    """Collaborators and settings shared by executor, monitor and facade.

    Attributes:
        store: Mission and rule persistence
        tools: Email and calendar tool adapter
        config: Engine configuration
        plan_generator: Optional LLM plan generator (template plan when None)
        reply_composer: Reply composer for draft steps
        mission_suggester: Picks conversations worth a mission during detection
        clock: Source of "now", injectable for tests
        locks: Per-mission lock registry shared by all components of one engine
    """

    store: MissionStoreProtocol
    tools: ToolAdapterProtocol
    config: EngineConfig = field(default_factory=EngineConfig)
    plan_generator: PlanGeneratorProtocol | None = None
    reply_composer: ReplyComposerProtocol = field(default_factory=TemplateReplyComposer)
    mission_suggester: MissionSuggesterProtocol = field(default_factory=InboxHeuristicSuggester)
    clock: Callable[[], datetime] = utc_now
    locks: MissionLocks = field(default_factory=MissionLocks)
