"""
Engine Factory

Builds a :class:`MissionEngine` from a configuration profile: picks the store
backend, wires the LLM collaborators when enabled and falls back to the
sandbox tool adapter when no adapter is supplied.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import structlog

from missionforce.application.config_loader import DEFAULT_PROFILE, ConfigLoader
from missionforce.application.context import EngineContext
from missionforce.application.mission_detector import InboxHeuristicSuggester
from missionforce.application.mission_engine import MissionEngine
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
from missionforce.infrastructure.llm import (
    LiteLLMJsonClient,
    LiteLLMMissionSuggester,
    LiteLLMPlanGenerator,
    LiteLLMReplyComposer,
)
from missionforce.infrastructure.persistence import FileMissionStore, InMemoryMissionStore
from missionforce.infrastructure.tools import SandboxToolAdapter, demo_threads

logger = structlog.get_logger(__name__)


class EngineFactory:
    """Create mission engines from profiles.

    Args:
        config_dir: Directory with profile YAML files (package configs by default)
        clock: Source of "now" shared by every component
    """

    def __init__(
        self,
        config_dir: Path | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.loader = ConfigLoader(config_dir)
        self.clock = clock
        self._logger = logger.bind(component="engine_factory")

    def build_store(self, config: EngineConfig, work_dir: str | None = None) -> MissionStoreProtocol:
        if config.persistence.type == "memory":
            return InMemoryMissionStore(time_provider=self.clock)
        return FileMissionStore(
            work_dir=work_dir or config.persistence.work_dir, time_provider=self.clock
        )

    def build_llm(
        self, config: EngineConfig
    ) -> tuple[PlanGeneratorProtocol | None, ReplyComposerProtocol, MissionSuggesterProtocol]:
        if not config.llm.enabled:
            return None, TemplateReplyComposer(), InboxHeuristicSuggester()
        client = LiteLLMJsonClient(config.llm)
        return (
            LiteLLMPlanGenerator(client),
            LiteLLMReplyComposer(client),
            LiteLLMMissionSuggester(client),
        )

    def create_from_config(
        self,
        config: EngineConfig,
        *,
        tools: ToolAdapterProtocol | None = None,
        store: MissionStoreProtocol | None = None,
        work_dir: str | None = None,
    ) -> MissionEngine:
        plan_generator, composer, suggester = self.build_llm(config)
        context = EngineContext(
            store=store or self.build_store(config, work_dir),
            tools=tools
            or SandboxToolAdapter(
                demo_threads(self.clock()),
                meeting_locations=config.supported_meeting_locations,
                owner_address=config.owner_address or "me@example.com",
                clock=self.clock,
            ),
            config=config,
            plan_generator=plan_generator,
            reply_composer=composer,
            mission_suggester=suggester,
            clock=self.clock,
        )
        self._logger.debug(
            "engine_created",
            persistence=config.persistence.type,
            llm_enabled=config.llm.enabled,
        )
        return MissionEngine(context)

    def create(
        self,
        profile: str = DEFAULT_PROFILE,
        *,
        tools: ToolAdapterProtocol | None = None,
        store: MissionStoreProtocol | None = None,
        work_dir: str | None = None,
    ) -> MissionEngine:
        """Load ``profile`` (defaults when it does not exist) and build an engine.

        Raises:
            ConfigError: The profile exists but is invalid.
        """
        config = self.loader.load_safe(profile)
        return self.create_from_config(config, tools=tools, store=store, work_dir=work_dir)
