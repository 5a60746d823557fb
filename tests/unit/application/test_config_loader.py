"""
Unit tests for profile loading and engine construction

Tests verify:
- Bundled profiles load and validate
- Custom profile directory lookup
- Invalid YAML or schema violations raise ConfigError
- Missing profiles fall back to defaults only through load_safe
- The factory picks the store backend from the profile
"""

import pytest

from missionforce.application.config_loader import ConfigLoader
from missionforce.application.factory import EngineFactory
from missionforce.core.domain.enums import ActionType
from missionforce.core.domain.errors import ConfigError
from missionforce.infrastructure.persistence import FileMissionStore, InMemoryMissionStore


class TestConfigLoader:
    def test_bundled_default_profile(self):
        config = ConfigLoader().load("default")
        assert config.persistence.type == "file"
        assert config.timeout_for(ActionType.SEARCH_EMAIL) == 20
        assert config.timeout_for(ActionType.DONE) == 30
        assert config.llm.enabled is False

    def test_bundled_sandbox_profile(self):
        config = ConfigLoader().load("sandbox")
        assert config.persistence.type == "memory"
        assert config.owner_domain == "example.com"
        assert config.default_max_nudges == 2

    def test_custom_directory(self, tmp_path):
        (tmp_path / "custom").mkdir()
        (tmp_path / "custom" / "team.yaml").write_text("stale_after_days: 5\n")
        config = ConfigLoader(tmp_path).load("team")
        assert config.stale_after_days == 5

    def test_standard_profile_wins_over_custom(self, tmp_path):
        (tmp_path / "custom").mkdir()
        (tmp_path / "team.yaml").write_text("default_max_nudges: 1\n")
        (tmp_path / "custom" / "team.yaml").write_text("default_max_nudges: 4\n")
        assert ConfigLoader(tmp_path).load("team").default_max_nudges == 1

    def test_empty_file_gives_defaults(self, tmp_path):
        (tmp_path / "empty.yaml").write_text("")
        assert ConfigLoader(tmp_path).load("empty").stale_after_days == 3

    def test_missing_profile(self, tmp_path):
        loader = ConfigLoader(tmp_path)
        with pytest.raises(FileNotFoundError):
            loader.load("nope")
        assert loader.load_safe("nope").persistence.type == "file"

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("stale_after_days: [1,\n")
        with pytest.raises(ConfigError) as exc_info:
            ConfigLoader(tmp_path).load_safe("broken")
        assert "broken.yaml" in exc_info.value.message

    def test_unknown_key_is_rejected(self, tmp_path):
        (tmp_path / "typo.yaml").write_text("stale_after_dayz: 3\n")
        with pytest.raises(ConfigError) as exc_info:
            ConfigLoader(tmp_path).load("typo")
        assert "stale_after_dayz" in exc_info.value.message

    def test_invalid_timezone(self):
        with pytest.raises(ConfigError):
            ConfigLoader.validate({"owner_timezone": "Mars/Olympus"})

    def test_non_mapping(self):
        with pytest.raises(ConfigError):
            ConfigLoader.validate(["not", "a", "mapping"])


class TestEngineFactory:
    def test_memory_profile(self, clock):
        engine = EngineFactory(clock=clock).create("sandbox")
        assert isinstance(engine.context.store, InMemoryMissionStore)
        assert engine.context.plan_generator is None
        assert type(engine.context.mission_suggester).__name__ == "InboxHeuristicSuggester"
        assert engine.context.clock is clock

    def test_file_profile_uses_work_dir(self, tmp_path):
        engine = EngineFactory().create("default", work_dir=str(tmp_path))
        assert isinstance(engine.context.store, FileMissionStore)

    def test_llm_profile_wires_litellm(self, tmp_path):
        (tmp_path / "llm.yaml").write_text(
            "persistence:\n  type: memory\nllm:\n  enabled: true\n  model: gpt-4.1-mini\n"
        )
        engine = EngineFactory(config_dir=tmp_path).create("llm")
        assert engine.context.plan_generator is not None
        assert type(engine.context.reply_composer).__name__ == "LiteLLMReplyComposer"
        assert type(engine.context.mission_suggester).__name__ == "LiteLLMMissionSuggester"

    async def test_sandbox_engine_runs_demo_mission(self, clock):
        engine = EngineFactory(clock=clock).create("sandbox")
        mission = await engine.create_mission("demo", "follow up with Sarah about the contract")
        mission = await engine.run_mission("demo", mission.id)
        assert mission.linked_thread_ids == ["thread_contract"]
        assert mission.status.value == "waiting_on_user"

    async def test_sandbox_engine_suggests_demo_missions(self, clock):
        engine = EngineFactory(clock=clock).create("sandbox")
        suggestions = await engine.suggest_missions("demo")
        assert [s.linked_thread_ids for s in suggestions] == [["thread_offsite"], ["thread_contract"]]
