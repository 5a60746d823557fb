"""
Config Loader
=============

Loads engine configuration profiles from YAML.

Search order for a profile name:
1. ``{config_dir}/{profile}.yaml``
2. ``{config_dir}/custom/{profile}.yaml``
3. Built-in defaults (only via :meth:`ConfigLoader.load_safe`)

Every loaded profile is validated against :class:`EngineConfig`; unlike
unknown profiles, invalid ones are never silently replaced by defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.domain.errors import ConfigError

logger = structlog.get_logger(__name__)

DEFAULT_PROFILE = "default"
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "configs"


class ConfigLoader:
    """Load and validate engine configuration profiles.

    Args:
        config_dir: Directory containing profile YAML files.
    """

    def __init__(self, config_dir: Path | None = None) -> None:
        self._config_dir = config_dir or DEFAULT_CONFIG_DIR
        self._logger = logger.bind(component="config_loader")

    def resolve_path(self, profile: str) -> Path:
        """Path of the profile file.

        Raises:
            FileNotFoundError: If neither the standard nor the custom file exists.
        """
        profile_path = self._config_dir / f"{profile}.yaml"
        if profile_path.exists():
            return profile_path
        custom_path = self._config_dir / "custom" / f"{profile}.yaml"
        if custom_path.exists():
            self._logger.debug("profile_using_custom", profile=profile, path=str(custom_path))
            return custom_path
        raise FileNotFoundError(f"Profile not found: {profile_path} or {custom_path}")

    def load(self, profile: str = DEFAULT_PROFILE) -> EngineConfig:
        """Load and validate a profile.

        Raises:
            FileNotFoundError: Unknown profile
            ConfigError: Unparsable YAML or schema violation
        """
        path = self.resolve_path(profile)
        try:
            with open(path) as f:
                raw: Any = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(
                f"Invalid YAML in {path}", details={"path": str(path), "error": str(exc)}
            ) from exc
        config = self.validate(raw, path=path)
        self._logger.debug("profile_loaded", profile=profile, path=str(path))
        return config

    def load_safe(self, profile: str = DEFAULT_PROFILE) -> EngineConfig:
        """Load a profile, falling back to built-in defaults when it does not exist."""
        try:
            return self.load(profile)
        except FileNotFoundError:
            self._logger.debug("profile_not_found_using_defaults", profile=profile)
            return EngineConfig()

    @staticmethod
    def validate(raw: Any, *, path: Path | None = None) -> EngineConfig:
        """Validate a raw mapping as :class:`EngineConfig`.

        Raises:
            ConfigError: Naming the offending file and fields.
        """
        where = str(path) if path else "<inline>"
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config in {where} must be a mapping", details={"path": where}
            )
        try:
            return EngineConfig.model_validate(raw)
        except ValidationError as exc:
            fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
            raise ConfigError(
                f"Invalid configuration in {where}: {', '.join(fields)}",
                details={"path": where, "errors": exc.errors(include_url=False, include_input=False)},
            ) from exc
