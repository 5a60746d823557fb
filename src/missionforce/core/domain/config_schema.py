"""
Configuration Schema Validation

Pydantic models for the engine configuration loaded from YAML profiles.
Unknown keys are rejected so that typos surface as errors instead of
silently falling back to defaults.
"""

from __future__ import annotations

from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

from missionforce.core.domain.autopilot import DEFAULT_PRICING_KEYWORDS
from missionforce.core.domain.enums import ActionType


class PersistenceConfig(BaseModel):
    """Where missions and autopilot rules are stored."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["file", "memory"] = "file"
    work_dir: str = ".missionforce"


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = Field("INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")


class LLMConfig(BaseModel):
    """Model used by the LiteLLM-backed plan generator and reply composer."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    model: str = "gpt-4.1-mini"
    temperature: float = Field(0.2, ge=0.0, le=2.0)
    timeout_seconds: float = Field(60.0, gt=0)


class EngineConfig(BaseModel):
    """Tunables for the mission engine.

    Attributes:
        tool_timeout_seconds: Default per-call timeout for tool adapters
        action_timeouts: Per-action-type timeout overrides
        stale_after_days: Inactivity after which a waiting mission is nudged
        default_max_nudges: Follow-up budget for new missions
        low_confidence_threshold: Below this, drafts and plans ask the user
        check_interval_days: Default delay for ``schedule_check`` steps
        audit_context_entries: Audit entries handed to the plan generator
        owner_timezone: Owner's local clock for time-window rules
        owner_domain: Owner's mail domain, for external-domain risk flags
        owner_address: Owner's own address, so mission detection skips mail they sent
        detect_window_days: How far back mission detection scans the inbox
        detect_max_threads: Most threads handed to the mission suggester
        supported_meeting_locations: Locations ``create_meeting`` accepts
        pricing_keywords: Words that trigger pricing approval
        large_recipient_threshold: Recipient count that flags a reply
    """

    model_config = ConfigDict(extra="forbid")

    tool_timeout_seconds: float = Field(30.0, gt=0)
    action_timeouts: dict[ActionType, float] = Field(default_factory=dict)
    stale_after_days: float = Field(3.0, gt=0)
    default_max_nudges: int = Field(3, ge=0)
    low_confidence_threshold: float = Field(0.7, ge=0.0, le=1.0)
    check_interval_days: float = Field(3.0, gt=0)
    audit_context_entries: int = Field(5, ge=0)
    owner_timezone: str = "UTC"
    owner_domain: str | None = None
    owner_address: str | None = None
    detect_window_days: int = Field(7, ge=1)
    detect_max_threads: int = Field(10, ge=1, le=50)
    supported_meeting_locations: list[str] = Field(default_factory=lambda: ["google_meet"])
    pricing_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_PRICING_KEYWORDS))
    large_recipient_threshold: int = Field(5, ge=1)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)

    @field_validator("owner_timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    def timeout_for(self, action_type: ActionType) -> float:
        return self.action_timeouts.get(action_type, self.tool_timeout_seconds)
