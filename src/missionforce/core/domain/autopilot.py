"""Autopilot rule domain models.

Autopilot rules are named, independently toggleable policies owned by a
principal (not by a mission). The policy engine evaluates them against a
proposed action; this module only defines the data and the per-type
configuration schemas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from missionforce.core.domain.enums import RuleType
from missionforce.core.domain.errors import ConfigError
from missionforce.core.domain.mission import new_id
from missionforce.core.utils.time import format_timestamp, parse_timestamp, utc_now

DEFAULT_PRICING_KEYWORDS: tuple[str, ...] = (
    "price",
    "pricing",
    "cost",
    "rate",
    "quote",
    "invoice",
    "payment",
    "budget",
)


class AutoSendConfig(BaseModel):
    """``auto_send`` has no parameters; its presence is the permission."""

    model_config = ConfigDict(extra="allow")


class FollowUpLimitConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_follow_ups: int = Field(2, ge=0)


class NewContactApprovalConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    require_approval: bool = True


class TimeWindowConfig(BaseModel):
    """Allowed sending hours on the owner's clock, ``[start_hour, end_hour)``."""

    model_config = ConfigDict(extra="forbid")

    start_hour: int = Field(9, ge=0, le=23)
    end_hour: int = Field(18, ge=0, le=24)
    timezone: str | None = None

    @model_validator(mode="after")
    def validate_window(self) -> "TimeWindowConfig":
        if self.start_hour == self.end_hour:
            raise ValueError("time window must not be empty (start_hour == end_hour)")
        return self


class PricingApprovalConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    require_approval: bool = True
    keywords: list[str] | None = None


RULE_CONFIG_SCHEMAS: dict[RuleType, type[BaseModel]] = {
    RuleType.AUTO_SEND: AutoSendConfig,
    RuleType.FOLLOW_UP_LIMIT: FollowUpLimitConfig,
    RuleType.NEW_CONTACT_APPROVAL: NewContactApprovalConfig,
    RuleType.TIME_WINDOW: TimeWindowConfig,
    RuleType.PRICING_APPROVAL: PricingApprovalConfig,
}


def validate_rule_config(rule_type: RuleType, config: dict[str, Any] | None) -> dict[str, Any]:
    """Validate and normalize a rule's config against its type schema.

    Raises:
        ConfigError: If the config does not match the schema for ``rule_type``.
    """
    schema = RULE_CONFIG_SCHEMAS[rule_type]
    try:
        model = schema.model_validate(config or {})
    except ValidationError as exc:
        raise ConfigError(
            f"Invalid config for autopilot rule '{rule_type.value}'",
            details={"rule_type": rule_type.value, "errors": exc.errors(include_url=False)},
        ) from exc
    return model.model_dump(exclude_none=True)


@dataclass
class AutopilotRule:
    """A named, independently toggleable autopilot policy.

    Attributes:
        rule_type: Which policy this is
        config: Type-specific parameters (see the ``*Config`` schemas)
        enabled: Whether the rule participates in evaluation
        owner_id: Principal that owns the rule
        rule_id: Unique identifier
        updated_at: Last modification time
    """

    rule_type: RuleType
    config: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    owner_id: str = ""
    rule_id: str = field(default_factory=lambda: new_id("rule"))
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage."""
        return {
            "rule_id": self.rule_id,
            "owner_id": self.owner_id,
            "rule_type": self.rule_type.value,
            "config": dict(self.config),
            "enabled": self.enabled,
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutopilotRule:
        """Deserialize from stored dict."""
        return cls(
            rule_id=str(data.get("rule_id") or new_id("rule")),
            owner_id=str(data.get("owner_id", "")),
            rule_type=RuleType(data["rule_type"]),
            config=dict(data.get("config") or {}),
            enabled=bool(data.get("enabled", True)),
            updated_at=parse_timestamp(data.get("updated_at")) or utc_now(),
        )


@dataclass(frozen=True)
class ProposedAction:
    """An action the engine would like to take without asking the user.

    Attributes:
        kind: "send_email", "draft_followup" or "create_meeting"
        recipients: Addresses the action reaches
        subject: Message subject or meeting title
        content: Body text scanned for pricing keywords
        follow_ups_sent: Follow-ups already sent for the mission, not counting
            the one this action would send
    """

    kind: str
    recipients: tuple[str, ...] = ()
    subject: str = ""
    content: str = ""
    follow_ups_sent: int = 0


class PolicyEffect(Enum):
    """Outcome of a policy evaluation."""

    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class PolicyDecision:
    """Result of evaluating the autopilot rules for one proposed action.

    Attributes:
        effect: ALLOW or DENY
        reasons: One entry per denying rule (empty when allowed)
        denied_by: Rule types that denied
        evaluated: Rule types that were considered
    """

    effect: PolicyEffect
    reasons: tuple[str, ...] = ()
    denied_by: tuple[RuleType, ...] = ()
    evaluated: tuple[RuleType, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.effect == PolicyEffect.ALLOW

    def to_dict(self) -> dict[str, Any]:
        return {
            "effect": self.effect.value,
            "reasons": list(self.reasons),
            "denied_by": [r.value for r in self.denied_by],
            "evaluated": [r.value for r in self.evaluated],
        }
