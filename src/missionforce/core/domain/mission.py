"""
Core Domain - Missions, Steps and Audit Entries

A Mission is the unit of goal-directed work. It exclusively owns its ordered
Steps and its append-only audit trail. This module holds pure data plus the
small lookups the engine needs (next pending step, latest result of a type);
all status changes go through the state machine in the application layer.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from missionforce.core.domain.enums import (
    ActionType,
    MissionStatus,
    ResultKind,
    RuleType,
    StepStatus,
)
from missionforce.core.utils.time import format_timestamp, parse_timestamp, utc_now


def new_id(prefix: str) -> str:
    """Generate a prefixed unique identifier."""
    return f"{prefix}_{uuid.uuid4().hex}"


@dataclass
class Step:
    """
    One typed action inside a Mission.

    Attributes:
        id: Unique identifier, also used as the idempotency key for sends
        order: Position in the execution sequence (unique within the mission)
        action_type: Which handler runs this step
        label: Human summary ("Search for Sarah's email")
        description: Free-text input, e.g. a search query or drafting hint
        params: Structured input (filters, thread id, approval payload)
        status: Current execution status
        result: Handler output, shape depends on action_type
        error: Failure message when status is FAILED
        error_details: Structured error payload when status is FAILED
        started_at: When the step started running
        completed_at: When the step reached a terminal or waiting state
        dispatch_started_at: Set right before a non-idempotent external call
    """

    action_type: ActionType
    order: int
    label: str = ""
    description: str = ""
    params: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("step"))
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    error: str | None = None
    error_details: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    dispatch_started_at: datetime | None = None

    @property
    def idempotency_key(self) -> str:
        return self.id

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage."""
        return {
            "id": self.id,
            "order": self.order,
            "action_type": self.action_type.value,
            "label": self.label,
            "description": self.description,
            "params": self.params,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "error_details": self.error_details,
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
            "dispatch_started_at": format_timestamp(self.dispatch_started_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Step:
        """Deserialize from stored dict."""
        return cls(
            id=str(data["id"]),
            order=int(data["order"]),
            action_type=ActionType(data["action_type"]),
            label=str(data.get("label", "")),
            description=str(data.get("description", "")),
            params=dict(data.get("params") or {}),
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            result=data.get("result"),
            error=data.get("error"),
            error_details=data.get("error_details"),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            dispatch_started_at=parse_timestamp(data.get("dispatch_started_at")),
        )


@dataclass(frozen=True)
class AuditEntry:
    """
    Immutable record of something the engine did for a mission.

    Attributes:
        mission_id: Owning mission
        action_type: Step action type, or an engine event ("nudge", "escalation")
        approved_by: "system" or the approving user's identifier
        extra: Structured payload (step id, result snapshot, error)
        id: Unique identifier
        timestamp: When the entry was written
    """

    mission_id: str
    action_type: str
    approved_by: str
    extra: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("audit"))
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage."""
        return {
            "id": self.id,
            "mission_id": self.mission_id,
            "timestamp": format_timestamp(self.timestamp),
            "action_type": self.action_type,
            "approved_by": self.approved_by,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditEntry:
        """Deserialize from stored dict."""
        return cls(
            id=str(data["id"]),
            mission_id=str(data["mission_id"]),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
            action_type=str(data["action_type"]),
            approved_by=str(data.get("approved_by", "system")),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class Mission:
    """
    A tracked unit of goal-directed work composed of ordered Steps.

    Attributes:
        owner_id: Principal that owns the mission and its autopilot rules
        goal: Free-text goal ("follow up with Sarah about the contract")
        success_condition: Optional description of what done looks like
        status: Lifecycle status, written only by the state machine
        status_before_risk: Status the mission was in when it was flagged
            at_risk; None while it is not at risk
        steps: Ordered steps; insertion order equals execution order
        linked_thread_ids: External thread references (set semantics)
        linked_email_ids: External message references (set semantics)
        autopilot_rule_refs: Rule types that apply; None means all owner rules
        nudge_count: Follow-ups queued by the escalation monitor so far
        max_nudges: Follow-up budget
        deadline: Optional due date
        audit_trail: Append-only record of engine actions
        thoughts: Transient, non-authoritative reasoning notes
        outcome_log: Closing summary once the mission completes
        version: Optimistic concurrency token, bumped on every store update
    """

    owner_id: str
    goal: str
    id: str = field(default_factory=lambda: new_id("mission"))
    success_condition: str | None = None
    status: MissionStatus = MissionStatus.DRAFT
    status_before_risk: MissionStatus | None = None
    steps: list[Step] = field(default_factory=list)
    linked_thread_ids: list[str] = field(default_factory=list)
    linked_email_ids: list[str] = field(default_factory=list)
    autopilot_rule_refs: list[RuleType] | None = None
    nudge_count: int = 0
    max_nudges: int = 3
    deadline: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_activity_at: datetime = field(default_factory=utc_now)
    last_nudge_at: datetime | None = None
    next_check_at: datetime | None = None
    audit_trail: list[AuditEntry] = field(default_factory=list)
    thoughts: list[str] = field(default_factory=list)
    outcome_log: str | None = None
    version: int = 0

    # ------------------------------------------------------------------
    # Step lookups
    # ------------------------------------------------------------------

    def ordered_steps(self) -> list[Step]:
        return sorted(self.steps, key=lambda s: s.order)

    def get_step(self, step_id: str) -> Step | None:
        return next((s for s in self.steps if s.id == step_id), None)

    def pending_steps(self) -> list[Step]:
        return [s for s in self.ordered_steps() if s.status == StepStatus.PENDING]

    def next_pending_step(self) -> Step | None:
        pending = self.pending_steps()
        return pending[0] if pending else None

    def running_steps(self) -> list[Step]:
        return [s for s in self.steps if s.status == StepStatus.RUNNING]

    def waiting_steps(self) -> list[Step]:
        return [s for s in self.ordered_steps() if s.status == StepStatus.WAITING]

    def last_executed_step(self) -> Step | None:
        """Most recent step (by order) that reached a terminal status."""
        executed = [s for s in self.ordered_steps() if s.status.is_terminal]
        return executed[-1] if executed else None

    def next_order(self) -> int:
        return max((s.order for s in self.steps), default=0) + 1

    def latest_result(self, action_type: ActionType) -> Any:
        """Result of the most recent successful step of the given type."""
        for step in reversed(self.ordered_steps()):
            if step.action_type == action_type and step.status == StepStatus.DONE:
                return step.result
        return None

    def latest_proposal(self) -> dict[str, Any] | None:
        """Latest reply proposal (clean or clarification) from a draft step."""
        for step in reversed(self.ordered_steps()):
            if step.action_type != ActionType.DRAFT_REPLY or step.status != StepStatus.DONE:
                continue
            result = step.result or {}
            if result.get("kind") == ResultKind.REPLY_PROPOSAL.value:
                return dict(result)
            proposal = result.get("proposal")
            if proposal:
                return dict(proposal)
        return None

    def known_thread_id(self) -> str | None:
        return self.linked_thread_ids[0] if self.linked_thread_ids else None

    # ------------------------------------------------------------------
    # Collection helpers (status fields are left to the state machine)
    # ------------------------------------------------------------------

    def link_thread(self, thread_id: str | None) -> None:
        if thread_id and thread_id not in self.linked_thread_ids:
            self.linked_thread_ids.append(thread_id)

    def link_email(self, email_id: str | None) -> None:
        if email_id and email_id not in self.linked_email_ids:
            self.linked_email_ids.append(email_id)

    def add_thought(self, text: str) -> None:
        self.thoughts.append(text)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "goal": self.goal,
            "success_condition": self.success_condition,
            "status": self.status.value,
            "status_before_risk": (
                self.status_before_risk.value if self.status_before_risk else None
            ),
            "steps": [s.to_dict() for s in self.ordered_steps()],
            "linked_thread_ids": list(self.linked_thread_ids),
            "linked_email_ids": list(self.linked_email_ids),
            "autopilot_rule_refs": (
                [r.value for r in self.autopilot_rule_refs]
                if self.autopilot_rule_refs is not None
                else None
            ),
            "nudge_count": self.nudge_count,
            "max_nudges": self.max_nudges,
            "deadline": format_timestamp(self.deadline),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "last_activity_at": format_timestamp(self.last_activity_at),
            "last_nudge_at": format_timestamp(self.last_nudge_at),
            "next_check_at": format_timestamp(self.next_check_at),
            "audit_trail": [e.to_dict() for e in self.audit_trail],
            "thoughts": list(self.thoughts),
            "outcome_log": self.outcome_log,
            "version": self.version,
        }

    def to_patch(self) -> dict[str, Any]:
        """Serialized mutable fields, suitable for ``update_mission``."""
        data = self.to_dict()
        for key in ("id", "owner_id", "created_at", "version"):
            data.pop(key)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Mission:
        """Deserialize from stored dict."""
        refs = data.get("autopilot_rule_refs")
        before_risk = data.get("status_before_risk")
        now = utc_now()
        return cls(
            id=str(data["id"]),
            owner_id=str(data["owner_id"]),
            goal=str(data.get("goal", "")),
            success_condition=data.get("success_condition"),
            status=MissionStatus(data.get("status", MissionStatus.DRAFT.value)),
            status_before_risk=MissionStatus(before_risk) if before_risk else None,
            steps=[Step.from_dict(s) for s in data.get("steps") or []],
            linked_thread_ids=list(data.get("linked_thread_ids") or []),
            linked_email_ids=list(data.get("linked_email_ids") or []),
            autopilot_rule_refs=[RuleType(r) for r in refs] if refs is not None else None,
            nudge_count=int(data.get("nudge_count", 0)),
            max_nudges=int(data.get("max_nudges", 3)),
            deadline=parse_timestamp(data.get("deadline")),
            created_at=parse_timestamp(data.get("created_at")) or now,
            updated_at=parse_timestamp(data.get("updated_at")) or now,
            last_activity_at=parse_timestamp(data.get("last_activity_at")) or now,
            last_nudge_at=parse_timestamp(data.get("last_nudge_at")),
            next_check_at=parse_timestamp(data.get("next_check_at")),
            audit_trail=[AuditEntry.from_dict(e) for e in data.get("audit_trail") or []],
            thoughts=[str(t) for t in data.get("thoughts") or []],
            outcome_log=data.get("outcome_log"),
            version=int(data.get("version", 0)),
        )
