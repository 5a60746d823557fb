"""
Core Domain Enums

Defines the status values, action types, and rule types used by the
mission engine to eliminate magic strings throughout the codebase.
"""

from enum import Enum


class MissionStatus(str, Enum):
    """Lifecycle status of a mission."""

    DRAFT = "draft"
    THINKING = "thinking"
    EXECUTING = "executing"
    WAITING_ON_USER = "waiting_on_user"
    WAITING_ON_OTHER = "waiting_on_other"
    AT_RISK = "at_risk"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MissionStatus.COMPLETED, MissionStatus.FAILED)


class StepStatus(str, Enum):
    """Status of an individual step."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    WAITING = "waiting"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.DONE, StepStatus.FAILED)


class ActionType(str, Enum):
    """Typed actions a step can dispatch."""

    SEARCH_EMAIL = "search_email"
    READ_THREAD = "read_thread"
    DRAFT_REPLY = "draft_reply"
    SEND_EMAIL = "send_email"
    GET_AVAILABILITY = "get_availability"
    CREATE_MEETING = "create_meeting"
    SCHEDULE_CHECK = "schedule_check"
    DONE = "done"

    @property
    def is_idempotent(self) -> bool:
        """Reads and bookkeeping are safe to repeat; sends and bookings are not."""
        return self not in NON_IDEMPOTENT_ACTIONS


NON_IDEMPOTENT_ACTIONS = frozenset({ActionType.SEND_EMAIL, ActionType.CREATE_MEETING})


class RuleType(str, Enum):
    """Kinds of autopilot rules."""

    AUTO_SEND = "auto_send"
    FOLLOW_UP_LIMIT = "follow_up_limit"
    NEW_CONTACT_APPROVAL = "new_contact_approval"
    TIME_WINDOW = "time_window"
    PRICING_APPROVAL = "pricing_approval"


class DeadlineWarning(str, Enum):
    """Deadline proximity computed by the escalation monitor."""

    NONE = "none"
    DUE_TOMORROW = "due_tomorrow"
    DUE_TODAY = "due_today"
    OVERDUE = "overdue"


class RiskFlag(str, Enum):
    """Risk flags that force a human to look at a proposed reply."""

    NEW_RECIPIENT = "new_recipient"
    EXTERNAL_DOMAIN = "external_domain"
    MENTIONS_MONEY = "mentions_money"
    MENTIONS_LEGAL = "mentions_legal"
    MENTIONS_MEDICAL = "mentions_medical"
    LARGE_RECIPIENT_LIST = "large_recipient_list"


class ResultKind(str, Enum):
    """Shape marker for step results that ask the user for something."""

    REPLY_PROPOSAL = "reply_proposal"
    CLARIFICATION = "clarification"
    APPROVAL_REQUIRED = "approval_required"


SYSTEM_APPROVER = "system"
