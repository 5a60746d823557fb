"""
Step Handlers

One coroutine per action type. Handlers read their input from the step and
prior step results, call the tool adapter through :meth:`StepContext.call_tool`
(which enforces the per-call timeout and normalizes error results) and return
a :class:`StepOutcome`. They never set ``mission.status``.

``STEP_HANDLERS`` is checked at import time to cover every ActionType, so a
new action type cannot be added without a handler.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Any

import structlog

from missionforce.application.policy.autopilot import AutopilotPolicyEngine
from missionforce.application.reply_composer import compose_reply
from missionforce.application.risk import merge_flags, scan_reply
from missionforce.core.domain.autopilot import AutopilotRule, ProposedAction
from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.domain.enums import (
    SYSTEM_APPROVER,
    ActionType,
    MissionStatus,
    ResultKind,
    StepStatus,
)
from missionforce.core.domain.errors import (
    ExternalAPIError,
    MissingInputError,
    ToolTimeoutError,
    ToolUnavailableError,
)
from missionforce.core.domain.mission import Mission, Step
from missionforce.core.domain.outcome import StepOutcome
from missionforce.core.interfaces.planning import ReplyComposerProtocol
from missionforce.core.interfaces.tools import ToolAdapterProtocol
from missionforce.core.utils.time import format_timestamp, parse_timestamp

logger = structlog.get_logger(__name__)

DEFAULT_MEETING_MINUTES = 30
DEFAULT_AVAILABILITY_DAYS = 7


@dataclass
class StepContext:
    """Everything a handler may use while running one step.

    Attributes:
        mission: The mission being executed (read prior results from it)
        step: The step being executed
        tools: Tool adapter
        composer: Reply composer for draft_reply
        policy: Autopilot policy engine
        rules: The owner's enabled autopilot rules, read once per run
        config: Engine configuration
        now: Evaluation instant for this step
        begin_dispatch: Persists the dispatch marker of a non-idempotent step;
            must be awaited right before the external call
    """

    mission: Mission
    step: Step
    tools: ToolAdapterProtocol
    composer: ReplyComposerProtocol
    policy: AutopilotPolicyEngine
    rules: list[AutopilotRule]
    config: EngineConfig
    now: datetime
    begin_dispatch: Callable[[], Awaitable[None]]

    @property
    def timeout(self) -> float:
        return self.config.timeout_for(self.step.action_type)

    async def call_tool(self, operation: str, call: Awaitable[dict[str, Any]]) -> dict[str, Any]:
        """Await an adapter call with the step's timeout.

        Raises:
            ToolTimeoutError: The call exceeded its timeout
            ToolUnavailableError: The adapter reported the integration missing
            ExternalAPIError: The adapter returned an error result
        """
        try:
            response = await asyncio.wait_for(call, timeout=self.timeout)
        except (TimeoutError, asyncio.TimeoutError) as exc:
            raise ToolTimeoutError(
                f"{operation} timed out after {self.timeout:g}s",
                tool_name=operation,
                timeout_seconds=self.timeout,
            ) from exc
        if not isinstance(response, dict):
            raise ExternalAPIError(
                f"{operation} returned an unexpected response", tool_name=operation
            )
        if response.get("error"):
            if response.get("unavailable"):
                raise ToolUnavailableError(str(response["error"]), tool_name=operation)
            raise ExternalAPIError(str(response["error"]), tool_name=operation)
        return response


Handler = Callable[[StepContext], Awaitable[StepOutcome]]


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _latest(mission: Mission, action_type: ActionType) -> dict[str, Any]:
    result = mission.latest_result(action_type)
    return result if isinstance(result, dict) else {}


def _participants(messages: list[dict[str, Any]]) -> list[str]:
    people: list[str] = []
    for message in messages:
        for key in ("from", "to", "cc"):
            value = message.get(key)
            values = value if isinstance(value, list) else [value]
            people.extend(str(v) for v in values if v)
    return people


def _follow_ups_sent(mission: Mission, step: Step) -> int:
    # nudge_count already includes the follow-up this step is drafting.
    if step.params.get("follow_up"):
        number = int(step.params.get("nudge_number") or mission.nudge_count)
        return max(number - 1, 0)
    return mission.nudge_count


def _top_thread_id(search: dict[str, Any]) -> str | None:
    for thread in search.get("threads") or []:
        if isinstance(thread, dict) and thread.get("thread_id"):
            return str(thread["thread_id"])
    return None


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------


async def handle_search_email(ctx: StepContext) -> StepOutcome:
    query = str(ctx.step.params.get("query") or ctx.step.description or ctx.mission.goal)
    filters = dict(ctx.step.params.get("filters") or {})
    response = await ctx.call_tool("search_email", ctx.tools.search_email(query, filters))
    threads = [t for t in response.get("threads") or [] if isinstance(t, dict)]
    result = {
        "query": query,
        "filters": filters,
        "threads": threads,
        "count": int(response.get("count", len(threads))),
    }
    top = _top_thread_id(result)
    thought = (
        f"Found {len(threads)} matching thread(s)." if threads else f"No threads matched '{query}'."
    )
    return StepOutcome.succeeded(result, thread_ids=(top,) if top else (), thought=thought)


async def handle_read_thread(ctx: StepContext) -> StepOutcome:
    thread_id = (
        ctx.step.params.get("thread_id")
        or _top_thread_id(_latest(ctx.mission, ActionType.SEARCH_EMAIL))
        or ctx.mission.known_thread_id()
    )
    if not thread_id:
        raise MissingInputError(
            "No thread to read: the search found nothing and no thread id was given"
        )
    response = await ctx.call_tool("get_thread", ctx.tools.get_thread(str(thread_id)))
    messages = [m for m in response.get("messages") or [] if isinstance(m, dict)]
    result = {"thread_id": str(thread_id), "messages": messages, "count": len(messages)}
    email_ids = tuple(str(m["id"]) for m in messages if m.get("id"))
    return StepOutcome.succeeded(result, thread_ids=(str(thread_id),), email_ids=email_ids)


async def handle_draft_reply(ctx: StepContext) -> StepOutcome:
    mission, step, config = ctx.mission, ctx.step, ctx.config
    thread = _latest(mission, ActionType.READ_THREAD)
    messages = list(thread.get("messages") or [])
    follow_up = bool(step.params.get("follow_up"))
    context = {
        "messages": messages,
        "thread_id": thread.get("thread_id") or mission.known_thread_id(),
        "search": _latest(mission, ActionType.SEARCH_EMAIL),
        "instructions": step.description,
        "follow_up": follow_up,
        "nudge_number": step.params.get("nudge_number"),
        "success_condition": mission.success_condition,
    }
    proposal, used_fallback = await compose_reply(
        ctx.composer, mission.goal, context, timeout=ctx.timeout
    )

    flags = merge_flags(
        scan_reply(
            proposal.to,
            proposal.subject,
            proposal.body,
            known_participants=_participants(messages),
            owner_domain=config.owner_domain,
            large_recipient_threshold=config.large_recipient_threshold,
        )
    )
    flag_names = list(dict.fromkeys([f.value for f in flags] + proposal.risk_flags))
    questions = list(proposal.questions)
    if not proposal.to:
        questions.append("Who should receive this reply?")

    draft = proposal.to_dict()
    draft.update(
        {
            "risk_flags": flag_names,
            "thread_id": context["thread_id"],
            "follow_up": follow_up,
            "used_fallback": used_fallback,
        }
    )

    if proposal.confidence < config.low_confidence_threshold or flag_names or questions:
        if not questions:
            questions.append("Please review this draft before it is sent.")
        result = {
            "kind": ResultKind.CLARIFICATION.value,
            "questions": questions,
            "risk_flags": flag_names,
            "proposal": draft,
        }
        return StepOutcome.needs_user(result, thought="Draft needs review before sending.")

    action = ProposedAction(
        kind="draft_followup" if follow_up else "send_email",
        recipients=tuple(proposal.to),
        subject=proposal.subject,
        content=proposal.body,
        follow_ups_sent=_follow_ups_sent(mission, step),
    )
    decision = ctx.policy.evaluate(ctx.rules, action, mission, ctx.now)
    result = {"kind": ResultKind.REPLY_PROPOSAL.value, **draft, "policy": decision.to_dict()}
    if not decision.allowed:
        return StepOutcome.needs_user(result, thought="Reply drafted; waiting for approval.")

    send_step = Step(
        action_type=ActionType.SEND_EMAIL,
        order=step.order + 1,
        label=f"Send {'follow-up' if follow_up else 'reply'} to {', '.join(proposal.to)}",
        description=proposal.subject,
        params={
            "approval": {
                "to": list(proposal.to),
                "subject": proposal.subject,
                "body": proposal.body,
                "thread_id": context["thread_id"],
                "approved_by": SYSTEM_APPROVER,
            }
        },
    )
    return StepOutcome.succeeded(
        result, follow_on=[send_step], thought="Autopilot approved sending the reply."
    )


def _send_payload(approval: Mapping[str, Any], mission: Mission) -> dict[str, Any]:
    to = approval.get("to") or []
    if isinstance(to, str):
        to = [to]
    payload = {
        "to": [str(t) for t in to if t],
        "subject": str(approval.get("subject") or ""),
        "body": str(approval.get("body") or ""),
        "thread_id": approval.get("thread_id") or mission.known_thread_id(),
    }
    if approval.get("cc"):
        payload["cc"] = list(approval["cc"])
    if not payload["to"]:
        raise MissingInputError("Approval payload has no recipient")
    if not payload["body"]:
        raise MissingInputError("Approval payload has no body")
    return payload


async def handle_send_email(ctx: StepContext) -> StepOutcome:
    approval = ctx.step.params.get("approval")
    if not approval:
        result = {
            "kind": ResultKind.APPROVAL_REQUIRED.value,
            "proposal": ctx.mission.latest_proposal(),
        }
        return StepOutcome.waiting(result, thought="Sending needs an approved message.")

    payload = _send_payload(approval, ctx.mission)
    await ctx.begin_dispatch()
    response = await ctx.call_tool(
        "send_email",
        ctx.tools.send_email(payload, idempotency_key=ctx.step.idempotency_key),
    )
    message_id = response.get("message_id")
    if not message_id:
        raise ExternalAPIError("send_email returned no message id", tool_name="send_email")
    thread_id = response.get("thread_id") or payload["thread_id"]
    result = {
        "message_id": str(message_id),
        "thread_id": thread_id,
        "to": payload["to"],
        "subject": payload["subject"],
        "duplicate": bool(response.get("duplicate")),
    }
    return StepOutcome(
        status=StepStatus.DONE,
        result=result,
        request=MissionStatus.WAITING_ON_OTHER,
        thread_ids=(str(thread_id),) if thread_id else (),
        email_ids=(str(message_id),),
        approved_by=str(approval.get("approved_by") or SYSTEM_APPROVER),
        thought=f"Sent message to {', '.join(payload['to'])}.",
    )


async def handle_get_availability(ctx: StepContext) -> StepOutcome:
    params = ctx.step.params
    attendees = [str(a) for a in params.get("attendees") or []]
    window = params.get("window") or {
        "start": format_timestamp(ctx.now),
        "end": format_timestamp(ctx.now + timedelta(days=DEFAULT_AVAILABILITY_DAYS)),
    }
    duration = int(params.get("duration") or DEFAULT_MEETING_MINUTES)
    timezone = str(params.get("timezone") or ctx.config.owner_timezone)
    try:
        response = await ctx.call_tool(
            "get_availability",
            ctx.tools.get_availability(attendees, window, duration, timezone),
        )
    except ToolUnavailableError as exc:
        return StepOutcome.failed(exc, result={"slots": [], "error": str(exc)})
    slots = [s for s in response.get("slots") or [] if isinstance(s, dict)]
    result = {
        "slots": slots,
        "count": len(slots),
        "attendees": attendees,
        "duration": duration,
        "timezone": timezone,
    }
    return StepOutcome.succeeded(result, thought=f"Found {len(slots)} candidate slot(s).")


async def handle_create_meeting(ctx: StepContext) -> StepOutcome:
    params = ctx.step.params
    availability = _latest(ctx.mission, ActionType.GET_AVAILABILITY)
    slots = availability.get("slots") or []
    slot = params.get("slot") or (slots[0] if slots else None)
    if not slot:
        raise MissingInputError("No meeting slot chosen and no availability found")
    attendees = [str(a) for a in params.get("attendees") or availability.get("attendees") or []]
    title = str(params.get("title") or ctx.step.label or ctx.mission.goal)
    supported = ctx.config.supported_meeting_locations
    location = str(params.get("location") or (supported[0] if supported else ""))
    if location not in supported:
        raise ToolUnavailableError(
            f"Meeting location '{location}' is not available",
            tool_name="create_meeting",
            details={"supported": list(supported)},
        )

    meeting = {"title": title, "attendees": attendees, "slot": slot, "location": location}
    approval = params.get("approval")
    if approval:
        approved_by = str(approval.get("approved_by") or SYSTEM_APPROVER)
    else:
        action = ProposedAction(
            kind="create_meeting",
            recipients=tuple(attendees),
            subject=title,
            content=ctx.step.description,
        )
        decision = ctx.policy.evaluate(ctx.rules, action, ctx.mission, ctx.now)
        if not decision.allowed:
            result = {
                "kind": ResultKind.APPROVAL_REQUIRED.value,
                "meeting": meeting,
                "policy": decision.to_dict(),
            }
            return StepOutcome.waiting(result, thought="Booking needs approval.")
        approved_by = SYSTEM_APPROVER

    await ctx.begin_dispatch()
    response = await ctx.call_tool(
        "create_meeting",
        ctx.tools.create_meeting(
            title, attendees, slot, location, idempotency_key=ctx.step.idempotency_key
        ),
    )
    event_id = response.get("event_id")
    if not event_id:
        raise ExternalAPIError("create_meeting returned no event id", tool_name="create_meeting")
    result = {
        **meeting,
        "event_id": str(event_id),
        "join_link": response.get("join_link"),
        "duplicate": bool(response.get("duplicate")),
    }
    return StepOutcome.succeeded(result, approved_by=approved_by, thought=f"Booked '{title}'.")


async def handle_schedule_check(ctx: StepContext) -> StepOutcome:
    check_at = parse_timestamp(ctx.step.params.get("check_at")) or (
        ctx.now + timedelta(days=ctx.config.check_interval_days)
    )
    response = await ctx.call_tool(
        "schedule_check",
        ctx.tools.schedule_check(ctx.mission.id, format_timestamp(check_at)),
    )
    job_id = response.get("job_id")
    if not job_id:
        raise ExternalAPIError("schedule_check returned no job id", tool_name="schedule_check")
    result = {"job_id": str(job_id), "check_at": format_timestamp(check_at)}
    return StepOutcome.succeeded(result, next_check_at=check_at)


async def handle_done(ctx: StepContext) -> StepOutcome:
    steps = ctx.mission.ordered_steps()
    completed = sum(1 for s in steps if s.status == StepStatus.DONE)
    summary = f"{completed} of {len(steps)} steps completed for: {ctx.mission.goal}"
    result = {
        "summary": summary,
        "steps_completed": completed,
        "linked_thread_ids": list(ctx.mission.linked_thread_ids),
    }
    return StepOutcome.succeeded(result, thought=summary)


STEP_HANDLERS: Mapping[ActionType, Handler] = MappingProxyType(
    {
        ActionType.SEARCH_EMAIL: handle_search_email,
        ActionType.READ_THREAD: handle_read_thread,
        ActionType.DRAFT_REPLY: handle_draft_reply,
        ActionType.SEND_EMAIL: handle_send_email,
        ActionType.GET_AVAILABILITY: handle_get_availability,
        ActionType.CREATE_MEETING: handle_create_meeting,
        ActionType.SCHEDULE_CHECK: handle_schedule_check,
        ActionType.DONE: handle_done,
    }
)

_unhandled = set(ActionType) - set(STEP_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No step handler for: {sorted(a.value for a in _unhandled)}")
