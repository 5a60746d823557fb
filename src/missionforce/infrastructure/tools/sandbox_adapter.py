"""
Sandbox Tool Adapter

Deterministic, in-memory implementation of ToolAdapterProtocol. It never
talks to a real mailbox or calendar: threads come from fixtures, sends and
bookings are recorded locally, ids are sequential.

Idempotency keys are honored the way a real provider integration should:
a repeated key returns the first response with ``duplicate=True`` and no
second side effect.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

import structlog

from missionforce.core.interfaces.tools import ToolAdapterProtocol
from missionforce.core.utils.time import format_timestamp, parse_timestamp, utc_now

logger = structlog.get_logger(__name__)

_WORD = re.compile(r"[a-z0-9@.]{3,}")
_STOPWORDS = frozenset({"the", "and", "with", "about", "for", "follow", "from", "that", "this"})


def build_search_query(query: str, filters: dict[str, Any] | None) -> str:
    """Fold structured filters into a provider query string."""
    parts = [query.strip()] if query and query.strip() else []
    filters = filters or {}
    if filters.get("from"):
        parts.append(f"from:{filters['from']}")
    if filters.get("to"):
        parts.append(f"to:{filters['to']}")
    if filters.get("domain"):
        parts.append(f"from:*@{filters['domain']}")
    if filters.get("has_attachment"):
        parts.append("has:attachment")
    if filters.get("newer_than_days"):
        parts.append(f"newer_than:{int(filters['newer_than_days'])}d")
    return " ".join(parts)


def _participants(thread: dict[str, Any]) -> list[str]:
    people: list[str] = []
    for message in thread["messages"]:
        for key in ("from", "to", "cc"):
            value = message.get(key) or []
            for person in value if isinstance(value, list) else [value]:
                if person and person not in people:
                    people.append(person)
    return people


class SandboxToolAdapter(ToolAdapterProtocol):
    """In-memory mailbox and calendar.

    Args:
        threads: Fixture threads ``{"thread_id", "subject", "messages": [...]}``
        calendar_connected: When False, availability reports the calendar missing
        meeting_locations: Locations ``create_meeting`` supports
        slot_count: Number of candidate slots returned by availability
        owner_address: Sender address used for outgoing mail
        clock: Source of "now"
    """

    def __init__(
        self,
        threads: Iterable[dict[str, Any]] | None = None,
        *,
        calendar_connected: bool = True,
        meeting_locations: Iterable[str] = ("google_meet",),
        slot_count: int = 3,
        owner_address: str = "me@example.com",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.threads: dict[str, dict[str, Any]] = {
            t["thread_id"]: copy.deepcopy(t) for t in (threads or [])
        }
        self.calendar_connected = calendar_connected
        self.meeting_locations = tuple(meeting_locations)
        self.slot_count = slot_count
        self.owner_address = owner_address
        self._clock = clock
        self.sent: list[dict[str, Any]] = []
        self.drafts: list[dict[str, Any]] = []
        self.meetings: list[dict[str, Any]] = []
        self.scheduled_checks: list[dict[str, Any]] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._responses_by_key: dict[str, dict[str, Any]] = {}
        self._counter = 0
        self._logger = logger.bind(component="sandbox_adapter")

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}_{self._counter:04d}"

    def _replay(self, idempotency_key: str) -> dict[str, Any] | None:
        first = self._responses_by_key.get(idempotency_key)
        if first is None:
            return None
        self._logger.info("sandbox.duplicate_suppressed", idempotency_key=idempotency_key)
        return {**first, "duplicate": True}

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    async def search_email(self, query: str, filters: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("search_email", {"query": query, "filters": dict(filters or {})}))
        filters = filters or {}
        words = [w for w in _WORD.findall((query or "").lower()) if w not in _STOPWORDS]
        now = self._clock()
        hits: list[dict[str, Any]] = []
        for thread in self.threads.values():
            messages = thread["messages"]
            if not messages:
                continue
            people = [p.lower() for p in _participants(thread)]
            text = " ".join(
                [thread.get("subject", "")]
                + [f"{m.get('subject', '')} {m.get('body', '')} {m.get('from', '')}" for m in messages]
            ).lower()
            if words and not any(w in text for w in words):
                continue
            if filters.get("from") and not any(
                str(filters["from"]).lower() in str(m.get("from", "")).lower() for m in messages
            ):
                continue
            if filters.get("to") and not any(str(filters["to"]).lower() in p for p in people):
                continue
            if filters.get("domain") and not any(
                p.rstrip(">").endswith("@" + str(filters["domain"]).lower()) for p in people
            ):
                continue
            if filters.get("has_attachment") and not any(m.get("attachments") for m in messages):
                continue
            last_at = parse_timestamp(messages[-1].get("date"))
            if filters.get("newer_than_days") and last_at is not None:
                if last_at < now - timedelta(days=float(filters["newer_than_days"])):
                    continue
            hits.append(
                {
                    "thread_id": thread["thread_id"],
                    "subject": thread.get("subject") or messages[0].get("subject", ""),
                    "participants": _participants(thread),
                    "last_message_at": messages[-1].get("date"),
                    "snippet": str(messages[-1].get("body", ""))[:120],
                }
            )
        hits.sort(key=lambda h: h["last_message_at"] or "", reverse=True)
        return {
            "threads": hits,
            "count": len(hits),
            "provider_query": build_search_query(query, filters),
        }

    async def get_thread(self, thread_id: str) -> dict[str, Any]:
        self.calls.append(("get_thread", {"thread_id": thread_id}))
        thread = self.threads.get(thread_id)
        if thread is None:
            return {"thread_id": thread_id, "messages": [], "error": f"Thread not found: {thread_id}"}
        return {"thread_id": thread_id, "messages": copy.deepcopy(thread["messages"])}

    async def send_email(self, payload: dict[str, Any], *, idempotency_key: str) -> dict[str, Any]:
        self.calls.append(("send_email", {"payload": dict(payload), "idempotency_key": idempotency_key}))
        replay = self._replay(idempotency_key)
        if replay is not None:
            return replay

        message_id = self._next_id("msg")
        thread_id = payload.get("thread_id") or self._next_id("thread")
        message = {
            "id": message_id,
            "from": self.owner_address,
            "to": list(payload.get("to") or []),
            "subject": payload.get("subject", ""),
            "body": payload.get("body", ""),
            "date": format_timestamp(self._clock()),
        }
        thread = self.threads.setdefault(
            thread_id,
            {"thread_id": thread_id, "subject": payload.get("subject", ""), "messages": []},
        )
        thread["messages"].append(message)
        self.sent.append({**message, "thread_id": thread_id})
        response = {"message_id": message_id, "thread_id": thread_id}
        self._responses_by_key[idempotency_key] = response
        self._logger.info("sandbox.email_sent", message_id=message_id, thread_id=thread_id)
        return dict(response)

    async def create_draft(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_draft", {"payload": dict(payload)}))
        draft_id = self._next_id("draft")
        self.drafts.append({**payload, "draft_id": draft_id})
        return {"draft_id": draft_id, "thread_id": payload.get("thread_id")}

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    async def get_availability(
        self,
        attendees: list[str],
        window: dict[str, Any],
        duration: int,
        timezone: str,
    ) -> dict[str, Any]:
        self.calls.append(
            ("get_availability", {"attendees": list(attendees), "window": dict(window), "duration": duration})
        )
        if not self.calendar_connected:
            return {"slots": [], "error": "No calendar connected", "unavailable": True}
        start = parse_timestamp(window.get("start")) or self._clock()
        end = parse_timestamp(window.get("end")) or start + timedelta(days=7)
        base = start.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
        slots: list[dict[str, Any]] = []
        for day in range(self.slot_count):
            slot_start = base + timedelta(days=day)
            slot_end = slot_start + timedelta(minutes=duration)
            if slot_end > end:
                break
            slots.append(
                {
                    "start": format_timestamp(slot_start),
                    "end": format_timestamp(slot_end),
                    "timezone": timezone,
                }
            )
        return {"slots": slots}

    async def create_meeting(
        self,
        title: str,
        attendees: list[str],
        slot: dict[str, Any],
        location: str,
        *,
        idempotency_key: str,
    ) -> dict[str, Any]:
        self.calls.append(
            ("create_meeting", {"title": title, "location": location, "idempotency_key": idempotency_key})
        )
        replay = self._replay(idempotency_key)
        if replay is not None:
            return replay
        if location not in self.meeting_locations:
            return {"error": f"Meeting location '{location}' is not available", "unavailable": True}
        event_id = self._next_id("evt")
        response = {"event_id": event_id, "join_link": f"https://meet.example.com/{event_id}"}
        self.meetings.append(
            {"title": title, "attendees": list(attendees), "slot": dict(slot), **response}
        )
        self._responses_by_key[idempotency_key] = response
        return dict(response)

    async def schedule_check(self, mission_id: str, check_at: str) -> dict[str, Any]:
        self.calls.append(("schedule_check", {"mission_id": mission_id, "check_at": check_at}))
        when = parse_timestamp(check_at) or self._clock()
        job_id = f"check_{mission_id}_{int(when.timestamp())}"
        self.scheduled_checks.append({"job_id": job_id, "mission_id": mission_id, "check_at": check_at})
        return {"job_id": job_id}

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)


def demo_threads(now: datetime | None = None) -> list[dict[str, Any]]:
    """A tiny mailbox used by the CLI's sandbox mode."""
    now = now or utc_now()
    return [
        {
            "thread_id": "thread_contract",
            "subject": "Contract review",
            "messages": [
                {
                    "id": "msg_contract_1",
                    "from": "Sarah Lee <sarah@partner.example>",
                    "to": ["me@example.com"],
                    "subject": "Contract review",
                    "body": "Hi, I sent over the revised contract. Let me know your thoughts.",
                    "date": format_timestamp(now - timedelta(days=5)),
                }
            ],
        },
        {
            "thread_id": "thread_offsite",
            "subject": "Team offsite planning",
            "messages": [
                {
                    "id": "msg_offsite_1",
                    "from": "Tom Berg <tom@example.com>",
                    "to": ["me@example.com"],
                    "subject": "Team offsite planning",
                    "body": "Can we find a time next week to plan the offsite?",
                    "date": format_timestamp(now - timedelta(days=1)),
                }
            ],
        },
    ]
