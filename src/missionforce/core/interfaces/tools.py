"""
Tool Adapter Protocol

This module defines the capability surface the step executor calls to reach
external mail and calendar systems. Concrete adapters (Gmail, calendar
booking providers, the sandbox adapter) are interchangeable behind it.

Result Format:
    Every method returns a dict. A failed call either raises (ToolUnavailableError,
    ExternalAPIError) or returns a dict with an ``error`` key; the executor
    treats both as a step failure.

Idempotency:
    ``send_email`` and ``create_meeting`` receive the dispatching step's id as
    ``idempotency_key``. Adapters that can detect a repeated key must return
    the original response instead of repeating the side effect.
"""

from typing import Any, Protocol


class ToolAdapterProtocol(Protocol):
    """Uniform capability set for email and calendar tools."""

    async def search_email(self, query: str, filters: dict[str, Any]) -> dict[str, Any]:
        """
        Search the mailbox.

        Args:
            query: Free-text or provider query
            filters: Optional structured filters (from, to, domain,
                has_attachment, newer_than_days)

        Returns:
            ``{"threads": [...], "count": int, "error"?: str}``. Each thread is
            ``{"thread_id", "subject", "participants", "last_message_at", "snippet"}``.
            An empty result is not an error.
        """
        ...

    async def get_thread(self, thread_id: str) -> dict[str, Any]:
        """
        Read the most recent messages of a thread.

        Returns:
            ``{"thread_id": str, "messages": [...], "error"?: str}``; messages are
            ordered oldest first with ``from``, ``to``, ``date``, ``subject``, ``body``.
        """
        ...

    async def send_email(self, payload: dict[str, Any], *, idempotency_key: str) -> dict[str, Any]:
        """
        Send a message. Non-idempotent.

        Args:
            payload: ``{"to": [...], "subject", "body", "thread_id"?, "cc"?}``
            idempotency_key: Id of the step dispatching the send

        Returns:
            ``{"message_id": str, "thread_id": str | None, "error"?: str}``
        """
        ...

    async def create_draft(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Store a draft without sending it.

        Returns:
            ``{"draft_id": str, "thread_id": str | None, "error"?: str}``
        """
        ...

    async def get_availability(
        self,
        attendees: list[str],
        window: dict[str, Any],
        duration: int,
        timezone: str,
    ) -> dict[str, Any]:
        """
        Find candidate meeting slots.

        Returns:
            ``{"slots": [{"start", "end", "timezone"}, ...], "error"?: str}``; the
            slot list may be empty.
        """
        ...

    async def create_meeting(
        self,
        title: str,
        attendees: list[str],
        slot: dict[str, Any],
        location: str,
        *,
        idempotency_key: str,
    ) -> dict[str, Any]:
        """
        Book a meeting. Non-idempotent.

        Returns:
            ``{"event_id": str, "join_link": str | None, "error"?: str}``
        """
        ...

    async def schedule_check(self, mission_id: str, check_at: str) -> dict[str, Any]:
        """
        Register a future escalation check for a mission.

        Returns:
            ``{"job_id": str}``
        """
        ...
