"""
Planning Protocols

Contracts for the LLM-backed collaborators: the plan generator, which turns a
goal into ordered steps, the reply composer, which proposes a reply for a
``draft_reply`` step, and the mission suggester, which spots missions in
recent mail. All of them may fail or return garbage; callers
validate their output strictly and fall back to deterministic behavior.
"""

from typing import Any, Protocol


class PlanGeneratorProtocol(Protocol):
    """Produces an ordered step list for a goal."""

    async def generate_plan(self, goal: str, context: dict[str, Any]) -> Any:
        """
        Propose a plan.

        Args:
            goal: The mission goal in plain language
            context: ``thread_id``, ``success_condition``, ``linked_thread_ids``,
                ``recent_audit`` (last N audit entries as dicts)

        Returns:
            Either ``[{"action_type", "label", "description", "params"?}, ...]`` or
            ``{"steps": [...], "confidence"?: float, "questions"?: [str]}``.
            May raise or return an empty or malformed value on failure.
        """
        ...


class ReplyComposerProtocol(Protocol):
    """Proposes a reply given the mission goal and what was read so far."""

    async def compose_reply(self, goal: str, context: dict[str, Any]) -> dict[str, Any]:
        """
        Propose a reply.

        Args:
            goal: The mission goal (or follow-up instruction)
            context: ``messages`` (latest thread read), ``thread_id``,
                ``search`` (latest search result), ``instructions`` (step
                description), ``follow_up`` and ``nudge_number``

        Returns:
            ``{"to": [...], "subject": str, "body": str, "confidence": float,
            "assumptions": [...], "questions": [...], "risk_flags": [...]}``
        """
        ...


class MissionSuggesterProtocol(Protocol):
    """Spots conversations in recent mail that deserve a mission."""

    async def suggest_missions(
        self, inbox: list[dict[str, Any]], context: dict[str, Any]
    ) -> Any:
        """
        Propose missions.

        Args:
            inbox: Recent threads, newest first, each ``{"thread_id", "email_id",
                "from", "subject", "snippet", "date"}``
            context: ``owner_address`` and ``open_missions`` (goals of the
                owner's open missions)

        Returns:
            ``[{"title", "success_condition", "linked_thread_ids",
            "linked_email_ids", "reasoning"?}, ...]`` or ``{"suggestions": [...]}``.
            An empty list means nothing worth tracking.
        """
        ...
