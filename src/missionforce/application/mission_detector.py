"""Mission auto-detection.

Scans recent mail and asks a suggester which conversations deserve a
mission. ``InboxHeuristicSuggester`` is the deterministic default: every
recent thread whose last message came from someone else, and not from an
automated sender, becomes a "reply to" suggestion. ``MissionDetector``
wraps any suggester with a timeout and strict validation; when anything
goes wrong the owner simply gets no suggestions.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from typing import Any

import structlog
from pydantic import ValidationError

from missionforce.application.reply_composer import display_name
from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.domain.enums import ActionType
from missionforce.core.domain.errors import ExternalAPIError
from missionforce.core.domain.mission import Mission
from missionforce.core.domain.suggestion import MissionSuggestion, SuggestionBatch
from missionforce.core.interfaces.planning import MissionSuggesterProtocol
from missionforce.core.interfaces.tools import ToolAdapterProtocol

logger = structlog.get_logger(__name__)

_AUTOMATED_SENDER = re.compile(
    r"no-?reply|do-?not-?reply|notifications?@|newsletter|mailer-daemon", re.IGNORECASE
)
_ADDRESS = re.compile(r"<([^>]+)>")


def sender_address(sender: str) -> str:
    """``sarah@x.com`` from ``"Sarah Lee <sarah@x.com>"`` or a bare address."""
    match = _ADDRESS.search(sender or "")
    return (match.group(1) if match else sender or "").strip().lower()


class InboxHeuristicSuggester:
    """Suggests replying to threads where the other side spoke last."""

    async def suggest_missions(
        self, inbox: list[dict[str, Any]], context: dict[str, Any]
    ) -> list[dict[str, Any]]:
        owner = sender_address(context.get("owner_address") or "")
        suggestions = []
        for item in inbox:
            sender = str(item.get("from") or "")
            if not sender or _AUTOMATED_SENDER.search(sender):
                continue
            if owner and sender_address(sender) == owner:
                continue
            name = display_name(sender)
            subject = item.get("subject") or "their message"
            suggestions.append(
                {
                    "title": f"Reply to {name} about {subject}",
                    "success_condition": f"{name} has an answer and nothing is left open",
                    "linked_thread_ids": [item["thread_id"]],
                    "linked_email_ids": [item["email_id"]] if item.get("email_id") else [],
                    "reasoning": f"The last message came from {name} and has no reply yet",
                }
            )
        return suggestions


class MissionDetector:
    """Turns recent inbox activity into validated mission suggestions.

    Args:
        tools: Mail adapter used to scan the inbox
        suggester: Collaborator that picks the conversations
        config: Scan window, thread limit and timeouts
    """

    def __init__(
        self,
        tools: ToolAdapterProtocol,
        suggester: MissionSuggesterProtocol,
        config: EngineConfig,
    ) -> None:
        self.tools = tools
        self.suggester = suggester
        self.config = config
        self._logger = logger.bind(component="mission_detector")

    async def scan_inbox(self) -> list[dict[str, Any]]:
        """Summaries of the most recent threads, newest first.

        Raises:
            ExternalAPIError: The mailbox search failed.
        """
        result = await asyncio.wait_for(
            self.tools.search_email("", {"newer_than_days": self.config.detect_window_days}),
            timeout=self.config.timeout_for(ActionType.SEARCH_EMAIL),
        )
        if result.get("error"):
            raise ExternalAPIError(f"Inbox scan failed: {result['error']}", tool_name="search_email")

        inbox = []
        for thread in list(result.get("threads") or [])[: self.config.detect_max_threads]:
            thread_id = thread.get("thread_id")
            read = await asyncio.wait_for(
                self.tools.get_thread(thread_id),
                timeout=self.config.timeout_for(ActionType.READ_THREAD),
            )
            messages = read.get("messages") or []
            if read.get("error") or not messages:
                self._logger.warning("detect.thread_skipped", thread_id=thread_id, error=read.get("error"))
                continue
            last = messages[-1]
            inbox.append(
                {
                    "thread_id": thread_id,
                    "email_id": last.get("id"),
                    "from": last.get("from"),
                    "subject": thread.get("subject") or last.get("subject") or "",
                    "snippet": thread.get("snippet") or str(last.get("body") or "")[:120],
                    "date": last.get("date") or thread.get("last_message_at"),
                }
            )
        return inbox

    async def detect(self, open_missions: Iterable[Mission] = ()) -> list[MissionSuggestion]:
        """Suggest missions for threads no open mission tracks yet.

        Returns:
            Validated suggestions; an empty list when the scan, the suggester or
            validation fails.
        """
        open_missions = list(open_missions)
        tracked = {t for m in open_missions for t in m.linked_thread_ids}
        try:
            inbox = [i for i in await self.scan_inbox() if i["thread_id"] not in tracked]
            if not inbox:
                return []
            context = {
                "owner_address": self.config.owner_address,
                "open_missions": [m.goal for m in open_missions],
            }
            raw = await asyncio.wait_for(
                self.suggester.suggest_missions(inbox, context),
                timeout=self.config.llm.timeout_seconds,
            )
            suggestions = self._validate(raw, inbox)
        except ValidationError as exc:
            self._logger.warning("detect.invalid", error_count=exc.error_count())
            return []
        except (TimeoutError, asyncio.TimeoutError):
            self._logger.warning("detect.timeout")
            return []
        except Exception as exc:
            self._logger.warning("detect.failed", error=str(exc), error_type=type(exc).__name__)
            return []

        self._logger.info("detect.completed", scanned=len(inbox), suggested=len(suggestions))
        return suggestions

    @staticmethod
    def _validate(raw: Any, inbox: list[dict[str, Any]]) -> list[MissionSuggestion]:
        batch = SuggestionBatch.from_raw(raw)
        thread_ids = {i["thread_id"] for i in inbox}
        email_ids = {i["email_id"] for i in inbox if i.get("email_id")}
        for suggestion in batch.suggestions:
            unknown = (set(suggestion.linked_thread_ids) - thread_ids) | (
                set(suggestion.linked_email_ids) - email_ids
            )
            if unknown:
                raise ExternalAPIError(
                    "Suggestion references mail outside the scanned inbox",
                    tool_name="mission_suggester",
                    details={"unknown_ids": sorted(unknown)},
                )
        return batch.suggestions
