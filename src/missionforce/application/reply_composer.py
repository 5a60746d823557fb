"""Reply composition for ``draft_reply`` steps.

``TemplateReplyComposer`` is the deterministic default. ``compose_reply``
wraps any composer with strict validation, a timeout and a fallback to the
template, so a broken LLM never blocks a mission; fallback drafts are capped
below the confidence threshold and always go to the user.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import structlog
from pydantic import ValidationError

from missionforce.core.domain.reply import ReplyProposal
from missionforce.core.interfaces.planning import ReplyComposerProtocol

logger = structlog.get_logger(__name__)

FALLBACK_CONFIDENCE = 0.5

_NAME_IN_ADDRESS = re.compile(r"^\s*\"?([^\"<@]+?)\"?\s*<")


def display_name(address: str) -> str:
    """First name from ``"Sarah Lee <sarah@x.com>"`` or the mailbox part."""
    match = _NAME_IN_ADDRESS.match(address or "")
    if match:
        return match.group(1).split()[0]
    local = (address or "").split("@")[0].strip("<> ")
    return local.split(".")[0].capitalize() if local else "there"


def reply_subject(subject: str) -> str:
    subject = (subject or "").strip()
    if not subject:
        return ""
    return subject if subject.lower().startswith("re:") else f"Re: {subject}"


class TemplateReplyComposer:
    """Builds a short, polite reply from the latest message of the thread."""

    def __init__(self, signature: str = "Best regards") -> None:
        self.signature = signature

    async def compose_reply(self, goal: str, context: dict[str, Any]) -> dict[str, Any]:
        messages = list(context.get("messages") or [])
        follow_up = bool(context.get("follow_up"))
        instructions = (context.get("instructions") or "").strip()

        if not messages:
            return {
                "to": [],
                "subject": "",
                "body": f"(No conversation found yet for: {goal})",
                "confidence": 0.2,
                "assumptions": [],
                "questions": ["Which conversation or recipient should this reply go to?"],
            }

        last = messages[-1]
        sender = str(last.get("from") or "")
        subject = reply_subject(str(last.get("subject") or ""))
        name = display_name(sender)
        if follow_up:
            body = (
                f"Hi {name},\n\n"
                f"Just following up on my previous message regarding {subject[4:] or goal}. "
                "Could you let me know where things stand?\n\n"
                f"{self.signature}"
            )
        else:
            body = (
                f"Hi {name},\n\n"
                f"Thanks for your message. {instructions or goal}\n\n"
                f"{self.signature}"
            )
        return {
            "to": [sender] if sender else [],
            "subject": subject,
            "body": body,
            "confidence": 0.8,
            "assumptions": ["Replying to the most recent message in the thread"],
            "questions": [],
        }


async def compose_reply(
    composer: ReplyComposerProtocol,
    goal: str,
    context: dict[str, Any],
    *,
    timeout: float,
    fallback: ReplyComposerProtocol | None = None,
) -> tuple[ReplyProposal, bool]:
    """Run ``composer`` and validate its output.

    Returns:
        (proposal, used_fallback)
    """
    try:
        raw = await asyncio.wait_for(composer.compose_reply(goal, context), timeout=timeout)
        return ReplyProposal.model_validate(raw), False
    except ValidationError as exc:
        logger.warning("reply.invalid", error_count=exc.error_count())
    except (TimeoutError, asyncio.TimeoutError):
        logger.warning("reply.timeout", timeout_seconds=timeout)
    except Exception as exc:
        logger.warning("reply.composer_failed", error=str(exc), error_type=type(exc).__name__)

    template = fallback or TemplateReplyComposer()
    proposal = ReplyProposal.model_validate(await template.compose_reply(goal, context))
    proposal.confidence = min(proposal.confidence, FALLBACK_CONFIDENCE)
    proposal.assumptions.append("Drafted from a template because the composer was unavailable")
    return proposal, True
