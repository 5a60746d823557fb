"""
Unit tests for reply composition

Tests verify:
- The template composer replies to the latest sender
- Follow-up drafts
- Invalid, failing or slow composers fall back to the template
- Fallback confidence stays below the approval threshold
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from missionforce.application.reply_composer import (
    FALLBACK_CONFIDENCE,
    TemplateReplyComposer,
    compose_reply,
    display_name,
    reply_subject,
)

GOAL = "follow up with Sarah about the contract"
MESSAGES = [
    {"from": "Tom <tom@example.com>", "subject": "Contract review", "body": "Forwarding"},
    {"from": "Sarah Lee <sarah@partner.example>", "subject": "Re: Contract review", "body": "?"},
]


@pytest.mark.parametrize(
    "address,name",
    [
        ("Sarah Lee <sarah@partner.example>", "Sarah"),
        ('"Tom Baker" <tom@example.com>', "Tom"),
        ("jane.doe@example.com", "Jane"),
        ("", "there"),
    ],
)
def test_display_name(address, name):
    assert display_name(address) == name


def test_reply_subject():
    assert reply_subject("Contract review") == "Re: Contract review"
    assert reply_subject("RE: Contract review") == "RE: Contract review"
    assert reply_subject("  ") == ""


class TestTemplateReplyComposer:
    async def test_replies_to_latest_sender(self):
        reply = await TemplateReplyComposer().compose_reply(GOAL, {"messages": MESSAGES})
        assert reply["to"] == ["Sarah Lee <sarah@partner.example>"]
        assert reply["subject"] == "Re: Contract review"
        assert reply["body"].startswith("Hi Sarah,")
        assert reply["confidence"] == 0.8
        assert reply["questions"] == []

    async def test_follow_up_body(self):
        reply = await TemplateReplyComposer().compose_reply(
            GOAL, {"messages": MESSAGES, "follow_up": True}
        )
        assert "following up" in reply["body"]
        assert "Contract review" in reply["body"]

    async def test_no_messages_asks_user(self):
        reply = await TemplateReplyComposer().compose_reply(GOAL, {})
        assert reply["to"] == []
        assert reply["confidence"] < 0.5
        assert reply["questions"]


class TestComposeReply:
    async def test_valid_composer_output_is_used(self):
        composer = AsyncMock()
        composer.compose_reply.return_value = {
            "to": "sarah@partner.example, tom@example.com",
            "subject": "Re: Contract",
            "body": "Looks good to me.",
            "confidence": 0.9,
        }
        proposal, used_fallback = await compose_reply(composer, GOAL, {}, timeout=1)
        assert not used_fallback
        assert proposal.to == ["sarah@partner.example", "tom@example.com"]
        assert proposal.confidence == 0.9

    @pytest.mark.parametrize(
        "raw",
        [
            {"to": ["a@b.example"], "body": ""},
            {"to": ["a@b.example"], "body": "Hi", "confidence": 3},
            "not a dict",
        ],
    )
    async def test_invalid_output_falls_back(self, raw):
        composer = AsyncMock()
        composer.compose_reply.return_value = raw
        proposal, used_fallback = await compose_reply(
            composer, GOAL, {"messages": MESSAGES}, timeout=1
        )
        assert used_fallback
        assert proposal.confidence == FALLBACK_CONFIDENCE
        assert proposal.to == ["Sarah Lee <sarah@partner.example>"]
        assert any("template" in a for a in proposal.assumptions)

    async def test_composer_error_falls_back(self):
        composer = AsyncMock()
        composer.compose_reply.side_effect = RuntimeError("model offline")
        proposal, used_fallback = await compose_reply(
            composer, GOAL, {"messages": MESSAGES}, timeout=1
        )
        assert used_fallback
        assert proposal.body

    async def test_slow_composer_times_out(self):
        class SlowComposer:
            async def compose_reply(self, goal, context):
                await asyncio.sleep(1)
                return {"body": "late"}

        proposal, used_fallback = await compose_reply(
            SlowComposer(), GOAL, {"messages": MESSAGES}, timeout=0.01
        )
        assert used_fallback
        assert proposal.body != "late"
