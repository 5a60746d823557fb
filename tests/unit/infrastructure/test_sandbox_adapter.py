"""
Unit tests for the sandbox tool adapter

Tests verify:
- Search matching, filters and provider query building
- Idempotent sends and bookings
- Calendar availability and unavailability
- Error results for unknown threads and locations
"""

import pytest

from missionforce.infrastructure.tools import SandboxToolAdapter, demo_threads
from missionforce.infrastructure.tools.sandbox_adapter import build_search_query


@pytest.fixture
def adapter(clock):
    return SandboxToolAdapter(demo_threads(clock()), clock=clock)


def test_build_search_query():
    query = build_search_query(
        "contract", {"from": "sarah@partner.example", "has_attachment": True, "newer_than_days": 7}
    )
    assert query == "contract from:sarah@partner.example has:attachment newer_than:7d"
    assert build_search_query("", {"domain": "partner.example"}) == "from:*@partner.example"


class TestSearch:
    async def test_matches_words_ignoring_stopwords(self, adapter):
        result = await adapter.search_email("follow up with Sarah about the contract", {})
        assert [t["thread_id"] for t in result["threads"]] == ["thread_contract"]
        assert result["count"] == 1
        assert "Sarah Lee <sarah@partner.example>" in result["threads"][0]["participants"]

    async def test_newest_first(self, adapter):
        result = await adapter.search_email("", {})
        assert [t["thread_id"] for t in result["threads"]] == ["thread_offsite", "thread_contract"]

    async def test_filters(self, adapter):
        by_sender = await adapter.search_email("", {"from": "tom@example.com"})
        assert [t["thread_id"] for t in by_sender["threads"]] == ["thread_offsite"]

        by_domain = await adapter.search_email("", {"domain": "partner.example"})
        assert [t["thread_id"] for t in by_domain["threads"]] == ["thread_contract"]

        recent = await adapter.search_email("", {"newer_than_days": 2})
        assert [t["thread_id"] for t in recent["threads"]] == ["thread_offsite"]

        attachments = await adapter.search_email("", {"has_attachment": True})
        assert attachments["threads"] == []

    async def test_no_match(self, adapter):
        result = await adapter.search_email("quarterly invoice", {})
        assert result["threads"] == []
        assert adapter.call_count("search_email") == 1


class TestEmail:
    async def test_get_thread(self, adapter):
        thread = await adapter.get_thread("thread_contract")
        assert thread["messages"][0]["id"] == "msg_contract_1"
        thread["messages"].clear()
        assert (await adapter.get_thread("thread_contract"))["messages"]

    async def test_unknown_thread(self, adapter):
        thread = await adapter.get_thread("thread_missing")
        assert "not found" in thread["error"]

    async def test_send_is_idempotent(self, adapter):
        payload = {"to": ["sarah@partner.example"], "subject": "Re: Contract", "body": "Hi",
                   "thread_id": "thread_contract"}
        first = await adapter.send_email(payload, idempotency_key="step_1")
        second = await adapter.send_email(payload, idempotency_key="step_1")
        other = await adapter.send_email(payload, idempotency_key="step_2")

        assert first == {"message_id": "msg_0001", "thread_id": "thread_contract"}
        assert second == {**first, "duplicate": True}
        assert other["message_id"] == "msg_0002"
        assert len(adapter.sent) == 2
        thread = await adapter.get_thread("thread_contract")
        assert len(thread["messages"]) == 3

    async def test_send_without_thread_starts_one(self, adapter):
        response = await adapter.send_email(
            {"to": ["new@example.com"], "body": "Hello"}, idempotency_key="k"
        )
        assert response["thread_id"] in adapter.threads

    async def test_create_draft(self, adapter):
        response = await adapter.create_draft({"to": ["a@b.example"], "body": "x"})
        assert response["draft_id"].startswith("draft_")
        assert adapter.drafts[0]["draft_id"] == response["draft_id"]


class TestCalendar:
    async def test_availability_slots(self, adapter, clock):
        window = {"start": clock().isoformat(), "end": None}
        result = await adapter.get_availability(["tom@example.com"], window, 30, "UTC")
        assert len(result["slots"]) == 3
        assert result["slots"][0]["start"].startswith("2026-03-02T11:00")
        assert result["slots"][0]["end"].startswith("2026-03-02T11:30")

    async def test_calendar_not_connected(self, clock):
        adapter = SandboxToolAdapter([], calendar_connected=False, clock=clock)
        result = await adapter.get_availability([], {}, 30, "UTC")
        assert result["unavailable"] is True
        assert result["slots"] == []

    async def test_create_meeting_idempotent(self, adapter):
        slot = {"start": "2026-03-03T11:00:00+00:00", "end": "2026-03-03T11:30:00+00:00"}
        first = await adapter.create_meeting(
            "Sync", ["tom@example.com"], slot, "google_meet", idempotency_key="step_m"
        )
        again = await adapter.create_meeting(
            "Sync", ["tom@example.com"], slot, "google_meet", idempotency_key="step_m"
        )
        assert first["event_id"].startswith("evt_")
        assert again["duplicate"] is True
        assert len(adapter.meetings) == 1

    async def test_unsupported_location(self, adapter):
        result = await adapter.create_meeting("Sync", [], {}, "zoom", idempotency_key="k")
        assert result["unavailable"] is True
        assert adapter.meetings == []

    async def test_schedule_check(self, adapter):
        result = await adapter.schedule_check("mission_1", "2026-03-05T10:00:00+00:00")
        assert result["job_id"].startswith("check_mission_1_")
        assert adapter.scheduled_checks[0]["mission_id"] == "mission_1"
