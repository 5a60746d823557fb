"""
Unit tests for mission auto-detection

Tests verify:
- The inbox scan covers the configured window and thread limit
- The default suggester proposes replies where the other side spoke last
- Mail from the owner, automated senders and tracked threads is skipped
- Suggester output is validated; anything invalid yields no suggestions
- Failing or slow mailboxes and suggesters yield no suggestions
- Accepted suggestions become planned missions
"""

import asyncio
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from missionforce.application.context import EngineContext
from missionforce.application.mission_detector import InboxHeuristicSuggester, MissionDetector
from missionforce.application.mission_engine import MissionEngine
from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.domain.enums import ActionType, MissionStatus
from missionforce.core.domain.errors import ExternalAPIError
from missionforce.core.domain.suggestion import MissionSuggestion, SuggestionBatch
from missionforce.core.utils.time import format_timestamp

OWNER = "owner_1"
ME = "me@example.com"

VALID = {
    "title": "Reply to Sarah about Contract review",
    "success_condition": "Sarah has an answer",
    "linked_thread_ids": ["thread_contract"],
    "linked_email_ids": ["msg_1"],
}


def add_thread(sandbox, clock, thread_id, sender, *, days_ago=1.0, subject="Hello"):
    sandbox.threads[thread_id] = {
        "thread_id": thread_id,
        "subject": subject,
        "messages": [
            {
                "id": f"msg_{thread_id}",
                "from": sender,
                "to": [ME],
                "subject": subject,
                "body": "Any news?",
                "date": format_timestamp(clock() - timedelta(days=days_ago)),
            }
        ],
    }


class StubSuggester:
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def suggest_missions(self, inbox, context):
        self.calls.append((inbox, context))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def engine_with(store, sandbox, clock, suggester=None, **config):
    context = EngineContext(
        store=store,
        tools=sandbox,
        config=EngineConfig(persistence={"type": "memory"}, owner_address=ME, **config),
        clock=clock,
    )
    if suggester is not None:
        context.mission_suggester = suggester
    return MissionEngine(context)


class TestSuggestionSchema:
    def test_accepts_bare_list_and_object(self):
        assert SuggestionBatch.from_raw([VALID]).suggestions[0].title == VALID["title"]
        assert SuggestionBatch.from_raw({"suggestions": []}).suggestions == []

    def test_unknown_fields_are_rejected(self):
        with pytest.raises(ValueError):
            MissionSuggestion.model_validate({**VALID, "priority": "high"})

    def test_blank_and_duplicate_ids_are_dropped(self):
        suggestion = MissionSuggestion.model_validate(
            {**VALID, "linked_thread_ids": ["thread_contract", " ", "thread_contract"]}
        )
        assert suggestion.linked_thread_ids == ["thread_contract"]


class TestHeuristicDetection:
    async def test_suggests_reply_to_waiting_sender(self, store, sandbox, clock):
        engine = engine_with(store, sandbox, clock)

        [suggestion] = await engine.suggest_missions(OWNER)

        assert suggestion.title == "Reply to Sarah about Contract review"
        assert suggestion.linked_thread_ids == ["thread_contract"]
        assert suggestion.linked_email_ids == ["msg_1"]
        assert ("search_email", {"query": "", "filters": {"newer_than_days": 7}}) in sandbox.calls

    async def test_skips_owner_automated_and_old_mail(self, store, sandbox, clock):
        add_thread(sandbox, clock, "thread_mine", f"Me <{ME}>")
        add_thread(sandbox, clock, "thread_shop", "Shop <no-reply@shop.example>")
        add_thread(sandbox, clock, "thread_old", "Ann <ann@client.example>", days_ago=10)
        engine = engine_with(store, sandbox, clock)

        suggestions = await engine.suggest_missions(OWNER)

        assert [s.linked_thread_ids for s in suggestions] == [["thread_contract"]]

    async def test_threads_of_open_missions_are_not_suggested(self, store, sandbox, clock):
        engine = engine_with(store, sandbox, clock)
        mission = await engine.create_mission(OWNER, "answer Sarah", thread_id="thread_contract")

        assert await engine.suggest_missions(OWNER) == []

        await engine.close_mission(OWNER, mission.id, "Answered by phone")
        assert len(await engine.suggest_missions(OWNER)) == 1

    async def test_thread_limit_keeps_the_newest(self, store, sandbox, clock):
        add_thread(sandbox, clock, "thread_new", "Ann <ann@client.example>", days_ago=0.5)
        suggester = StubSuggester(result=[])
        engine = engine_with(store, sandbox, clock, suggester, detect_max_threads=1)

        assert await engine.suggest_missions(OWNER) == []

        [(inbox, context)] = suggester.calls
        assert [i["thread_id"] for i in inbox] == ["thread_new"]
        assert context == {"owner_address": ME, "open_missions": []}

    async def test_created_mission_is_planned_on_the_thread(self, store, sandbox, clock):
        engine = engine_with(store, sandbox, clock)
        [suggestion] = await engine.suggest_missions(OWNER)

        mission = await engine.create_from_suggestion(OWNER, suggestion)

        assert mission.goal == suggestion.title
        assert mission.success_condition == suggestion.success_condition
        assert mission.linked_thread_ids == ["thread_contract"]
        assert mission.linked_email_ids == ["msg_1"]
        assert mission.status == MissionStatus.EXECUTING
        assert mission.ordered_steps()[0].action_type == ActionType.READ_THREAD


class TestSuggesterValidation:
    async def test_valid_object_output_is_returned(self, store, sandbox, clock):
        engine = engine_with(store, sandbox, clock, StubSuggester(result={"suggestions": [VALID]}))
        [suggestion] = await engine.suggest_missions(OWNER)
        assert suggestion.to_dict() == {**VALID, "reasoning": ""}

    @pytest.mark.parametrize(
        "raw",
        [
            None,
            "Here are some missions",
            {"missions": [VALID]},
            [{"title": "Missing success condition"}],
            [{**VALID, "urgency": "high"}],
            [VALID, {**VALID, "linked_thread_ids": ["thread_unknown"]}],
            [{**VALID, "linked_email_ids": ["msg_elsewhere"]}],
            [VALID] * 11,
        ],
    )
    async def test_invalid_output_yields_nothing(self, store, sandbox, clock, raw):
        engine = engine_with(store, sandbox, clock, StubSuggester(result=raw))
        assert await engine.suggest_missions(OWNER) == []

    async def test_failing_suggester_yields_nothing(self, store, sandbox, clock):
        error = ExternalAPIError("LLM call failed", tool_name="litellm")
        engine = engine_with(store, sandbox, clock, StubSuggester(error=error))
        assert await engine.suggest_missions(OWNER) == []

    async def test_slow_suggester_times_out(self, store, sandbox, clock):
        engine = engine_with(
            store, sandbox, clock, StubSuggester(result=[VALID], delay=1.0),
            llm={"timeout_seconds": 0.01},
        )
        assert await engine.suggest_missions(OWNER) == []


class TestInboxScan:
    @pytest.fixture
    def config(self):
        return EngineConfig(persistence={"type": "memory"}, owner_address=ME)

    async def test_search_error_yields_nothing(self, config):
        tools = SimpleNamespace(
            search_email=AsyncMock(return_value={"threads": [], "count": 0, "error": "quota"}),
            get_thread=AsyncMock(),
        )
        suggester = StubSuggester(result=[])
        detector = MissionDetector(tools, suggester, config)

        assert await detector.detect() == []
        assert suggester.calls == []
        tools.get_thread.assert_not_awaited()

    async def test_unreadable_threads_are_skipped(self, config):
        ann = {"id": "m2", "from": "Ann <ann@client.example>", "subject": "Q3"}
        tools = SimpleNamespace(
            search_email=AsyncMock(
                return_value={"threads": [{"thread_id": "t1"}, {"thread_id": "t2"}], "count": 2}
            ),
            get_thread=AsyncMock(
                side_effect=[
                    {"thread_id": "t1", "messages": [], "error": "Thread not found: t1"},
                    {"thread_id": "t2", "messages": [ann]},
                ]
            ),
        )
        detector = MissionDetector(tools, InboxHeuristicSuggester(), config)

        [suggestion] = await detector.detect()

        assert suggestion.title == "Reply to Ann about Q3"
        assert suggestion.linked_thread_ids == ["t2"]
        assert suggestion.linked_email_ids == ["m2"]

    async def test_owner_match_is_exact(self):
        inbox = [
            {"thread_id": "t1", "email_id": "m1", "from": "Someone <someone@example.com>"},
            {"thread_id": "t2", "email_id": "m2", "from": f"Me <{ME.upper()}>"},
        ]
        result = await InboxHeuristicSuggester().suggest_missions(inbox, {"owner_address": ME})
        assert [s["linked_thread_ids"] for s in result] == [["t1"]]
