"""Test configuration and shared fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from missionforce.application.context import EngineContext
from missionforce.application.mission_engine import MissionEngine
from missionforce.core.domain.config_schema import EngineConfig
from missionforce.core.utils.time import format_timestamp
from missionforce.infrastructure.persistence import InMemoryMissionStore
from missionforce.infrastructure.tools import SandboxToolAdapter

OWNER = "owner_1"
SARAH = "Sarah Lee <sarah@partner.example>"
GOAL = "follow up with Sarah about the contract"


class FrozenClock:
    """Controllable clock passed to every component under test."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def contract_thread(now: datetime) -> dict[str, Any]:
    return {
        "thread_id": "thread_contract",
        "subject": "Contract review",
        "messages": [
            {
                "id": "msg_1",
                "from": SARAH,
                "to": ["me@example.com"],
                "subject": "Contract review",
                "body": "I sent over the revised contract. Any thoughts?",
                "date": format_timestamp(now - timedelta(days=2)),
            }
        ],
    }


@pytest.fixture
def clock() -> FrozenClock:
    # A Monday, 10:00 UTC: inside the default sending window.
    return FrozenClock(datetime(2026, 3, 2, 10, 0, tzinfo=UTC))


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(persistence={"type": "memory"})


@pytest.fixture
def store(clock: FrozenClock) -> InMemoryMissionStore:
    return InMemoryMissionStore(time_provider=clock)


@pytest.fixture
def sandbox(clock: FrozenClock) -> SandboxToolAdapter:
    return SandboxToolAdapter([contract_thread(clock())], clock=clock)


@pytest.fixture
def engine_context(store, sandbox, config, clock) -> EngineContext:
    return EngineContext(store=store, tools=sandbox, config=config, clock=clock)


@pytest.fixture
def engine(engine_context: EngineContext) -> MissionEngine:
    return MissionEngine(engine_context)
