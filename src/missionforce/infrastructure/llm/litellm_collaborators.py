"""
LiteLLM-backed plan generator, reply composer and mission suggester.

All three collaborators ask the model for a JSON object and hand the parsed value
back untouched. The application layer validates it strictly and falls back
to deterministic behavior, so nothing here tries to repair model output.
"""

from __future__ import annotations

import json
import time
from typing import Any

import litellm
import structlog

from missionforce.core.domain.config_schema import LLMConfig
from missionforce.core.domain.enums import ActionType
from missionforce.core.domain.errors import ExternalAPIError
from missionforce.core.interfaces.planning import (
    MissionSuggesterProtocol,
    PlanGeneratorProtocol,
    ReplyComposerProtocol,
)

logger = structlog.get_logger(__name__)

PLAN_SYSTEM_PROMPT = (
    "You plan email missions. Reply with a JSON object "
    '{"steps": [{"action_type", "label", "description", "params"}], '
    '"confidence": 0..1, "questions": [..]}. '
    f"action_type must be one of: {', '.join(a.value for a in ActionType)}. "
    "Ask questions only when the goal cannot be carried out without them."
)

REPLY_SYSTEM_PROMPT = (
    "You draft short, professional email replies. Reply with a JSON object "
    '{"to": [..], "subject": str, "body": str, "confidence": 0..1, '
    '"assumptions": [..], "questions": [..], "risk_flags": [..]}. '
    "Never invent facts, amounts or commitments that are not in the thread."
)

SUGGEST_SYSTEM_PROMPT = (
    "You read the owner's recent email and spot conversations that need follow-through. "
    'Reply with a JSON object {"suggestions": [{"title", "success_condition", '
    '"linked_thread_ids": [..], "linked_email_ids": [..], "reasoning"}]}. '
    "Use only thread and email ids from the inbox you were given. "
    "Skip newsletters, notifications and anything an open mission already covers. "
    'Return {"suggestions": []} when nothing needs attention.'
)


class LiteLLMJsonClient:
    """Thin wrapper around ``litellm.acompletion`` returning parsed JSON."""

    def __init__(self, config: LLMConfig | None = None) -> None:
        self.config = config or LLMConfig()
        self.logger = logger.bind(component="litellm_client", model=self.config.model)

    async def complete_json(self, system_prompt: str, payload: dict[str, Any]) -> Any:
        """Send one request and parse the reply as JSON.

        Raises:
            ExternalAPIError: The call failed or the reply is not JSON.
        """
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": json.dumps(payload, ensure_ascii=False, default=str)},
        ]
        start_time = time.time()
        try:
            response = await litellm.acompletion(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                timeout=self.config.timeout_seconds,
                response_format={"type": "json_object"},
                drop_params=True,
            )
        except Exception as exc:
            self.logger.error("llm_completion_failed", error_type=type(exc).__name__, error=str(exc)[:200])
            raise ExternalAPIError(f"LLM call failed: {exc}", tool_name="litellm") from exc

        latency_ms = int((time.time() - start_time) * 1000)
        content = response.choices[0].message.content or ""
        self.logger.info("llm_completion_success", latency_ms=latency_ms)
        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise ExternalAPIError(
                "LLM reply is not valid JSON", tool_name="litellm", details={"content": content[:200]}
            ) from exc


class LiteLLMPlanGenerator(PlanGeneratorProtocol):
    """Plan generator backed by a chat model."""

    def __init__(self, client: LiteLLMJsonClient | None = None) -> None:
        self.client = client or LiteLLMJsonClient()

    async def generate_plan(self, goal: str, context: dict[str, Any]) -> Any:
        return await self.client.complete_json(PLAN_SYSTEM_PROMPT, {"goal": goal, "context": context})


class LiteLLMReplyComposer(ReplyComposerProtocol):
    """Reply composer backed by a chat model."""

    def __init__(self, client: LiteLLMJsonClient | None = None) -> None:
        self.client = client or LiteLLMJsonClient()

    async def compose_reply(self, goal: str, context: dict[str, Any]) -> dict[str, Any]:
        result = await self.client.complete_json(REPLY_SYSTEM_PROMPT, {"goal": goal, "context": context})
        if not isinstance(result, dict):
            raise ExternalAPIError("LLM reply is not a JSON object", tool_name="litellm")
        return result


class LiteLLMMissionSuggester(MissionSuggesterProtocol):
    """Mission suggester backed by a chat model."""

    def __init__(self, client: LiteLLMJsonClient | None = None) -> None:
        self.client = client or LiteLLMJsonClient()

    async def suggest_missions(self, inbox: list[dict[str, Any]], context: dict[str, Any]) -> Any:
        return await self.client.complete_json(SUGGEST_SYSTEM_PROMPT, {"inbox": inbox, "context": context})
