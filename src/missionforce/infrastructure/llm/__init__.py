"""LLM-backed collaborators."""

from missionforce.infrastructure.llm.litellm_collaborators import (
    LiteLLMJsonClient,
    LiteLLMMissionSuggester,
    LiteLLMPlanGenerator,
    LiteLLMReplyComposer,
)

__all__ = [
    "LiteLLMJsonClient",
    "LiteLLMMissionSuggester",
    "LiteLLMPlanGenerator",
    "LiteLLMReplyComposer",
]
