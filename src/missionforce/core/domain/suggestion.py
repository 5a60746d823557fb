"""Mission suggestion schema.

Output of a mission suggester, validated strictly before it is shown to the
owner or turned into a mission.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_SUGGESTIONS = 10


class MissionSuggestion(BaseModel):
    """A mission the owner probably wants, derived from recent mail."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=200)
    success_condition: str = Field(..., min_length=1)
    linked_thread_ids: list[str] = Field(default_factory=list)
    linked_email_ids: list[str] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("linked_thread_ids", "linked_email_ids")
    @classmethod
    def drop_blank(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(v.strip() for v in value if v and v.strip()))

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class SuggestionBatch(BaseModel):
    """Everything one suggester call returned."""

    model_config = ConfigDict(extra="forbid")

    suggestions: list[MissionSuggestion] = Field(default_factory=list, max_length=MAX_SUGGESTIONS)

    @classmethod
    def from_raw(cls, raw: Any) -> "SuggestionBatch":
        """Accept a bare list or ``{"suggestions": [...]}``.

        Raises:
            pydantic.ValidationError: Any entry is malformed.
        """
        if isinstance(raw, list):
            raw = {"suggestions": raw}
        return cls.model_validate(raw)
