"""Reply proposal schema.

Output of a reply composer, validated strictly before the draft step uses it.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReplyProposal(BaseModel):
    """A proposed reply: recipients, content and how sure the composer is."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    to: list[str] = Field(default_factory=list)
    subject: str = ""
    body: str = Field(..., min_length=1)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    assumptions: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    risk_flags: list[str] = Field(default_factory=list)

    @field_validator("to", mode="before")
    @classmethod
    def wrap_single_recipient(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("questions", "assumptions", "risk_flags")
    @classmethod
    def drop_blank(cls, value: list[str]) -> list[str]:
        return [v.strip() for v in value if v and v.strip()]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ApprovalPayload(BaseModel):
    """A human-approved message, attached to a ``send_email`` step."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    to: list[str] = Field(..., min_length=1)
    subject: str = ""
    body: str = Field(..., min_length=1)
    thread_id: str | None = None
    cc: list[str] = Field(default_factory=list)

    @field_validator("to", "cc", mode="before")
    @classmethod
    def split_addresses(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value
