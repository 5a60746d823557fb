"""
Core Domain - Plan Schema

Strict schema for plan generator output. A plan either validates fully or
is rejected as a whole; the application layer then falls back to the
template plan. Nothing from an unvalidated plan is used for control flow.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from missionforce.core.domain.enums import ActionType


class PlannedStep(BaseModel):
    """One proposed step, as produced by the plan generator."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    action_type: ActionType
    label: str = Field(..., min_length=1, max_length=256)
    description: str = Field("", max_length=4096)
    params: dict[str, Any] = Field(default_factory=dict)


class PlanEnvelope(BaseModel):
    """A validated plan: at least one step, optional confidence and questions.

    Generators may return a bare list of steps; it is wrapped into an envelope
    with no confidence and no questions.
    """

    model_config = ConfigDict(extra="forbid")

    steps: list[PlannedStep] = Field(..., min_length=1)
    confidence: float | None = Field(None, ge=0.0, le=1.0)
    questions: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def wrap_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"steps": data}
        return data

    @field_validator("questions")
    @classmethod
    def drop_blank_questions(cls, value: list[str]) -> list[str]:
        return [q.strip() for q in value if q and q.strip()]

    @model_validator(mode="after")
    def done_is_last(self) -> "PlanEnvelope":
        for step in self.steps[:-1]:
            if step.action_type == ActionType.DONE:
                raise ValueError("'done' may only appear as the final step")
        return self

    def is_ambiguous(self, threshold: float) -> bool:
        """True when the generator is unsure or asked the user something."""
        if self.questions:
            return True
        return self.confidence is not None and self.confidence < threshold
