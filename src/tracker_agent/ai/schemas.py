"""Pydantic schemas for AI responses."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class VisionAnalysisResponse(BaseModel):
    """Structured response for a screenshot classification."""

    task_id: str | None = Field(default=None, description="Matched task ID when confident")
    confidence: float = Field(default=0.0, description="Match confidence 0-1")
    summary: str = Field(default="", description="What the user is visibly doing")
    detected_context: str = Field(default="Unknown Application", description="Main app or URL")
    best_match_task_name: str | None = Field(default=None)
    best_match_confidence: float | None = Field(default=None)

    @field_validator("task_id", mode="before")
    @classmethod
    def _stringify_task_id(cls, value):
        if value is None or value == "":
            return None
        return str(value)

    @field_validator("confidence", "best_match_confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value):
        if value is None:
            return value
        return max(0.0, min(1.0, float(value)))


class TextMatchResponse(BaseModel):
    """Structured response for OCR-text matching.

    The model reports confidence on a 0-100 scale.
    """

    task_id: int | None = Field(default=None)
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    reasoning: str = Field(default="")
    activity_description: str = Field(default="")

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_percent(cls, value):
        return max(0.0, min(100.0, float(value or 0)))

    @property
    def normalized_confidence(self) -> float:
        return self.confidence / 100.0
