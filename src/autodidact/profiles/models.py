"""Pricing and timing profiles for remote agent runs."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AgentProfile(BaseModel):
    """Per-model figures used to estimate what one agent run costs and takes."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier for the profile.")
    title: str = Field(..., description="Display title for the profile.")
    model: str = Field(..., description="Remote model identifier the agent runs on.")
    input_cost_per_1k: float = Field(..., ge=0, description="USD per 1K input tokens.")
    output_cost_per_1k: float = Field(..., ge=0, description="USD per 1K output tokens.")
    avg_tokens: int = Field(..., gt=0, description="Baseline tokens consumed by one run.")
    avg_seconds: float = Field(..., gt=0, description="Baseline wall-clock seconds of one run.")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("Agent profile id must not be empty")
        return normalized


DEFAULT_PROFILE = AgentProfile(
    id="sonnet",
    title="Claude Sonnet 4 (Bedrock)",
    model="anthropic.claude-sonnet-4",
    input_cost_per_1k=0.003,
    output_cost_per_1k=0.015,
    avg_tokens=8000,
    avg_seconds=120,
)


__all__ = ["AgentProfile", "DEFAULT_PROFILE"]
