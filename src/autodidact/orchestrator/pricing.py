"""Advisory cost and duration estimates for agent runs."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass

from ..profiles.models import DEFAULT_PROFILE, AgentProfile

INPUT_SHARE = 0.6
OUTPUT_SHARE = 0.4
COMPLEXITY_RANGE = (0.8, 1.2)


@dataclass(slots=True)
class CostEstimate:
    """Estimated spend of one run in USD."""

    tokens: float
    input_cost: float
    output_cost: float

    @property
    def total(self) -> float:
        return self.input_cost + self.output_cost


def estimate_cost(complexity: float = 1.0, *, profile: AgentProfile = DEFAULT_PROFILE) -> CostEstimate:
    tokens = profile.avg_tokens * complexity
    return CostEstimate(
        tokens=tokens,
        input_cost=tokens * INPUT_SHARE / 1000 * profile.input_cost_per_1k,
        output_cost=tokens * OUTPUT_SHARE / 1000 * profile.output_cost_per_1k,
    )


def estimate_time(complexity: float = 1.0, *, profile: AgentProfile = DEFAULT_PROFILE) -> int:
    """Seconds one run is expected to take, rounded up."""

    return math.ceil(profile.avg_seconds * complexity)


def sample_complexity(rng: random.Random | None = None) -> float:
    low, high = COMPLEXITY_RANGE
    return (rng or random).uniform(low, high)


__all__ = ["CostEstimate", "estimate_cost", "estimate_time", "sample_complexity"]
