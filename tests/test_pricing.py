from __future__ import annotations

import random

import pytest

from autodidact.orchestrator.pricing import estimate_cost, estimate_time, sample_complexity
from autodidact.profiles import DEFAULT_PROFILE, AgentProfile


def test_default_profile_cost_matches_token_mix() -> None:
    estimate = estimate_cost(1.0)

    assert estimate.tokens == 8000
    assert estimate.input_cost == pytest.approx(8000 * 0.6 / 1000 * 0.003)
    assert estimate.output_cost == pytest.approx(8000 * 0.4 / 1000 * 0.015)
    assert estimate.total == pytest.approx(0.0624)


def test_cost_scales_with_complexity_and_profile() -> None:
    cheap = AgentProfile(
        id="haiku",
        title="Haiku",
        model="anthropic.claude-haiku",
        input_cost_per_1k=0.001,
        output_cost_per_1k=0.005,
        avg_tokens=4000,
        avg_seconds=30,
    )

    assert estimate_cost(1.2).total == pytest.approx(0.0624 * 1.2)
    assert estimate_cost(1.0, profile=cheap).total == pytest.approx(4 * (0.6 * 0.001 + 0.4 * 0.005))


def test_time_rounds_up() -> None:
    assert estimate_time(1.0) == 120
    assert estimate_time(0.801) == 97
    assert estimate_time(1.2, profile=DEFAULT_PROFILE) == 144


def test_sample_complexity_stays_in_range() -> None:
    rng = random.Random(1234)
    samples = [sample_complexity(rng) for _ in range(200)]

    assert all(0.8 <= value <= 1.2 for value in samples)
    assert len(set(samples)) > 1
