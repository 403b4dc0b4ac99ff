"""Token-based cost estimation."""

from __future__ import annotations

from worktree_bench.config import CostRates


def estimate_cost(prompt_tokens: int, completion_tokens: int, rates: CostRates | None = None) -> float | None:
    """Linear cost estimate in USD, or None when there is no token usage.

    This is for comparing models against each other, not billing truth.
    """
    if prompt_tokens <= 0 and completion_tokens <= 0:
        return None
    rates = rates or CostRates()
    return (
        prompt_tokens * rates.prompt_per_million / 1_000_000
        + completion_tokens * rates.completion_per_million / 1_000_000
    )
