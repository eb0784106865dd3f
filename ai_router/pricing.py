"""
Token pricing for conversational telemetry.
"""

from __future__ import annotations

import math

# Token costs per model (per 1M tokens), input / output in dollars
MODEL_COSTS: dict[str, dict[str, float]] = {
    "google/gemini-2.5-flash": {"input": 0.30, "output": 2.50},
    "google/gemini-2.5-flash-lite": {"input": 0.10, "output": 0.40},
    "google/gemini-2.5-pro": {"input": 1.25, "output": 10.0},
    "claude-sonnet-4-5": {"input": 3.0, "output": 15.0},
    "claude-opus-4-1-20250805": {"input": 15.0, "output": 75.0},
    "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.0},
    # Short aliases for convenience
    "gemini-flash": {"input": 0.30, "output": 2.50},
    "gemini-pro": {"input": 1.25, "output": 10.0},
    "sonnet": {"input": 3.0, "output": 15.0},
}

# Default model for cost calculations when model is unknown
DEFAULT_MODEL_FOR_COSTS = "google/gemini-2.5-flash"


def get_model_costs(model: str) -> dict[str, float]:
    """
    Get cost rates for a model.

    Args:
        model: Model name or alias

    Returns:
        Dict with 'input' and 'output' costs per 1M tokens
    """
    if model in MODEL_COSTS:
        return MODEL_COSTS[model]

    # Match by model family (e.g., "claude-sonnet-4-5-20250929" matches "claude-sonnet-4-5")
    model_lower = model.lower()
    for key, costs in MODEL_COSTS.items():
        if key in model_lower or model_lower in key:
            return costs

    return MODEL_COSTS[DEFAULT_MODEL_FOR_COSTS]


def estimate_call_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    """Estimated cost in dollars for a single call."""
    costs = get_model_costs(model)
    input_cost = (input_tokens / 1_000_000) * costs["input"]
    output_cost = (output_tokens / 1_000_000) * costs["output"]
    return input_cost + output_cost


def estimate_tokens(text: str) -> int:
    """Rough token estimate: 4 characters per token, rounded up."""
    return math.ceil(len(text) / 4)


__all__ = [
    "DEFAULT_MODEL_FOR_COSTS",
    "MODEL_COSTS",
    "estimate_call_cost",
    "estimate_tokens",
    "get_model_costs",
]
