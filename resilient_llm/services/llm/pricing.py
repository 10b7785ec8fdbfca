"""Model pricing and per-call cost calculation.

Prices are USD per 1M tokens plus an optional flat per-request fee.
Unknown models fall back to the default model's pricing with a warning.
"""

from typing import Dict, NamedTuple

import structlog

logger = structlog.get_logger()


class ModelPrice(NamedTuple):
    input: float
    output: float
    per_request: float = 0.0


DEFAULT_MODEL = "google/gemini-2.5-flash"

MODEL_PRICING: Dict[str, ModelPrice] = {
    # Gateway models
    "google/gemini-2.5-flash": ModelPrice(0.30, 2.50),
    "google/gemini-2.5-flash-lite": ModelPrice(0.10, 0.80),
    "google/gemini-3-pro-preview": ModelPrice(2.50, 10.00),
    "openai/gpt-5": ModelPrice(10.00, 30.00),
    "openai/gpt-5-mini": ModelPrice(1.50, 6.00),
    "openai/gpt-5-nano": ModelPrice(0.50, 2.00),
    # Search-grounded models charge per request on top of tokens
    "sonar": ModelPrice(1.00, 1.00, 0.005),
    "sonar-pro": ModelPrice(3.00, 15.00, 0.005),
    "sonar-reasoning-pro": ModelPrice(2.00, 8.00, 0.005),
    "sonar-deep-research": ModelPrice(10.00, 10.00, 0.005),
}


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Cost in USD of one call.

    Args:
        model: Model identifier as reported by the collaborator
        input_tokens: Prompt tokens
        output_tokens: Completion tokens

    Returns:
        Token cost plus any per-request fee
    """
    price = MODEL_PRICING.get(model)
    if price is None:
        logger.warning("unknown_model_pricing", model=model, fallback=DEFAULT_MODEL)
        price = MODEL_PRICING[DEFAULT_MODEL]

    return (
        (input_tokens / 1_000_000) * price.input
        + (output_tokens / 1_000_000) * price.output
        + price.per_request
    )
