"""Estimated LLM cost for agent task runs, from HARMONIC_LLM_PRICING."""

from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings

_PER_MILLION = Decimal(1_000_000)
_QUANTUM = Decimal("0.000001")


def get_model_pricing(model: str | None) -> dict:
    pricing = settings.HARMONIC_LLM_PRICING
    return pricing.get(model or "default") or pricing["default"]


def calculate_cost(model: str | None, input_tokens: int, output_tokens: int) -> Decimal:
    """Return the estimated USD cost for the given token usage."""
    prices = get_model_pricing(model)
    cost = (
        Decimal(str(prices["input"])) * Decimal(input_tokens)
        + Decimal(str(prices["output"])) * Decimal(output_tokens)
    ) / _PER_MILLION
    return cost.quantize(_QUANTUM, rounding=ROUND_HALF_UP)
