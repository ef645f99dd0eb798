"""Token pricing and per-query cost calculation."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

logger = logging.getLogger(__name__)

# (model_prefix, input_cost_per_1M_tokens, output_cost_per_1M_tokens, tier)
# Ordered longest-prefix-first so more specific prefixes match before generic ones.
MODEL_PRICING: dict[str, list[tuple[str, float, float, str]]] = {
    "claude": [
        ("claude-3-5-sonnet", 3.00, 15.00, "sonnet"),
        ("claude-3-5-haiku", 0.80, 4.00, "haiku"),
        ("claude-3-opus", 15.00, 75.00, "opus"),
        ("claude-3-sonnet", 3.00, 15.00, "sonnet"),
        ("claude-3-haiku", 0.25, 1.25, "haiku"),
    ],
}

# Unknown models of a priced provider are billed at this model's rate
DEFAULT_PRICED_MODEL = {"claude": "claude-3-5-sonnet-20241022"}

_SIX_PLACES = Decimal("0.000001")


def get_model_pricing(provider: str, model: str | None) -> tuple[float, float, str] | None:
    """Return (input_per_1M, output_per_1M, tier), or None for unpriced providers."""
    table = MODEL_PRICING.get(provider)
    if not table:
        return None
    for candidate in (model, DEFAULT_PRICED_MODEL.get(provider)):
        if not candidate:
            continue
        lower = candidate.lower()
        for prefix, input_cost, output_cost, tier in table:
            if lower.startswith(prefix):
                return (input_cost, output_cost, tier)
    return None


def _round(value: float) -> Decimal:
    return Decimal(str(value)).quantize(_SIX_PLACES, rounding=ROUND_HALF_UP)


def token_counts(usage_stats: dict | None) -> tuple[int, int]:
    usage = usage_stats or {}
    input_t = usage.get("input_tokens", usage.get("prompt_tokens", 0)) or 0
    output_t = usage.get("output_tokens", usage.get("completion_tokens", 0)) or 0
    return int(input_t), int(output_t)


def calculate_cost(provider: str, model: str | None, usage_stats: dict | None) -> dict:
    """Cost breakdown for one query.

    Local providers (Ollama, LM Studio, local command) have no pricing and get
    ``calculated=False`` with zero costs.
    """
    pricing = get_model_pricing(provider, model)
    if pricing is None:
        return {
            "input_cost_usd": Decimal("0"),
            "output_cost_usd": Decimal("0"),
            "cost_usd": Decimal("0"),
            "pricing_tier": None,
            "calculated": False,
        }

    input_rate, output_rate, tier = pricing
    input_t, output_t = token_counts(usage_stats)
    input_cost = input_t / 1_000_000 * input_rate
    output_cost = output_t / 1_000_000 * output_rate
    return {
        "input_cost_usd": _round(input_cost),
        "output_cost_usd": _round(output_cost),
        "cost_usd": _round(input_cost + output_cost),
        "pricing_tier": tier,
        "calculated": True,
    }


def exceeds_budget(cost: Decimal | float, budget: float | None) -> bool:
    return budget is not None and float(cost) > budget


def cost_fields(provider: str, model: str | None, usage_stats: dict | None) -> dict:
    """Column values for LLMQuery, or {} when the query has nothing to price."""
    from config import settings

    if not settings.COST_TRACKING_ENABLED or not usage_stats:
        return {}

    breakdown = calculate_cost(provider, model, usage_stats)
    if not breakdown["calculated"]:
        return {}

    over = exceeds_budget(breakdown["cost_usd"], settings.BUDGET_LIMIT_USD)
    if over:
        logger.warning(
            "Query cost $%s exceeds budget limit $%s (%s/%s)",
            breakdown["cost_usd"], settings.BUDGET_LIMIT_USD, provider, model,
        )
    return {
        "cost_usd": breakdown["cost_usd"],
        "input_cost_usd": breakdown["input_cost_usd"],
        "output_cost_usd": breakdown["output_cost_usd"],
        "pricing_tier": breakdown["pricing_tier"],
        "over_budget": over,
    }
