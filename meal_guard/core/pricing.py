"""
Pricing calculations for generation calls.

Converts provider token usage into a cost figure for the usage ledger.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Dict


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by the provider for one call."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    prompt_cost_per_1k: Decimal
    completion_cost_per_1k: Decimal


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table for supported models."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a specific model.

        Raises:
            ValueError: If model is not supported
        """
        if model not in self.prices:
            raise ValueError(f"Unsupported model: {model}")
        return self.prices[model]


# Fixed pricing table - no dynamic fetching, no defaults
PRICING_TABLE = PricingTable({
    "gpt-4o-mini": ModelPricing(
        prompt_cost_per_1k=Decimal("0.000150"),
        completion_cost_per_1k=Decimal("0.000600")
    ),
    "gpt-4o": ModelPricing(
        prompt_cost_per_1k=Decimal("0.0025"),
        completion_cost_per_1k=Decimal("0.0100")
    ),
})

# Recipe costs are fractions of a penny; keep six places.
COST_QUANTUM = Decimal("0.000001")


def calculate_cost(model: str, usage: TokenUsage) -> float:
    """Calculate total cost for one call, rounded up to six decimal places.

    Raises:
        ValueError: If model is not supported
    """
    pricing = PRICING_TABLE.get_pricing(model)

    prompt_cost = (Decimal(usage.prompt_tokens) / Decimal("1000")) * pricing.prompt_cost_per_1k
    completion_cost = (Decimal(usage.completion_tokens) / Decimal("1000")) * pricing.completion_cost_per_1k

    total_cost = prompt_cost + completion_cost
    return float(total_cost.quantize(COST_QUANTUM, rounding=ROUND_UP))
