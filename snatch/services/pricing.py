"""
Default model pricing table.

Cost estimation is kept out of billing aggregation: the aggregator takes a
`price(model, usage) -> float` callback. `default_price` is the callback the
CLI passes; library callers can supply their own table.

Rates are USD per million tokens. Cache writes cost 1.25x input and cache
reads 0.1x input.
"""

from __future__ import annotations

from dataclasses import dataclass

from snatch.schemas.session.models import TokenUsage

TOKENS_PER_MILLION = 1_000_000


@dataclass(frozen=True)
class CostEstimate:
    """Cost of one usage, split by token class."""

    input_cost: float
    output_cost: float
    cache_write_cost: float
    cache_read_cost: float

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost + self.cache_write_cost + self.cache_read_cost


@dataclass(frozen=True)
class ModelPricing:
    """Per-million-token rates for one model family."""

    model: str
    input_per_million: float
    output_per_million: float
    cache_write_per_million: float
    cache_read_per_million: float

    @classmethod
    def for_model(cls, model: str) -> ModelPricing | None:
        """Pricing for a model id, matched by family name; None if unrecognized."""
        for family, pricing in _FAMILIES:
            if family in model:
                return pricing
        return None

    def calculate_cost(self, usage: TokenUsage) -> CostEstimate:
        return CostEstimate(
            input_cost=usage.input_tokens / TOKENS_PER_MILLION * self.input_per_million,
            output_cost=usage.output_tokens / TOKENS_PER_MILLION * self.output_per_million,
            cache_write_cost=usage.cache_write_tokens / TOKENS_PER_MILLION * self.cache_write_per_million,
            cache_read_cost=usage.cache_read_tokens / TOKENS_PER_MILLION * self.cache_read_per_million,
        )


OPUS = ModelPricing('claude-opus-4-5-20251101', 15.0, 75.0, 18.75, 1.5)
SONNET = ModelPricing('claude-sonnet-4-20250514', 3.0, 15.0, 3.75, 0.3)
HAIKU = ModelPricing('claude-3-5-haiku-20241022', 1.0, 5.0, 1.25, 0.1)

# Checked in order; first family contained in the model id wins
_FAMILIES: tuple[tuple[str, ModelPricing], ...] = (
    ('opus', OPUS),
    ('sonnet', SONNET),
    ('haiku', HAIKU),
)


def default_price(model: str | None, usage: TokenUsage) -> float:
    """Price callback for billing aggregation. Unrecognized models cost 0."""
    pricing = ModelPricing.for_model(model) if model else None
    if pricing is None:
        return 0.0
    return pricing.calculate_cost(usage).total_cost
