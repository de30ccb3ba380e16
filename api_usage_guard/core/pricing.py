"""
Pricing calculations.

Attributes a monetary cost to estimated token spend. Under the free tier
the rate is zero, so every recorded day costs nothing.
"""

from decimal import Decimal, ROUND_UP


def calculate_cost(estimated_tokens: int, cost_per_1k_tokens: float) -> float:
    """Calculate cost of token spend with conservative rounding.

    Args:
        estimated_tokens: Estimated tokens consumed
        cost_per_1k_tokens: Price per 1K tokens

    Returns:
        Total cost rounded UP to 4 decimal places

    Raises:
        ValueError: If either argument is negative
    """
    if estimated_tokens < 0:
        raise ValueError("estimated_tokens cannot be negative")
    if cost_per_1k_tokens < 0:
        raise ValueError("cost_per_1k_tokens cannot be negative")

    # str() avoids binary float artefacts leaking into the Decimal
    cost = (Decimal(estimated_tokens) / Decimal("1000")) * Decimal(str(cost_per_1k_tokens))
    return float(cost.quantize(Decimal("0.0001"), rounding=ROUND_UP))
