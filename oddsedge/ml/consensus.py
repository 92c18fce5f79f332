"""
Consensus odds calculation from multiple bookmakers.

Algorithm:
  1. Caller filters each quote through validate_quote
  2. Collect decimal odds per outcome across bookmakers
  3. Reduce each outcome with median (default), mean or trimmed mean

Trimmed mean drops quotes farther than two (population) standard
deviations from the mean before averaging.
"""

from statistics import mean, median, pstdev
from typing import Sequence

TRIM_STD_MULTIPLIER = 2.0

CONSENSUS_METHODS = ("median", "mean", "trimmed")


def trimmed_mean(values: Sequence[float], std_multiplier: float = TRIM_STD_MULTIPLIER) -> float:
    """Mean after dropping values more than std_multiplier std from the mean."""
    if len(values) <= 2:
        return mean(values)

    center = mean(values)
    spread = pstdev(values)
    kept = [v for v in values if abs(v - center) <= std_multiplier * spread]
    return mean(kept) if kept else center


def consensus_value(values: Sequence[float], method: str = "median") -> float:
    """
    Reduce one outcome's odds across bookmakers.

    Args:
        values: Decimal odds from each valid bookmaker (non-empty)
        method: "median" (default), "mean", or "trimmed"

    Returns:
        Consensus decimal odds
    """
    if not values:
        raise ValueError("consensus_value requires at least one value")

    if method == "mean":
        return mean(values)
    elif method == "trimmed":
        return trimmed_mean(values)
    else:
        return median(values)
