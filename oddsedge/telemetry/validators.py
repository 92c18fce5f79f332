"""
Odds validation for market integrity.

Validates a single bookmaker quote before it enters consensus:
- Presence (draw required only for draw sports)
- Sanity (numeric, not NaN/inf, decimal odds > 1.0)
- Overround, reported as a warning only (never drops the quote)
"""

import math
import logging
from dataclasses import dataclass
from typing import Optional

from oddsedge.telemetry.metrics import record_quote_rejected

logger = logging.getLogger(__name__)

# Decimal odds must exceed this to be a real price
MIN_DECIMAL_ODDS = 1.0


@dataclass
class QuoteValidationResult:
    """Result of quote validation."""

    is_valid: bool
    overround: Optional[float]
    violations: list[str]
    warnings: list[str]

    @property
    def is_usable(self) -> bool:
        """Whether this quote can enter consensus."""
        return self.is_valid


def validate_quote(
    odds_home: Optional[float],
    odds_away: Optional[float],
    odds_draw: Optional[float] = None,
    requires_draw: bool = False,
    record_metrics: bool = True,
) -> QuoteValidationResult:
    """
    Validate one bookmaker's decimal odds.

    Args:
        odds_home: Home win odds
        odds_away: Away win odds
        odds_draw: Draw odds (ignored unless requires_draw)
        requires_draw: Whether the sport prices a draw
        record_metrics: Whether to record Prometheus metrics

    Returns:
        QuoteValidationResult with validation status and details
    """
    violations = []
    warnings = []

    outcomes = [("home", odds_home), ("away", odds_away)]
    if requires_draw:
        outcomes.insert(1, ("draw", odds_draw))

    for name, value in outcomes:
        if value is None:
            violations.append(f"{name}_missing")
            continue

        if isinstance(value, bool) or not isinstance(value, (int, float)):
            violations.append(f"{name}_not_numeric")
            continue

        if math.isnan(value) or math.isinf(value):
            violations.append(f"{name}_nan_or_inf")
            continue

        if value <= MIN_DECIMAL_ODDS:
            violations.append(f"{name}_too_low")

    if violations:
        if record_metrics:
            for v in violations:
                record_quote_rejected(v)
        return QuoteValidationResult(
            is_valid=False,
            overround=None,
            violations=violations,
            warnings=warnings,
        )

    overround = sum(1 / value for _, value in outcomes)
    if overround < 1.0:
        warnings.append("overround_below_one")
    elif overround > 1.20:
        warnings.append("overround_above_max")

    return QuoteValidationResult(
        is_valid=True,
        overround=overround,
        violations=violations,
        warnings=warnings,
    )
