"""
Probability pipeline stages.

Kept import-free beyond devig: domain types import the odds converters
from here, so stage modules must be imported directly.
"""

from oddsedge.ml.devig import devig_power, devig_proportional, devig_shin, to_decimal_odds

__all__ = ["devig_power", "devig_proportional", "devig_shin", "to_decimal_odds"]
