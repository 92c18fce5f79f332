"""
De-vig methods for removing bookmaker margin from odds.

Three methods available, for 2-way and 3-way markets alike:
- devig_proportional: Baseline (normalize 1/odds). Default.
- devig_power: Power method, solves for k such that sum(p_i^k) = 1.
- devig_shin: Shin-style informed-money fraction z.

All methods finish with a renormalization so the result sums to 1 exactly,
including the cases where a search stops on its iteration budget.

Also converts American and fractional notations to decimal odds.
"""

import math
from typing import Optional, Sequence, Tuple, Union

# Search budgets shared by the power and Shin methods
MAX_ITERATIONS = 100
TOLERANCE = 1e-4

# Power exponent bracket: k > 1 for overround (typical), k < 1 for underround
POWER_K_LOW = 0.01
POWER_K_HIGH = 10.0

# Shin informed-money fraction bracket (z is typically 0.01-0.05)
SHIN_Z_LOW = 0.0
SHIN_Z_HIGH = 0.5


# ═══════════════════════════════════════════════════════════════
# Odds notation
# ═══════════════════════════════════════════════════════════════


def american_to_decimal(american: float) -> float:
    """+150 -> 2.5, -200 -> 1.5."""
    if american > 0:
        return american / 100 + 1
    return 100 / abs(american) + 1


def fractional_to_decimal(fraction: str) -> float:
    """'5/2' -> 3.5."""
    numerator, denominator = fraction.split("/", 1)
    return float(numerator) / float(denominator) + 1


def to_decimal_odds(value: Union[str, float, int, None]) -> Optional[float]:
    """
    Normalize an odds value in any common notation to decimal odds.

    Strings containing "/" are fractional; numbers with |value| >= 100 are
    American; everything else is already decimal. Unparseable values
    return None so the quote is filtered downstream instead of raising.
    """
    if value is None:
        return None

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            if "/" in text:
                return fractional_to_decimal(text)
            value = float(text)
        except (ValueError, ZeroDivisionError):
            return None

    value = float(value)
    if not math.isfinite(value):
        return None
    if value >= 100 or value <= -100:
        return american_to_decimal(value)
    return value


# ═══════════════════════════════════════════════════════════════
# De-vig
# ═══════════════════════════════════════════════════════════════


def _uniform(n: int) -> Tuple[float, ...]:
    return tuple(1 / n for _ in range(n))


def _valid_odds(odds: Sequence[float]) -> bool:
    return len(odds) >= 2 and all(o is not None and math.isfinite(o) and o > 1 for o in odds)


def _normalize(values: Sequence[float]) -> Tuple[float, ...]:
    total = sum(values)
    if total < 0.001:
        return _uniform(len(values))
    return tuple(v / total for v in values)


def devig_proportional(odds: Sequence[float]) -> Tuple[float, ...]:
    """
    Proportional/additive de-vig (BASELINE method).

    Simply normalizes 1/odds to sum to 1.

    Args:
        odds: Decimal odds per outcome (home, [draw,] away)

    Returns:
        Tuple of probabilities in the same order, summing to 1.0
    """
    if not _valid_odds(odds):
        # Invalid odds, return uniform
        return _uniform(len(odds))

    return _normalize([1 / o for o in odds])


def solve_power_exponent(
    implied: Sequence[float],
    max_iter: int = MAX_ITERATIONS,
    tol: float = TOLERANCE,
) -> Tuple[float, bool]:
    """
    Bisection for k where sum(p_i^k) = 1.

    sum(p^k) is strictly decreasing in k for p in (0, 1), so the bracket
    [POWER_K_LOW, POWER_K_HIGH] holds the root for any realistic margin.

    Returns:
        (k, converged)
    """
    def f(k: float) -> float:
        return sum(p**k for p in implied) - 1.0

    k_low, k_high = POWER_K_LOW, POWER_K_HIGH
    k = 1.0
    for _ in range(max_iter):
        k = (k_low + k_high) / 2
        residual = f(k)
        if abs(residual) < tol:
            return k, True
        if residual > 0:
            k_low = k
        else:
            k_high = k

    return k, abs(f(k)) < tol


def devig_power(odds: Sequence[float]) -> Tuple[float, ...]:
    """
    Power method (multiplicative) de-vig.

    Assumes the bookmaker applies margin multiplicatively, which shades
    longshots more than favorites.

    Args:
        odds: Decimal odds per outcome (home, [draw,] away)

    Returns:
        Tuple of probabilities in the same order, summing to 1.0
    """
    if not _valid_odds(odds):
        return _uniform(len(odds))

    implied = [1 / o for o in odds]

    # If already fair odds (no margin), return as-is
    if abs(sum(implied) - 1.0) < 1e-9:
        return tuple(implied)

    k, _ = solve_power_exponent(implied)
    return _normalize([p**k for p in implied])


def _shin_adjust(implied: Sequence[float], z: float) -> list[float]:
    n = len(implied)
    total = sum(implied)
    return [p / (1 - z + z * n * p / total) for p in implied]


def solve_shin_z(
    implied: Sequence[float],
    max_iter: int = MAX_ITERATIONS,
    tol: float = TOLERANCE,
) -> Tuple[float, bool]:
    """
    Bisection for z where sum(p_i / (1 - z + z*n*p_i/sum(p))) = 1.

    A perfectly symmetric market has no root (every denominator is 1),
    in which case the search ends on its budget with converged=False.

    Returns:
        (z, converged)
    """
    z_lo, z_hi = SHIN_Z_LOW, SHIN_Z_HIGH
    z = 0.0
    for _ in range(max_iter):
        z = (z_lo + z_hi) / 2
        s = sum(_shin_adjust(implied, z))
        if abs(s - 1.0) < tol:
            return z, True
        if s > 1.0:
            z_lo = z
        else:
            z_hi = z

    return z, abs(sum(_shin_adjust(implied, z)) - 1.0) < tol


def devig_shin(odds: Sequence[float]) -> Tuple[float, ...]:
    """
    Shin-style de-vig.

    Accounts for insider money / favorite-longshot bias by solving for the
    informed-money fraction z. The adjusted probabilities are renormalized
    for numerical safety and for markets where no exact root exists.

    Args:
        odds: Decimal odds per outcome (home, [draw,] away)

    Returns:
        Tuple of probabilities in the same order, summing to 1.0
    """
    if not _valid_odds(odds):
        return _uniform(len(odds))

    implied = [1 / o for o in odds]
    z, _ = solve_shin_z(implied)
    return _normalize(_shin_adjust(implied, z))


def get_devig_function(method: str = "proportional"):
    """
    Get the de-vig function by name.

    Args:
        method: "proportional" (default/baseline), "power", or "shin"

    Returns:
        De-vig function
    """
    if method == "power":
        return devig_power
    elif method == "shin":
        return devig_shin
    else:
        return devig_proportional
