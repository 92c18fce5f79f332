"""
Tests for de-vig methods and odds notation.

All three methods must return a probability tuple that sums to 1 in the
input order, for 2-way and 3-way markets alike.
"""

import pytest

from oddsedge.ml.devig import (
    devig_power,
    devig_proportional,
    devig_shin,
    get_devig_function,
    solve_power_exponent,
    solve_shin_z,
    to_decimal_odds,
)

MARKETS = [
    (1.80, 3.60, 4.50),
    (2.50, 3.20, 2.90),
    (1.20, 6.00, 12.00),
    (1.91, 2.00),
    (1.30, 3.50),
]


class TestDevigProportional:
    """Test baseline de-vig method."""

    def test_fair_odds_unchanged(self):
        """Fair odds (sum to 1) should be unchanged."""
        # Fair odds: 2.0, 4.0, 4.0 -> 0.5, 0.25, 0.25
        result = devig_proportional([2.0, 4.0, 4.0])
        assert abs(sum(result) - 1.0) < 1e-10
        assert abs(result[0] - 0.5) < 1e-10
        assert abs(result[1] - 0.25) < 1e-10
        assert abs(result[2] - 0.25) < 1e-10

    def test_typical_market_odds(self):
        """Typical market odds with ~5% overround."""
        result = devig_proportional([2.10, 3.50, 3.40])
        assert abs(sum(result) - 1.0) < 1e-10
        assert 0.4 < result[0] < 0.5  # home
        assert 0.25 < result[1] < 0.30  # draw
        assert 0.25 < result[2] < 0.30  # away

    def test_two_way_market(self):
        """1.91 / 2.00 splits 0.5115 / 0.4885."""
        result = devig_proportional([1.91, 2.00])
        assert len(result) == 2
        assert abs(result[0] - 0.5115) < 1e-3
        assert abs(result[1] - 0.4885) < 1e-3

    def test_invalid_odds_returns_uniform(self):
        """Invalid odds should return uniform distribution."""
        result = devig_proportional([0.5, 1.0, 1.0])
        assert result == (1/3, 1/3, 1/3)

    def test_invalid_two_way_returns_uniform(self):
        result = devig_proportional([1.0, 2.0])
        assert result == (0.5, 0.5)

    def test_sums_to_one(self):
        """Result should always sum to 1."""
        for odds in MARKETS:
            result = devig_proportional(odds)
            assert abs(sum(result) - 1.0) < 1e-10


class TestDevigPower:
    """Test power/multiplicative de-vig method."""

    def test_fair_odds_unchanged(self):
        """Fair odds should be unchanged."""
        result = devig_power([2.0, 4.0, 4.0])
        assert abs(sum(result) - 1.0) < 1e-10
        assert abs(result[0] - 0.5) < 1e-10

    def test_typical_market_odds(self):
        """Typical market odds with overround."""
        result = devig_power([2.10, 3.50, 3.40])
        assert abs(sum(result) - 1.0) < 1e-10
        assert 0.4 < result[0] < 0.5

    def test_favorite_gets_more_than_proportional(self):
        """Power shades longshots, so the favorite keeps more probability."""
        odds = [1.50, 4.00, 6.00]
        power = devig_power(odds)
        proportional = devig_proportional(odds)
        assert power[0] > proportional[0]
        assert power[2] < proportional[2]

    def test_sums_to_one(self):
        """Result should always sum to 1."""
        for odds in MARKETS:
            result = devig_power(odds)
            assert abs(sum(result) - 1.0) < 1e-10

    def test_invalid_odds_returns_uniform(self):
        """Invalid odds should return uniform distribution."""
        result = devig_power([0.5, 1.0, 1.0])
        assert result == (1/3, 1/3, 1/3)

    @pytest.mark.parametrize("odds", [
        (1.74, 1.74),  # ~15% margin
        (1.40, 4.00, 6.00),  # ~13% margin
        (2.10, 3.50, 3.40),
        (1.91, 2.00),
    ])
    def test_exponent_converges(self, odds):
        """The exponent search converges for realistic margins."""
        k, converged = solve_power_exponent([1 / o for o in odds])
        assert converged
        assert k > 1.0  # overround


class TestDevigShin:
    """Test Shin-style de-vig method."""

    def test_sums_to_one(self):
        for odds in MARKETS:
            result = devig_shin(odds)
            assert abs(sum(result) - 1.0) < 1e-10
            assert all(0 < p < 1 for p in result)

    def test_asymmetric_market_converges(self):
        implied = [1 / 1.50, 1 / 4.00, 1 / 6.00]
        z, converged = solve_shin_z(implied)
        assert converged
        assert 0.0 < z < 0.5

    def test_two_way_asymmetric_converges(self):
        z, converged = solve_shin_z([1 / 1.30, 1 / 3.50])
        assert converged

    def test_symmetric_market_reports_no_convergence(self):
        """A symmetric market has no root; the result is still a valid distribution."""
        z, converged = solve_shin_z([1 / 1.90, 1 / 1.90])
        assert not converged
        result = devig_shin([1.90, 1.90])
        assert abs(result[0] - 0.5) < 1e-10
        assert abs(result[1] - 0.5) < 1e-10

    def test_invalid_odds_returns_uniform(self):
        result = devig_shin([1.5, None])
        assert result == (0.5, 0.5)


class TestGetDevigFunction:
    """Test de-vig function selector."""

    def test_default_is_proportional(self):
        assert get_devig_function() is devig_proportional
        assert get_devig_function("proportional") is devig_proportional

    def test_power_method(self):
        assert get_devig_function("power") is devig_power

    def test_shin_method(self):
        assert get_devig_function("shin") is devig_shin

    def test_unknown_method_falls_back_to_proportional(self):
        assert get_devig_function("bogus") is devig_proportional


class TestOddsNotation:
    """Test American and fractional conversion."""

    def test_fractional(self):
        assert abs(to_decimal_odds("5/2") - 3.5) < 1e-10
        assert abs(to_decimal_odds("1/2") - 1.5) < 1e-10

    def test_american_positive(self):
        assert abs(to_decimal_odds(150) - 2.5) < 1e-10
        assert abs(to_decimal_odds("+150") - 2.5) < 1e-10

    def test_american_negative(self):
        assert abs(to_decimal_odds(-200) - 1.5) < 1e-10

    def test_decimal_passthrough(self):
        assert to_decimal_odds(1.91) == 1.91
        assert to_decimal_odds("2.05") == 2.05

    def test_unparseable_returns_none(self):
        assert to_decimal_odds(None) is None
        assert to_decimal_odds("") is None
        assert to_decimal_odds("evens") is None
        assert to_decimal_odds("1/0") is None
        assert to_decimal_odds(float("nan")) is None
