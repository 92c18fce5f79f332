"""
Odds Normalizer (Data-1: raw market layer).

Turns a list of bookmaker quotes into market probabilities and emits the
raw, uninterpreted statistics the quality gate reads later:
- consensus odds, raw implied probabilities, margin, vig-free probabilities
- odds std / coefficient of variation per outcome
- data-completeness flags (games played, form lengths, H2H, books, scoring)
- form alternation rate

No thresholds and no judgment calls live here. A level such as "LOW
quality" or "HIGH volatility" is the quality gate's decision.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from oddsedge.domain import (
    BookmakerQuote,
    DataCompletenessFlags,
    HeadToHead,
    MarketProbabilities,
    OddsVolatilityStats,
    OutcomeOdds,
    OutcomeProbabilities,
    TeamRecord,
)
from oddsedge.config import get_settings
from oddsedge.ml.consensus import consensus_value
from oddsedge.ml.devig import get_devig_function
from oddsedge.telemetry.validators import validate_quote

logger = logging.getLogger(__name__)

VIG_METHODS = ("proportional", "power", "shin")


@dataclass(frozen=True)
class MarketConfig:
    vig_method: str = "proportional"
    consensus_method: str = "median"
    min_bookmakers: int = 1

    @classmethod
    def from_settings(cls, settings=None) -> "MarketConfig":
        settings = settings or get_settings()
        return cls(
            vig_method=settings.VIG_REMOVAL_METHOD,
            consensus_method=settings.CONSENSUS_METHOD,
            min_bookmakers=settings.MIN_BOOKMAKERS_FOR_CONSENSUS,
        )


def filter_valid_quotes(
    quotes: Sequence[BookmakerQuote],
    has_draw: bool,
    record_metrics: bool = True,
) -> list[BookmakerQuote]:
    """Drop quotes with missing, non-numeric or non-positive (<= 1.0) odds."""
    valid = []
    for quote in quotes:
        result = validate_quote(
            odds_home=quote.home_odds,
            odds_away=quote.away_odds,
            odds_draw=quote.draw_odds,
            requires_draw=has_draw,
            record_metrics=record_metrics,
        )
        if result.is_usable:
            valid.append(quote)
        else:
            logger.debug(f"[MARKET] Dropped quote from {quote.bookmaker}: {result.violations}")
    return valid


def neutral_market(has_draw: bool, vig_method: str = "proportional", consensus_method: str = "median") -> MarketProbabilities:
    """Uniform market used when too few valid quotes remain."""
    n = 3 if has_draw else 2
    p = 1 / n
    probs = OutcomeProbabilities(home=p, away=p, draw=p if has_draw else None, method="neutral")
    fair = 1 / p
    return MarketProbabilities(
        implied_raw=probs,
        implied_no_vig=probs,
        margin=0.0,
        bookmaker_count=0,
        consensus_odds=OutcomeOdds(home=fair, away=fair, draw=fair if has_draw else None),
        vig_method=vig_method,
        consensus_method=consensus_method,
    )


def calculate_market_probabilities(
    quotes: Sequence[BookmakerQuote],
    has_draw: bool,
    config: Optional[MarketConfig] = None,
) -> MarketProbabilities:
    """
    Consensus odds, implied probabilities and vig-free probabilities.

    Never raises on bad data: invalid quotes are filtered, and fewer than
    config.min_bookmakers valid quotes yields the neutral market.

    Args:
        quotes: Bookmaker quotes for one fixture
        has_draw: Whether the sport prices a draw outcome
        config: Vig method, consensus method, min bookmakers

    Returns:
        MarketProbabilities
    """
    config = config or MarketConfig.from_settings()
    valid = filter_valid_quotes(quotes, has_draw)

    if not valid or len(valid) < config.min_bookmakers:
        logger.info(
            f"[MARKET] {len(valid)}/{len(quotes)} valid quotes "
            f"(min {config.min_bookmakers}), using neutral market"
        )
        return neutral_market(has_draw, config.vig_method, config.consensus_method)

    home = consensus_value([q.home_odds for q in valid], config.consensus_method)
    away = consensus_value([q.away_odds for q in valid], config.consensus_method)
    draw = consensus_value([q.draw_odds for q in valid], config.consensus_method) if has_draw else None

    odds = [home, draw, away] if has_draw else [home, away]
    raw = [1 / o for o in odds]
    margin = sum(raw) - 1

    no_vig = get_devig_function(config.vig_method)(odds)

    if has_draw:
        implied_raw = OutcomeProbabilities(home=raw[0], draw=raw[1], away=raw[2], method="raw")
        implied_no_vig = OutcomeProbabilities(
            home=no_vig[0], draw=no_vig[1], away=no_vig[2], method=config.vig_method
        )
    else:
        implied_raw = OutcomeProbabilities(home=raw[0], away=raw[1], method="raw")
        implied_no_vig = OutcomeProbabilities(home=no_vig[0], away=no_vig[1], method=config.vig_method)

    return MarketProbabilities(
        implied_raw=implied_raw,
        implied_no_vig=implied_no_vig,
        margin=margin,
        bookmaker_count=len(valid),
        consensus_odds=OutcomeOdds(home=home, away=away, draw=draw),
        vig_method=config.vig_method,
        consensus_method=config.consensus_method,
    )


# ═══════════════════════════════════════════════════════════════
# Raw statistics (no interpretation)
# ═══════════════════════════════════════════════════════════════


def _std_and_cv(values: Sequence[float]) -> tuple[float, float]:
    arr = np.asarray(values, dtype=float)
    if arr.size < 2:
        return 0.0, 0.0
    mean = float(arr.mean())
    std = float(arr.std())
    return std, (std / mean if mean > 0 else 0.0)


def calculate_odds_volatility(quotes: Sequence[BookmakerQuote], has_draw: bool) -> OddsVolatilityStats:
    """
    Dispersion of each outcome's odds across valid bookmakers.

    average_cv is the mean coefficient of variation over the priced outcomes.
    """
    valid = filter_valid_quotes(quotes, has_draw, record_metrics=False)
    if len(valid) < 2:
        return OddsVolatilityStats(bookmaker_count=len(valid))

    home_std, home_cv = _std_and_cv([q.home_odds for q in valid])
    away_std, away_cv = _std_and_cv([q.away_odds for q in valid])
    draw_std = draw_cv = None
    cvs = [home_cv, away_cv]
    if has_draw:
        draw_std, draw_cv = _std_and_cv([q.draw_odds for q in valid])
        cvs.append(draw_cv)

    return OddsVolatilityStats(
        home_std=home_std,
        away_std=away_std,
        draw_std=draw_std,
        home_cv=home_cv,
        away_cv=away_cv,
        draw_cv=draw_cv,
        average_cv=sum(cvs) / len(cvs),
        bookmaker_count=len(valid),
    )


def form_alternation_rate(form: str) -> float:
    """Share of consecutive results that change between win and loss (W<->L)."""
    results = [c for c in (form or "").upper() if c in "WDL"]
    if len(results) < 2:
        return 0.0
    changes = sum(
        1 for prev, cur in zip(results, results[1:])
        if (prev == "W" and cur == "L") or (prev == "L" and cur == "W")
    )
    return changes / (len(results) - 1)


def calculate_form_volatility(home_form: str, away_form: str) -> float:
    """Average alternation rate of both sides."""
    return (form_alternation_rate(home_form) + form_alternation_rate(away_form)) / 2


def collect_data_flags(
    home_stats: TeamRecord,
    away_stats: TeamRecord,
    home_form: str,
    away_form: str,
    h2h: Optional[HeadToHead],
    bookmaker_count: int,
) -> DataCompletenessFlags:
    """Raw completeness counts for the quality gate."""
    return DataCompletenessFlags(
        home_games_played=home_stats.played,
        away_games_played=away_stats.played,
        home_form_length=len(home_form or ""),
        away_form_length=len(away_form or ""),
        h2h_count=h2h.total if h2h else 0,
        bookmaker_count=bookmaker_count,
        has_home_scoring=home_stats.has_scoring_data,
        has_away_scoring=away_stats.has_scoring_data,
    )
