"""
Situational & Ensemble Adjuster.

Three steps, each returning a new probability value:
1. apply_situational_adjustments: bounded additive nudges for rest,
   back-to-back, travel, derby, playoff, revenge, motivation and absences.
   Every step renormalizes with outcomes clamped to [0.05, 0.95].
2. blend_with_market: fixed per-sport ensemble weight, market as prior and
   model as signal.
3. evaluate_trap_game: flags a heavy favorite whose own trend argues
   against the tag. Never changes probabilities.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from oddsedge.domain import (
    AWAY,
    HOME,
    MarketProbabilities,
    OutcomeProbabilities,
    TeamRecord,
    TrapAssessment,
)
from oddsedge.sports import Sport

logger = logging.getLogger(__name__)

# Runaway-certainty guard applied after every adjustment
ADJUSTED_MIN = 0.05
ADJUSTED_MAX = 0.95

# Cap on the summed home-vs-away shift from all situational factors
MAX_TOTAL_SHIFT = 0.08

REST_SHIFT_PER_DAY = 0.01
REST_DIFF_CAP = 3
BACK_TO_BACK_SHIFT = 0.03
TRAVEL_SHIFTS = [(2500.0, 0.02), (1000.0, 0.01)]  # (min km, shift to home)
DERBY_COMPRESSION = 0.02
PLAYOFF_HOME_SHIFT = 0.01
REVENGE_SHIFT = 0.01
MOTIVATION_SHIFTS = {"high": 0.015, "normal": 0.0, "low": -0.015}
ABSENCE_SHIFT = 0.01
ABSENCE_CAP = 0.04

# Soccer schedules rarely produce short-rest fatigue effects
FATIGUE_WEIGHT = {
    Sport.SOCCER: 0.5,
    Sport.BASKETBALL: 1.0,
    Sport.HOCKEY: 1.0,
    Sport.AMERICAN_FOOTBALL: 0.75,
}

# Share of the blend given to the model; the market takes the rest
ENSEMBLE_MODEL_WEIGHTS = {
    Sport.SOCCER: 0.40,
    Sport.BASKETBALL: 0.35,
    Sport.AMERICAN_FOOTBALL: 0.45,
    Sport.HOCKEY: 0.30,
}
DEFAULT_MODEL_WEIGHT = 0.40

# Trap game
HEAVY_FAVORITE_PROB = 0.65
TRAP_MIN_FACTORS = 2
TRAP_MAX_ADJUSTMENT = -3
OPPONENT_QUALITY_WIN_RATE = 0.40


@dataclass(frozen=True)
class SituationalFactors:
    """Context for one fixture. Every field is optional; None means unknown."""

    home_rest_days: Optional[int] = None
    away_rest_days: Optional[int] = None
    home_back_to_back: bool = False
    away_back_to_back: bool = False
    away_travel_km: Optional[float] = None
    is_derby: bool = False
    is_playoff: bool = False
    home_revenge: bool = False
    away_revenge: bool = False
    home_motivation: Optional[str] = None  # high | normal | low
    away_motivation: Optional[str] = None
    home_key_absences: int = 0
    away_key_absences: int = 0
    # Trap-game context
    home_coming_off_emotional_win: bool = False
    away_coming_off_emotional_win: bool = False
    home_lookahead: bool = False
    away_lookahead: bool = False


@dataclass(frozen=True)
class SituationalResult:
    probabilities: OutcomeProbabilities
    notes: tuple[str, ...] = ()
    total_shift: float = 0.0


def _shift(probs: OutcomeProbabilities, toward: str, amount: float) -> OutcomeProbabilities:
    """Move `amount` onto one side, taking it from the other side."""
    other = AWAY if toward == HOME else HOME
    values = dict(probs.items())
    values[toward] += amount
    values[other] -= amount
    return probs.with_values(values).bounded(ADJUSTED_MIN, ADJUSTED_MAX)


def _compress(probs: OutcomeProbabilities, amount: float) -> OutcomeProbabilities:
    """Take `amount` from the favorite and hand it to the rest of the field."""
    ranked = probs.ranked()
    favorite = ranked[0][0]
    others = [k for k, _ in ranked[1:]]
    values = dict(probs.items())
    values[favorite] -= amount
    for key in others:
        values[key] += amount / len(others)
    return probs.with_values(values).bounded(ADJUSTED_MIN, ADJUSTED_MAX)


def _situational_shifts(factors: SituationalFactors, sport: Sport) -> list[tuple[float, str]]:
    """(shift toward home, note) for every active factor. Negative favors away."""
    shifts = []
    fatigue = FATIGUE_WEIGHT.get(sport, 1.0)

    if factors.home_rest_days is not None and factors.away_rest_days is not None:
        diff = factors.home_rest_days - factors.away_rest_days
        diff = max(-REST_DIFF_CAP, min(REST_DIFF_CAP, diff))
        if diff:
            side = "Home" if diff > 0 else "Away"
            shifts.append((
                diff * REST_SHIFT_PER_DAY * fatigue,
                f"{side} side has {abs(diff)} more rest day(s)",
            ))

    if factors.home_back_to_back:
        shifts.append((-BACK_TO_BACK_SHIFT * fatigue, "Home side on a back-to-back"))
    if factors.away_back_to_back:
        shifts.append((BACK_TO_BACK_SHIFT * fatigue, "Away side on a back-to-back"))

    if factors.away_travel_km:
        for min_km, amount in TRAVEL_SHIFTS:
            if factors.away_travel_km >= min_km:
                shifts.append((amount, f"Away side travelled {factors.away_travel_km:.0f} km"))
                break

    if factors.is_playoff:
        shifts.append((PLAYOFF_HOME_SHIFT, "Playoff game amplifies home edge"))

    if factors.home_revenge:
        shifts.append((REVENGE_SHIFT, "Home side in a revenge spot"))
    if factors.away_revenge:
        shifts.append((-REVENGE_SHIFT, "Away side in a revenge spot"))

    home_motivation = MOTIVATION_SHIFTS.get((factors.home_motivation or "normal").lower(), 0.0)
    away_motivation = MOTIVATION_SHIFTS.get((factors.away_motivation or "normal").lower(), 0.0)
    if home_motivation:
        shifts.append((home_motivation, f"Home motivation {factors.home_motivation.lower()}"))
    if away_motivation:
        shifts.append((-away_motivation, f"Away motivation {factors.away_motivation.lower()}"))

    if factors.home_key_absences > 0:
        amount = min(ABSENCE_CAP, factors.home_key_absences * ABSENCE_SHIFT)
        shifts.append((-amount, f"Home missing {factors.home_key_absences} key player(s)"))
    if factors.away_key_absences > 0:
        amount = min(ABSENCE_CAP, factors.away_key_absences * ABSENCE_SHIFT)
        shifts.append((amount, f"Away missing {factors.away_key_absences} key player(s)"))

    return shifts


def apply_situational_adjustments(
    probs: OutcomeProbabilities,
    factors: Optional[SituationalFactors],
    sport: Sport,
) -> SituationalResult:
    """
    Apply bounded situational nudges to raw model probabilities.

    The summed home-vs-away shift is capped at MAX_TOTAL_SHIFT; factors
    past the cap are noted but not applied.
    """
    if factors is None:
        return SituationalResult(probabilities=probs)

    adjusted = probs
    notes = []
    applied = 0.0

    for amount, note in _situational_shifts(factors, sport):
        capped = max(-MAX_TOTAL_SHIFT, min(MAX_TOTAL_SHIFT, applied + amount)) - applied
        if abs(capped) < 1e-12:
            notes.append(f"{note} (capped)")
            continue
        adjusted = _shift(adjusted, HOME if capped > 0 else AWAY, abs(capped))
        applied += capped
        notes.append(f"{note} ({capped * 100:+.1f}% home)")

    if factors.is_derby:
        adjusted = _compress(adjusted, DERBY_COMPRESSION)
        notes.append("Derby compresses the favorite's edge")

    if not notes:
        return SituationalResult(probabilities=probs)

    logger.debug(f"[SITUATIONAL] {len(notes)} factor(s), net home shift {applied:+.3f}")

    return SituationalResult(
        probabilities=adjusted.with_values(dict(adjusted.items()), method=f"{probs.method}+situational"),
        notes=tuple(notes),
        total_shift=applied,
    )


# ═══════════════════════════════════════════════════════════════
# Ensemble blend
# ═══════════════════════════════════════════════════════════════


def get_model_weight(sport: Sport) -> float:
    return ENSEMBLE_MODEL_WEIGHTS.get(sport, DEFAULT_MODEL_WEIGHT)


def blend_with_market(
    model: OutcomeProbabilities,
    market: MarketProbabilities,
    sport: Sport,
) -> OutcomeProbabilities:
    """
    Blend model and vig-free market: w * model + (1 - w) * market.

    When the market is the neutral default (no valid books) there is no
    prior to blend with and the model output passes through.
    """
    if market.bookmaker_count == 0:
        return model.with_values(dict(model.items()), method="model_only")

    weight = get_model_weight(sport)
    prior = market.implied_no_vig
    blended = {}
    for outcome, value in model.items():
        market_value = prior.get(outcome)
        if market_value is None:
            market_value = value
        blended[outcome] = weight * value + (1 - weight) * market_value

    return model.with_values(blended, method="ensemble").normalized()


# ═══════════════════════════════════════════════════════════════
# Trap game
# ═══════════════════════════════════════════════════════════════


def form_trend(form: str) -> str:
    """
    'declining', 'improving' or 'flat': last three results vs the ones before.

    Points are 1 per win and 0.5 per draw, compared as averages.
    """
    results = [c for c in (form or "").upper() if c in "WDL"]
    if len(results) < 4:
        return "flat"

    def avg(chunk):
        return sum(1.0 if r == "W" else 0.5 if r == "D" else 0.0 for r in chunk) / len(chunk)

    recent, earlier = avg(results[-3:]), avg(results[:-3])
    if recent < earlier:
        return "declining"
    if recent > earlier:
        return "improving"
    return "flat"


def evaluate_trap_game(
    market: MarketProbabilities,
    home_team: str,
    away_team: str,
    home_form: str,
    away_form: str,
    home_stats: TeamRecord,
    away_stats: TeamRecord,
    factors: Optional[SituationalFactors] = None,
) -> TrapAssessment:
    """
    Flag a heavy market favorite whose context argues against the tag.

    Factors counted against the favorite: coming off an emotional win,
    looking ahead to a bigger game, a respectable opponent and a declining
    trend. Two or more make a trap. The conviction adjustment is -1 per
    factor, floored at -3, and 0 when there is no trap.
    """
    if market.bookmaker_count == 0:
        return TrapAssessment()

    prior = market.implied_no_vig
    if prior.home >= HEAVY_FAVORITE_PROB:
        favorite, favorite_team, favorite_form, underdog_stats = HOME, home_team, home_form, away_stats
        emotional = factors.home_coming_off_emotional_win if factors else False
        lookahead = factors.home_lookahead if factors else False
    elif prior.away >= HEAVY_FAVORITE_PROB:
        favorite, favorite_team, favorite_form, underdog_stats = AWAY, away_team, away_form, home_stats
        emotional = factors.away_coming_off_emotional_win if factors else False
        lookahead = factors.away_lookahead if factors else False
    else:
        return TrapAssessment()

    reasons = []
    if emotional:
        reasons.append("coming off an emotional win")
    if lookahead:
        reasons.append("bigger game on deck")
    if underdog_stats.played > 0 and underdog_stats.win_rate >= OPPONENT_QUALITY_WIN_RATE:
        reasons.append(f"opponent wins {underdog_stats.win_rate * 100:.0f}% of games")
    if form_trend(favorite_form) == "declining":
        reasons.append("recent form trending down")

    if len(reasons) < TRAP_MIN_FACTORS:
        return TrapAssessment(factors=tuple(reasons))

    adjustment = max(TRAP_MAX_ADJUSTMENT, -len(reasons))
    warning = (
        f"TRAP GAME: {favorite_team} ({favorite}) priced at "
        f"{prior.get(favorite) * 100:.0f}% but " + ", ".join(reasons)
    )
    logger.info(f"[TRAP] {warning}")
    return TrapAssessment(
        is_trap=True,
        warning=warning,
        conviction_adjustment=adjustment,
        factors=tuple(reasons),
    )
