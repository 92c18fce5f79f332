"""
Prediction Model (Data-2: raw model layer).

Sport-specific estimators that turn team records, form and H2H into a
raw probability triple:
- soccer: Dixon-Coles corrected Poisson (draw outcome kept)
- hockey: Poisson with regulation draws resolved into overtime wins
- basketball / american football: Elo-style rating differential

Sparse input never raises. Missing scoring data falls back to neutral
team strength, an empty form string counts as neutral form, and a missing
H2H aggregate is simply skipped.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from oddsedge.domain import ExpectedScores, HeadToHead, ModelInput, OutcomeProbabilities, TeamRecord
from oddsedge.sports import Sport

logger = logging.getLogger(__name__)

# Max goals to enumerate per side in the Poisson grid
DEFAULT_MAX_GOALS = 10

# Dixon-Coles low-score correlation for soccer
DEFAULT_RHO = -0.05

# Recency weights, most recent result first
FORM_WEIGHTS = [1.5, 1.3, 1.1, 1.0, 0.9]

# Team strength ratios are clamped to this range
STRENGTH_MIN = 0.5
STRENGTH_MAX = 2.0

# H2H: minimum meetings and dominance rate before H2H moves the estimate
H2H_MIN_MEETINGS = 3
H2H_DOMINANCE_RATE = 0.6
H2H_GOAL_BOOST = 1.05
H2H_ELO_BONUS = 25.0

ELO_BASE = 1500.0


@dataclass(frozen=True)
class PoissonConfig:
    home_advantage: float  # Multiplicative goal boost for home side
    league_avg_goals: float  # Goals per game, both sides combined
    form_weight: float
    min_goals: float
    max_goals: float
    rho: float = 0.0
    overtime_home_share: Optional[float] = None  # Set for sports without a draw outcome


@dataclass(frozen=True)
class EloConfig:
    home_advantage: float  # In points
    elo_scale: float  # Rating points per point of average differential
    form_weight: float
    league_avg_points: float  # Points per team per game


POISSON_CONFIGS = {
    Sport.SOCCER: PoissonConfig(
        home_advantage=0.25,
        league_avg_goals=2.5,
        form_weight=0.3,
        min_goals=0.3,
        max_goals=4.0,
        rho=DEFAULT_RHO,
    ),
    Sport.HOCKEY: PoissonConfig(
        home_advantage=0.15,
        league_avg_goals=2.8,
        form_weight=0.35,
        min_goals=1.5,
        max_goals=4.5,
        overtime_home_share=0.52,
    ),
}

ELO_CONFIGS = {
    Sport.BASKETBALL: EloConfig(home_advantage=3.5, elo_scale=25.0, form_weight=0.4, league_avg_points=110.0),
    Sport.AMERICAN_FOOTBALL: EloConfig(home_advantage=2.5, elo_scale=15.0, form_weight=0.35, league_avg_points=22.0),
}


# ═══════════════════════════════════════════════════════════════
# Shared building blocks
# ═══════════════════════════════════════════════════════════════


def calculate_form_strength(form: str, has_draw: bool = True) -> float:
    """
    Recency-weighted points share of the last five results (0-1, 0.5 neutral).

    Form strings run oldest to newest, so the last character is the most
    recent result and receives the largest weight.
    """
    results = [c for c in (form or "").upper() if c in "WDL"]
    if not results:
        return 0.5

    max_points = 3 if has_draw else 1
    points = 0.0
    max_possible = 0.0
    for weight, result in zip(FORM_WEIGHTS, reversed(results)):
        max_possible += max_points * weight
        if result == "W":
            points += max_points * weight
        elif result == "D" and has_draw:
            points += weight

    return points / max_possible if max_possible > 0 else 0.5


def calculate_team_strength(stats: TeamRecord, league_avg_per_team: float) -> tuple[float, float]:
    """
    (attack, defense) ratios against the league average, clamped to [0.5, 2.0].

    Defense above 1.0 means the side concedes less than average.
    """
    if stats.played <= 0 or stats.scored is None or stats.conceded is None:
        return 1.0, 1.0

    avg_scored = stats.scored / stats.played
    avg_conceded = stats.conceded / stats.played

    attack = avg_scored / league_avg_per_team if league_avg_per_team > 0 else 1.0
    if avg_conceded <= 0:
        defense = STRENGTH_MAX
    else:
        defense = league_avg_per_team / avg_conceded if league_avg_per_team > 0 else 1.0

    return (
        min(STRENGTH_MAX, max(STRENGTH_MIN, attack)),
        min(STRENGTH_MAX, max(STRENGTH_MIN, defense)),
    )


def _h2h_dominance(h2h: Optional[HeadToHead]) -> Optional[str]:
    """'home' / 'away' when one side won more than 60% of at least 3 meetings."""
    if h2h is None or h2h.total < H2H_MIN_MEETINGS:
        return None
    if h2h.home_wins / h2h.total > H2H_DOMINANCE_RATE:
        return "home"
    if h2h.away_wins / h2h.total > H2H_DOMINANCE_RATE:
        return "away"
    return None


def poisson_pmf(lam: float, max_goals: int = DEFAULT_MAX_GOALS) -> np.ndarray:
    """P(X=k) for k in 0..max_goals, computed in log space."""
    goals = np.arange(max_goals + 1)
    log_fact = np.concatenate([[0.0], np.cumsum(np.log(np.arange(1, max_goals + 1)))])
    lam = max(lam, 1e-10)
    return np.exp(goals * math.log(lam) - lam - log_fact)


def score_matrix(
    lambda_home: float,
    lambda_away: float,
    rho: float = 0.0,
    max_goals: int = DEFAULT_MAX_GOALS,
) -> np.ndarray:
    """
    Joint scoreline probabilities, shape (G, G) indexed [home_goals, away_goals].

    With rho != 0 the Dixon-Coles tau correction is applied to the four
    low-scoring cells (0-0, 1-0, 0-1, 1-1).
    """
    joint = np.outer(poisson_pmf(lambda_home, max_goals), poisson_pmf(lambda_away, max_goals))
    if rho:
        joint[0, 0] *= max(0.0, 1 - lambda_home * lambda_away * rho)
        joint[1, 0] *= max(0.0, 1 + lambda_away * rho)
        joint[0, 1] *= max(0.0, 1 + lambda_home * rho)
        joint[1, 1] *= max(0.0, 1 - rho)
    return joint


def outcome_split(joint: np.ndarray) -> tuple[float, float, float]:
    """(home win, draw, away win) mass of a score matrix."""
    home = float(np.tril(joint, -1).sum())
    draw = float(np.trace(joint))
    away = float(np.triu(joint, 1).sum())
    return home, draw, away


# ═══════════════════════════════════════════════════════════════
# Poisson sports
# ═══════════════════════════════════════════════════════════════


def expected_goals(model_input: ModelInput, config: PoissonConfig) -> tuple[float, float]:
    """Clamped (home, away) goal rates from strength, home advantage, form and H2H."""
    has_draw = config.overtime_home_share is None
    league_avg = model_input.league_average or config.league_avg_goals
    avg_per_team = league_avg / 2

    home_attack, home_defense = calculate_team_strength(model_input.home_stats, avg_per_team)
    away_attack, away_defense = calculate_team_strength(model_input.away_stats, avg_per_team)

    # 2 - defense turns "concedes less" into a weakness multiplier
    lambda_home = home_attack * (2 - away_defense) * avg_per_team * (1 + config.home_advantage)
    lambda_away = away_attack * (2 - home_defense) * avg_per_team

    home_form = calculate_form_strength(model_input.home_form, has_draw)
    away_form = calculate_form_strength(model_input.away_form, has_draw)
    lambda_home *= 1 + config.form_weight * (home_form - 0.5)
    lambda_away *= 1 + config.form_weight * (away_form - 0.5)

    dominant = _h2h_dominance(model_input.h2h)
    if dominant == "home":
        lambda_home *= H2H_GOAL_BOOST
    elif dominant == "away":
        lambda_away *= H2H_GOAL_BOOST

    lambda_home = min(config.max_goals, max(config.min_goals, lambda_home))
    lambda_away = min(config.max_goals, max(config.min_goals, lambda_away))
    return lambda_home, lambda_away


def soccer_dixon_coles_model(model_input: ModelInput) -> OutcomeProbabilities:
    config = POISSON_CONFIGS[Sport.SOCCER]
    lambda_home, lambda_away = expected_goals(model_input, config)
    home, draw, away = outcome_split(score_matrix(lambda_home, lambda_away, rho=config.rho))
    total = home + draw + away
    return OutcomeProbabilities(
        home=home / total,
        draw=draw / total,
        away=away / total,
        method="dixon-coles",
    )


def hockey_poisson_model(model_input: ModelInput) -> OutcomeProbabilities:
    """Regulation Poisson; tied regulation mass is split by the overtime home share."""
    config = POISSON_CONFIGS[Sport.HOCKEY]
    lambda_home, lambda_away = expected_goals(model_input, config)
    home, tied, away = outcome_split(score_matrix(lambda_home, lambda_away))

    home += tied * config.overtime_home_share
    away += tied * (1 - config.overtime_home_share)
    total = home + away
    return OutcomeProbabilities(home=home / total, away=away / total, method="poisson")


# ═══════════════════════════════════════════════════════════════
# Elo sports
# ═══════════════════════════════════════════════════════════════


def _point_differential(stats: TeamRecord) -> float:
    if stats.played <= 0 or stats.scored is None or stats.conceded is None:
        return 0.0
    return (stats.scored - stats.conceded) / stats.played


def elo_model(model_input: ModelInput) -> OutcomeProbabilities:
    """Logistic win probability from a rating built on point differential, form and home edge."""
    config = ELO_CONFIGS.get(model_input.sport, ELO_CONFIGS[Sport.BASKETBALL])

    home_elo = ELO_BASE + _point_differential(model_input.home_stats) * config.elo_scale
    away_elo = ELO_BASE + _point_differential(model_input.away_stats) * config.elo_scale

    home_elo += (calculate_form_strength(model_input.home_form, False) - 0.5) * 100 * config.form_weight
    away_elo += (calculate_form_strength(model_input.away_form, False) - 0.5) * 100 * config.form_weight

    home_elo += config.home_advantage * config.elo_scale

    dominant = _h2h_dominance(model_input.h2h)
    if dominant == "home":
        home_elo += H2H_ELO_BONUS
    elif dominant == "away":
        away_elo += H2H_ELO_BONUS

    home_prob = 1 / (1 + 10 ** (-(home_elo - away_elo) / 400))
    return OutcomeProbabilities(home=home_prob, away=1 - home_prob, method="elo")


# ═══════════════════════════════════════════════════════════════
# Entry points
# ═══════════════════════════════════════════════════════════════

MODELS = {
    Sport.SOCCER: soccer_dixon_coles_model,
    Sport.HOCKEY: hockey_poisson_model,
    Sport.BASKETBALL: elo_model,
    Sport.AMERICAN_FOOTBALL: elo_model,
}


def predict_match(model_input: ModelInput) -> OutcomeProbabilities:
    """Raw model probabilities for the input's sport (soccer model if unmapped)."""
    model = MODELS.get(model_input.sport, soccer_dixon_coles_model)
    return model(model_input).normalized()


def get_expected_scores(model_input: ModelInput) -> Optional[ExpectedScores]:
    """
    Expected final score, rounded to 0.1.

    Goal sports use the same clamped rates as the model. Elo sports
    average each side's scoring with the opponent's conceding, shifted by
    half the home advantage. None when neither side has scoring data.
    """
    home_stats, away_stats = model_input.home_stats, model_input.away_stats
    if not (home_stats.has_scoring_data or away_stats.has_scoring_data):
        return None

    if model_input.sport in POISSON_CONFIGS:
        home, away = expected_goals(model_input, POISSON_CONFIGS[model_input.sport])
        return ExpectedScores(home=round(home, 1), away=round(away, 1))

    config = ELO_CONFIGS.get(model_input.sport, ELO_CONFIGS[Sport.BASKETBALL])

    def per_game(value: Optional[int], played: int) -> float:
        if value is None or played <= 0:
            return config.league_avg_points
        return value / played

    home = (per_game(home_stats.scored, home_stats.played) + per_game(away_stats.conceded, away_stats.played)) / 2
    away = (per_game(away_stats.scored, away_stats.played) + per_game(home_stats.conceded, home_stats.played)) / 2
    return ExpectedScores(
        home=round(home + config.home_advantage / 2, 1),
        away=round(away - config.home_advantage / 2, 1),
    )
