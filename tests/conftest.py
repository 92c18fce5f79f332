"""Shared builders for prediction-record tests."""

from datetime import datetime, timedelta, timezone

import pytest

from oddsedge.domain import (
    CalibratedProbabilities,
    DataQualityAssessment,
    DataQualityLevel,
    EdgeQuality,
    EdgeResult,
    MarketProbabilities,
    OutcomeOdds,
    OutcomeProbabilities,
    VolatilityAssessment,
    VolatilityLevel,
)
from oddsedge.ml.persistence import (
    ClosingOdds,
    PredictionRecord,
    PredictionResult,
    generate_prediction_id,
    outcome_from_score,
)
from oddsedge.sports import Sport

BASE_KICKOFF = datetime(2025, 3, 1, 19, 0, tzinfo=timezone.utc)


def build_record(
    match_id="m1",
    sport=Sport.HOCKEY,
    league="NHL",
    home=0.6,
    market_home=0.5,
    day=0,
    edge_quality=EdgeQuality.HIGH,
    data_quality=DataQualityLevel.HIGH,
    score=None,
    closing_odds=None,
):
    """Two-way prediction record; `score` is (home, away) for a settled record."""
    kickoff = BASE_KICKOFF + timedelta(days=day)
    market_probs = OutcomeProbabilities(home=market_home, away=1 - market_home, method="proportional")
    result = None
    if score is not None:
        result = PredictionResult(
            home_score=score[0],
            away_score=score[1],
            outcome=outcome_from_score(*score),
            settled_at=kickoff + timedelta(hours=3),
        )
    if closing_odds is not None:
        closing_odds = ClosingOdds(*closing_odds)

    return PredictionRecord(
        id=generate_prediction_id(match_id, kickoff),
        timestamp=kickoff - timedelta(hours=2),
        sport=sport,
        league=league,
        match_id=match_id,
        home_team="Hawks",
        away_team="Owls",
        kickoff=kickoff,
        raw_probabilities=OutcomeProbabilities(home=home, away=1 - home, method="poisson"),
        calibrated_probabilities=CalibratedProbabilities(home=home, away=1 - home, method="hybrid"),
        market=MarketProbabilities(
            implied_raw=market_probs,
            implied_no_vig=market_probs,
            margin=0.0,
            bookmaker_count=2,
            consensus_odds=OutcomeOdds(home=1 / market_home, away=1 / (1 - market_home)),
        ),
        edge=EdgeResult(
            home=home - market_home,
            away=market_home - home,
            draw=None,
            outcome="home",
            value=home - market_home,
            quality=edge_quality,
        ),
        data_quality=DataQualityAssessment(
            score=90,
            level=data_quality,
            has_min_games=True,
            has_recent_form=True,
            has_h2h=True,
            has_multiple_bookmakers=True,
            has_scoring_data=True,
        ),
        volatility=VolatilityAssessment(odds_cv=0.01, form_volatility=0.0, combined=0.005, level=VolatilityLevel.LOW),
        result=result,
        closing_odds=closing_odds,
    )


@pytest.fixture
def make_record():
    return build_record
