"""
Prediction Performance Metrics Module.

Evaluates settled PredictionRecords with proper probability metrics:
- Brier score and log loss (home and away evaluated as binary events)
- Calibration buckets and ECE
- Accuracy at confidence thresholds, with coverage
- Market comparison (model Brier vs vig-free market Brier)
- Closing line value (CLV)

No betting metrics (profit, ROI, staking). Accuracy and calibration only.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from oddsedge.domain import AWAY, DRAW, HOME, EdgeQuality, OutcomeProbabilities
from oddsedge.ml.metrics import (
    CalibrationBucket,
    calculate_brier_score,
    calculate_ece,
    calculate_log_loss,
    create_calibration_buckets,
)
from oddsedge.ml.persistence import PredictionRecord

logger = logging.getLogger(__name__)

ACCURACY_THRESHOLDS = (0.50, 0.55, 0.60, 0.65, 0.70, 0.75)
MIN_CALIBRATION_REPORT_SAMPLES = 20
MIN_PERFORMANCE_REPORT_SAMPLES = 10
MIN_BUCKET_PREDICTIONS = 5
BUCKET_MISCALIBRATION = 0.10
IMPROVEMENT_BAND = 5.0  # Percent


@dataclass(frozen=True)
class ThresholdAccuracy:
    threshold: float
    accuracy: float
    coverage: float  # Share of settled predictions at or above the threshold


@dataclass(frozen=True)
class LeagueBreakdown:
    brier_score: float
    predictions: int


@dataclass
class BacktestMetrics:
    period_start: Optional[datetime]
    period_end: Optional[datetime]
    total_predictions: int = 0
    brier_score: float = 0.0
    log_loss: float = 0.0
    calibration_error: float = 0.0
    calibration_buckets: list = field(default_factory=list)
    accuracy_at_threshold: list = field(default_factory=list)
    brier_score_vs_market: float = 0.0  # Negative = model better than market
    by_league: dict = field(default_factory=dict)


def predicted_outcome(probs: OutcomeProbabilities) -> str:
    """Argmax outcome; ties go to home, then away."""
    draw = probs.draw or 0.0
    if probs.home >= probs.away and probs.home >= draw:
        return HOME
    if probs.away >= probs.home and probs.away >= draw:
        return AWAY
    return DRAW


def _settled(records: Sequence[PredictionRecord]) -> list[PredictionRecord]:
    return [r for r in records if r.result is not None]


def _binary(records: Sequence[PredictionRecord], outcome: str, market: bool = False) -> tuple[list, list]:
    predicted, actual = [], []
    for r in records:
        probs = r.market.implied_no_vig if market else r.calibrated_probabilities
        predicted.append(probs.get(outcome))
        actual.append(1 if r.result.outcome == outcome else 0)
    return predicted, actual


def calculate_backtest_metrics(records: Sequence[PredictionRecord]) -> BacktestMetrics:
    """
    Backtest metrics over the settled subset of records.

    Home and away probabilities are each scored as a binary event and
    pooled. Market comparison and the per-league breakdown use the home
    outcome only.
    """
    settled = _settled(records)
    if not settled:
        return BacktestMetrics(period_start=None, period_end=None)

    kickoffs = [r.kickoff for r in settled]

    home_p, home_y = _binary(settled, HOME)
    away_p, away_y = _binary(settled, AWAY)
    predicted = home_p + away_p
    actual = home_y + away_y

    brier = calculate_brier_score(predicted, actual)
    buckets = create_calibration_buckets(predicted, actual)

    accuracy_at_threshold = []
    for threshold in ACCURACY_THRESHOLDS:
        qualifying = [
            r for r in settled
            if max(v for _, v in r.calibrated_probabilities.items()) >= threshold
        ]
        correct = sum(
            1 for r in qualifying
            if predicted_outcome(r.calibrated_probabilities) == r.result.outcome
        )
        accuracy_at_threshold.append(ThresholdAccuracy(
            threshold=threshold,
            accuracy=correct / len(qualifying) if qualifying else 0.0,
            coverage=len(qualifying) / len(settled),
        ))

    market_p, market_y = _binary(settled, HOME, market=True)
    market_brier = calculate_brier_score(market_p, market_y)

    by_league = {}
    for league in dict.fromkeys(r.league for r in settled):
        league_records = [r for r in settled if r.league == league]
        p, y = _binary(league_records, HOME)
        by_league[league] = LeagueBreakdown(
            brier_score=calculate_brier_score(p, y),
            predictions=len(league_records),
        )

    return BacktestMetrics(
        period_start=min(kickoffs),
        period_end=max(kickoffs),
        total_predictions=len(settled),
        brier_score=brier,
        log_loss=calculate_log_loss(predicted, actual),
        calibration_error=calculate_ece(buckets),
        calibration_buckets=buckets,
        accuracy_at_threshold=accuracy_at_threshold,
        brier_score_vs_market=brier - market_brier,
        by_league=by_league,
    )


def _describe_bucket(bucket: CalibrationBucket, kind: str) -> str:
    return (
        f"{kind} in {bucket.range_min * 100:.0f}-{bucket.range_max * 100:.0f}% range: "
        f"winning {bucket.actual_win_rate * 100:.1f}% vs expected {bucket.expected_win_rate * 100:.1f}%"
    )


def generate_calibration_report(records: Sequence[PredictionRecord]) -> dict:
    """
    Reliability of the favourite between home and away.

    Buckets with fewer than 5 predictions are not judged. A bucket whose
    actual win rate misses its midpoint by more than 10 points produces a
    recommendation.
    """
    settled = _settled(records)
    if len(settled) < MIN_CALIBRATION_REPORT_SAMPLES:
        return {
            "summary": (
                f"Insufficient data for calibration analysis "
                f"(need {MIN_CALIBRATION_REPORT_SAMPLES}+ settled predictions)"
            ),
            "buckets": [],
            "overall_error": 0.0,
            "recommendations": ["Collect more predictions before analyzing calibration"],
        }

    predicted, actual = [], []
    for r in settled:
        probs = r.calibrated_probabilities
        pick = HOME if probs.home > probs.away else AWAY
        predicted.append(max(probs.home, probs.away))
        actual.append(1 if r.result.outcome == pick else 0)

    buckets = create_calibration_buckets(predicted, actual)
    overall_error = calculate_ece(buckets)

    recommendations = []
    for bucket in buckets:
        if bucket.predictions < MIN_BUCKET_PREDICTIONS:
            continue
        diff = bucket.actual_win_rate - bucket.expected_win_rate
        if diff > BUCKET_MISCALIBRATION:
            recommendations.append(_describe_bucket(bucket, "Underconfident"))
        elif diff < -BUCKET_MISCALIBRATION:
            recommendations.append(_describe_bucket(bucket, "Overconfident"))

    if not recommendations:
        recommendations.append("Calibration looks reasonable - no major adjustments needed")

    return {
        "summary": f"Analyzed {len(settled)} predictions. ECE: {overall_error * 100:.2f}%",
        "buckets": buckets,
        "overall_error": overall_error,
        "recommendations": recommendations,
    }


def generate_performance_report(records: Sequence[PredictionRecord]) -> dict:
    """Home-outcome Brier of model vs market, plus argmax accuracy by edge quality."""
    settled = _settled(records)
    if len(settled) < MIN_PERFORMANCE_REPORT_SAMPLES:
        return {
            "model_vs_market": "Insufficient data",
            "brier_score": 0.0,
            "market_brier_score": 0.0,
            "improvement": 0.0,
            "by_edge_quality": {},
        }

    brier = calculate_brier_score(*_binary(settled, HOME))
    market_brier = calculate_brier_score(*_binary(settled, HOME, market=True))
    improvement = (market_brier - brier) / market_brier * 100 if market_brier > 0 else 0.0

    if improvement > IMPROVEMENT_BAND:
        model_vs_market = f"Model outperforming market by {improvement:.1f}%"
    elif improvement < -IMPROVEMENT_BAND:
        model_vs_market = f"Model underperforming market by {abs(improvement):.1f}%"
    else:
        model_vs_market = "Model performing similarly to market"

    by_edge_quality = {}
    for quality in EdgeQuality:
        matching = [r for r in settled if r.edge.quality == quality]
        if not matching:
            continue
        correct = sum(
            1 for r in matching
            if predicted_outcome(r.calibrated_probabilities) == r.result.outcome
        )
        by_edge_quality[quality.value] = {
            "accuracy": correct / len(matching),
            "count": len(matching),
        }

    return {
        "model_vs_market": model_vs_market,
        "brier_score": brier,
        "market_brier_score": market_brier,
        "improvement": improvement,
        "by_edge_quality": by_edge_quality,
    }


CLV_BUCKETS = (
    ("<-5%", None, -0.05),
    ("-5% to -2%", -0.05, -0.02),
    ("-2% to +2%", -0.02, 0.02),
    ("+2% to +5%", 0.02, 0.05),
    (">+5%", 0.05, None),
)


def calculate_clv(records: Sequence[PredictionRecord]) -> dict:
    """
    Closing line value on the home outcome.

    CLV = calibrated home probability - vig-free closing home probability
    (proportional de-vig of the closing odds). Positive = beat the close.
    """
    with_closing = [r for r in records if r.closing_odds is not None]
    if not with_closing:
        return {"average_clv": 0.0, "predictions": 0, "distribution": []}

    values = []
    for r in with_closing:
        closing = r.closing_odds
        implied_home = 1 / closing.home
        total = implied_home + 1 / closing.away + (1 / closing.draw if closing.draw else 0.0)
        values.append(r.calibrated_probabilities.home - implied_home / total)

    distribution = []
    for label, lo, hi in CLV_BUCKETS:
        count = sum(
            1 for v in values
            if (lo is None or v >= lo) and (hi is None or v < hi)
        )
        distribution.append({"range": label, "count": count})

    average = sum(values) / len(values)
    logger.info(f"[CLV] {len(values)} predictions, average CLV {average * 100:+.2f}%")

    return {
        "average_clv": average,
        "predictions": len(values),
        "distribution": distribution,
    }
