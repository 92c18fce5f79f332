"""Calibration-quality metrics for binary (predicted probability, realized outcome) pairs."""

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np

logger = logging.getLogger(__name__)

LOG_LOSS_EPS = 1e-15
DEFAULT_N_BINS = 10


@dataclass(frozen=True)
class CalibrationBucket:
    range_min: float
    range_max: float
    predictions: int
    wins: int
    expected_win_rate: float  # Bucket midpoint
    actual_win_rate: float
    calibration_error: float


def _as_arrays(predicted: Sequence[float], actual: Sequence[int]) -> tuple[np.ndarray, np.ndarray]:
    return np.asarray(predicted, dtype=float), np.asarray(actual, dtype=float)


def calculate_brier_score(predicted: Sequence[float], actual: Sequence[int]) -> float:
    """
    Binary Brier score: mean squared error between probability and outcome.

    Lower is better. Perfect = 0, always-0.5 = 0.25. Empty input returns 0.
    """
    p, y = _as_arrays(predicted, actual)
    if p.size == 0:
        return 0.0
    return float(np.mean((p - y) ** 2))


def calculate_log_loss(predicted: Sequence[float], actual: Sequence[int]) -> float:
    """Binary log loss with probabilities clipped away from 0 and 1."""
    p, y = _as_arrays(predicted, actual)
    if p.size == 0:
        return 0.0
    p = np.clip(p, LOG_LOSS_EPS, 1 - LOG_LOSS_EPS)
    return float(-np.mean(y * np.log(p) + (1 - y) * np.log(1 - p)))


def create_calibration_buckets(
    predicted: Sequence[float],
    actual: Sequence[int],
    n_bins: int = DEFAULT_N_BINS,
) -> list[CalibrationBucket]:
    """
    Equal-width reliability buckets over [0, 1].

    Each bucket is [min, max); the last one also includes 1.0.
    """
    p, y = _as_arrays(predicted, actual)
    edges = np.linspace(0.0, 1.0, n_bins + 1)
    buckets = []

    for i in range(n_bins):
        lo, hi = edges[i], edges[i + 1]
        if i == n_bins - 1:
            mask = (p >= lo) & (p <= hi)
        else:
            mask = (p >= lo) & (p < hi)

        count = int(mask.sum())
        wins = int(y[mask].sum()) if count else 0
        expected = float((lo + hi) / 2)
        actual_rate = wins / count if count else 0.0

        buckets.append(CalibrationBucket(
            range_min=float(lo),
            range_max=float(hi),
            predictions=count,
            wins=wins,
            expected_win_rate=expected,
            actual_win_rate=actual_rate,
            calibration_error=abs(expected - actual_rate),
        ))

    return buckets


def calculate_ece(buckets: Sequence[CalibrationBucket]) -> float:
    """Expected Calibration Error: bucket errors weighted by bucket size."""
    total = sum(b.predictions for b in buckets)
    if total == 0:
        return 0.0
    return sum((b.predictions / total) * b.calibration_error for b in buckets)


class MetricsCalculator(Protocol):
    """What the quality gate needs to score a calibration history."""

    def brier_score(self, predicted: Sequence[float], actual: Sequence[int]) -> float:
        ...

    def expected_calibration_error(self, predicted: Sequence[float], actual: Sequence[int]) -> float:
        ...


class CalibrationMetricsCalculator:
    """Default MetricsCalculator backed by the functions above."""

    def __init__(self, n_bins: int = DEFAULT_N_BINS):
        self.n_bins = n_bins

    def brier_score(self, predicted: Sequence[float], actual: Sequence[int]) -> float:
        return calculate_brier_score(predicted, actual)

    def expected_calibration_error(self, predicted: Sequence[float], actual: Sequence[int]) -> float:
        return calculate_ece(create_calibration_buckets(predicted, actual, self.n_bins))
