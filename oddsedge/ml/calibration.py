"""
Post-hoc probability calibration (Data-2: calibrated model layer).

Methods available:
- platt: per-sport, per-outcome sigmoid(A * logit(p) + B)
- isotonic: per-sport monotonic bucket table with linear interpolation
- hybrid (default): per-outcome mean of platt and isotonic

Parameters are pre-trained constants refreshed by an offline process.
Nothing here learns within a request. The only shared state is
CalibrationHistory, a bounded per-sport ring buffer of realized outcomes
used for reporting Brier/ECE, never for fitting.
"""

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import numpy as np

from oddsedge.domain import (
    AWAY,
    DRAW,
    HOME,
    CalibratedProbabilities,
    ConfidenceInterval,
    OutcomeIntervals,
    OutcomeProbabilities,
)
from oddsedge.sports import Sport

logger = logging.getLogger(__name__)

# Platt input clamp (keeps logit finite) and output clamp
PLATT_INPUT_MIN = 0.001
PLATT_INPUT_MAX = 0.999
CALIBRATED_MIN = 0.01
CALIBRATED_MAX = 0.99

# Confidence interval half-width = BASE + SPAN * (1 - quality/100)
CI_BASE_WIDTH = 0.05
CI_QUALITY_SPAN = 0.15

CALIBRATION_METHODS = ("platt", "isotonic", "hybrid")

# (A, B) for sigmoid(A * logit + B), keyed by (sport, outcome)
PLATT_PARAMS = {
    (Sport.SOCCER, HOME): (1.2, -0.1),
    (Sport.SOCCER, AWAY): (1.1, -0.05),
    (Sport.SOCCER, DRAW): (1.0, 0.0),
    (Sport.BASKETBALL, HOME): (1.15, -0.08),
    (Sport.BASKETBALL, AWAY): (1.15, -0.08),
    (Sport.AMERICAN_FOOTBALL, HOME): (1.1, -0.05),
    (Sport.AMERICAN_FOOTBALL, AWAY): (1.1, -0.05),
    (Sport.HOCKEY, HOME): (1.12, -0.06),
    (Sport.HOCKEY, AWAY): (1.12, -0.06),
}
DEFAULT_PLATT_PARAMS = (1.0, 0.0)

# (raw_min, raw_max, calibrated) buckets, contiguous and monotonic
ISOTONIC_TABLES = {
    Sport.SOCCER: [
        (0.00, 0.15, 0.12),
        (0.15, 0.25, 0.20),
        (0.25, 0.35, 0.30),
        (0.35, 0.45, 0.40),
        (0.45, 0.55, 0.50),
        (0.55, 0.65, 0.60),
        (0.65, 0.75, 0.68),
        (0.75, 0.85, 0.76),
        (0.85, 1.00, 0.84),
    ],
    Sport.BASKETBALL: [
        (0.00, 0.20, 0.18),
        (0.20, 0.35, 0.30),
        (0.35, 0.50, 0.45),
        (0.50, 0.65, 0.58),
        (0.65, 0.80, 0.72),
        (0.80, 1.00, 0.85),
    ],
}
DEFAULT_ISOTONIC_TABLE = [
    (0.00, 0.50, 0.45),
    (0.50, 1.00, 0.55),
]


# ═══════════════════════════════════════════════════════════════
# Transforms
# ═══════════════════════════════════════════════════════════════


def platt_scale(p: float, sport: Sport, outcome: str) -> float:
    """Sigmoid of the linearly transformed log-odds, clamped to [0.01, 0.99]."""
    a, b = PLATT_PARAMS.get((sport, outcome), DEFAULT_PLATT_PARAMS)
    clamped = min(PLATT_INPUT_MAX, max(PLATT_INPUT_MIN, p))
    logit = math.log(clamped / (1 - clamped))
    calibrated = 1 / (1 + math.exp(-(a * logit + b)))
    return min(CALIBRATED_MAX, max(CALIBRATED_MIN, calibrated))


def _isotonic_anchors(sport: Sport) -> tuple[np.ndarray, np.ndarray]:
    """Bucket lower edges mapped to their calibrated values; flat over the last bucket."""
    table = ISOTONIC_TABLES.get(sport, DEFAULT_ISOTONIC_TABLE)
    x = [lo for lo, _, _ in table] + [table[-1][1]]
    y = [cal for _, _, cal in table] + [table[-1][2]]
    return np.asarray(x), np.asarray(y)


def isotonic_calibrate(p: float, sport: Sport) -> float:
    """
    Table lookup with linear interpolation toward the next bucket's value.

    Inside bucket i, the result moves from calibrated_i to calibrated_{i+1}
    in proportion to the position within the bucket.
    """
    x, y = _isotonic_anchors(sport)
    return float(np.interp(min(1.0, max(0.0, p)), x, y))


def _map(probs: OutcomeProbabilities, fn, method: str) -> OutcomeProbabilities:
    return probs.with_values({k: fn(k, v) for k, v in probs.items()}, method=method).normalized()


def calibrate_platt(probs: OutcomeProbabilities, sport: Sport) -> OutcomeProbabilities:
    return _map(probs, lambda outcome, p: platt_scale(p, sport, outcome), "platt")


def calibrate_isotonic(probs: OutcomeProbabilities, sport: Sport) -> OutcomeProbabilities:
    return _map(probs, lambda outcome, p: isotonic_calibrate(p, sport), "isotonic")


def calibrate_hybrid(probs: OutcomeProbabilities, sport: Sport) -> OutcomeProbabilities:
    platt = calibrate_platt(probs, sport)
    isotonic = calibrate_isotonic(probs, sport)
    averaged = {k: (v + isotonic.get(k)) / 2 for k, v in platt.items()}
    return probs.with_values(averaged, method="hybrid").normalized()


CALIBRATION_FUNCTIONS = {
    "platt": calibrate_platt,
    "isotonic": calibrate_isotonic,
    "hybrid": calibrate_hybrid,
}


def calculate_confidence_intervals(
    probs: OutcomeProbabilities,
    data_quality_score: float,
) -> OutcomeIntervals:
    """Symmetric intervals that widen as data quality drops, clamped to [0.01, 0.99]."""
    quality = min(100.0, max(0.0, data_quality_score))
    half_width = CI_BASE_WIDTH + CI_QUALITY_SPAN * (1 - quality / 100)

    def interval(p: float) -> ConfidenceInterval:
        return ConfidenceInterval(
            lower=max(CALIBRATED_MIN, p - half_width),
            upper=min(CALIBRATED_MAX, p + half_width),
        )

    return OutcomeIntervals(
        home=interval(probs.home),
        away=interval(probs.away),
        draw=interval(probs.draw) if probs.draw is not None else None,
    )


class ProbabilityCalibrator:
    """
    Applies the configured calibration method and attaches confidence intervals.

    Output always lies in [0.01, 0.99] per outcome and sums to 1.
    """

    def __init__(self, method: str = "hybrid"):
        if method not in CALIBRATION_FUNCTIONS:
            logger.warning(f"[CALIBRATION] Unknown method {method!r}, using hybrid")
            method = "hybrid"
        self.method = method

    def calibrate(
        self,
        probs: OutcomeProbabilities,
        sport: Sport,
        data_quality_score: float,
    ) -> CalibratedProbabilities:
        transformed = CALIBRATION_FUNCTIONS[self.method](probs, sport)
        bounded = transformed.bounded(CALIBRATED_MIN, CALIBRATED_MAX)
        return CalibratedProbabilities(
            home=bounded.home,
            away=bounded.away,
            draw=bounded.draw,
            method=self.method,
            confidence_intervals=calculate_confidence_intervals(bounded, data_quality_score),
        )


# ═══════════════════════════════════════════════════════════════
# Calibration history (shared, bounded)
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class CalibrationSample:
    predicted: float
    actual: int  # 1 if the outcome happened
    outcome: str
    recorded_at: Optional[datetime] = None


class CalibrationHistory:
    """
    Per-sport ring buffer of (predicted, realized) pairs.

    Appends are serialized with a lock and the oldest sample is evicted past
    capacity. Readers get a snapshot list, never the live deque.
    """

    def __init__(self, capacity: int = 1000):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._buffers: dict[Sport, deque] = {}
        self._lock = threading.Lock()

    def record(self, sport: Sport, sample: CalibrationSample) -> None:
        with self._lock:
            buffer = self._buffers.get(sport)
            if buffer is None:
                buffer = deque(maxlen=self.capacity)
                self._buffers[sport] = buffer
            buffer.append(sample)

    def record_outcome(
        self,
        sport: Sport,
        probabilities: OutcomeProbabilities,
        actual_outcome: str,
        recorded_at: Optional[datetime] = None,
    ) -> None:
        """Record one sample per priced outcome of a settled fixture."""
        for outcome, predicted in probabilities.items():
            self.record(sport, CalibrationSample(
                predicted=predicted,
                actual=1 if outcome == actual_outcome else 0,
                outcome=outcome,
                recorded_at=recorded_at,
            ))

    def snapshot(self, sport: Sport) -> list[CalibrationSample]:
        with self._lock:
            return list(self._buffers.get(sport, ()))

    def size(self, sport: Sport) -> int:
        with self._lock:
            return len(self._buffers.get(sport, ()))

    def clear(self, sport: Optional[Sport] = None) -> None:
        with self._lock:
            if sport is None:
                self._buffers.clear()
            else:
                self._buffers.pop(sport, None)
