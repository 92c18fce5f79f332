"""
Prediction logging collaborator.

Every pipeline run can be persisted as a PredictionRecord and later settled
against the final score (and optionally the closing odds) for backtesting
and closing-line-value analysis.

InMemoryPredictionStore is the default implementation. A database-backed
store only needs to satisfy the PredictionLogger protocol.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from oddsedge.domain import (
    AWAY,
    DRAW,
    HOME,
    CalibratedProbabilities,
    DataQualityAssessment,
    DataQualityLevel,
    EdgeResult,
    MarketProbabilities,
    OutcomeProbabilities,
    VolatilityAssessment,
)
from oddsedge.sports import Sport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictionResult:
    home_score: int
    away_score: int
    outcome: str  # home | away | draw
    settled_at: datetime


@dataclass(frozen=True)
class ClosingOdds:
    home: float
    away: float
    draw: Optional[float] = None
    captured_at: Optional[datetime] = None


@dataclass(frozen=True)
class PredictionRecord:
    """Single logged prediction. result/closing_odds are filled in at settlement."""

    id: str
    timestamp: datetime
    sport: Sport
    league: str
    match_id: str
    home_team: str
    away_team: str
    kickoff: datetime
    raw_probabilities: OutcomeProbabilities
    calibrated_probabilities: CalibratedProbabilities
    market: MarketProbabilities
    edge: EdgeResult
    data_quality: DataQualityAssessment
    volatility: VolatilityAssessment
    result: Optional[PredictionResult] = None
    closing_odds: Optional[ClosingOdds] = None

    @property
    def is_settled(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class StoreStats:
    total: int
    settled: int
    pending: int
    by_sport: dict


def generate_prediction_id(match_id: str, timestamp: datetime) -> str:
    return f"pred_{match_id}_{int(timestamp.timestamp() * 1000)}"


def outcome_from_score(home_score: int, away_score: int) -> str:
    if home_score > away_score:
        return HOME
    if away_score > home_score:
        return AWAY
    return DRAW


class PredictionLogger(Protocol):
    """What the orchestrator needs from a persistence backend."""

    def log_prediction(self, record: PredictionRecord) -> PredictionRecord:
        ...

    def settle(
        self,
        match_id: str,
        home_score: int,
        away_score: int,
        closing_odds: Optional[ClosingOdds] = None,
    ) -> Optional[PredictionRecord]:
        ...


class InMemoryPredictionStore:
    """
    Thread-safe in-memory PredictionLogger.

    Records are immutable; settlement replaces the stored record with a
    settled copy. Insertion order is preserved.
    """

    def __init__(self):
        self._records: dict[str, PredictionRecord] = {}
        self._lock = threading.Lock()

    def log_prediction(self, record: PredictionRecord) -> PredictionRecord:
        with self._lock:
            record_id = record.id
            suffix = 1
            while record_id in self._records:
                record_id = f"{record.id}_{suffix}"
                suffix += 1
            if record_id != record.id:
                record = replace(record, id=record_id)
            self._records[record_id] = record

        logger.debug(f"[PREDICTION-LOG] Logged {record.id} ({record.sport.value})")
        return record

    def settle(
        self,
        match_id: str,
        home_score: int,
        away_score: int,
        closing_odds: Optional[ClosingOdds] = None,
    ) -> Optional[PredictionRecord]:
        """
        Settle the first unsettled prediction for match_id.

        Returns the settled record, or None if there is nothing to settle.
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            found = next(
                (r for r in self._records.values() if r.match_id == match_id and r.result is None),
                None,
            )
            if found is None:
                return None

            settled = replace(
                found,
                result=PredictionResult(
                    home_score=home_score,
                    away_score=away_score,
                    outcome=outcome_from_score(home_score, away_score),
                    settled_at=now,
                ),
                closing_odds=(
                    replace(closing_odds, captured_at=closing_odds.captured_at or now)
                    if closing_odds is not None else found.closing_odds
                ),
            )
            self._records[found.id] = settled

        logger.info(
            f"[PREDICTION-LOG] Settled {settled.id}: {home_score}-{away_score} "
            f"({settled.result.outcome})"
        )
        return settled

    def get(self, prediction_id: str) -> Optional[PredictionRecord]:
        with self._lock:
            return self._records.get(prediction_id)

    def for_match(self, match_id: str) -> list[PredictionRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.match_id == match_id]

    def filtered(
        self,
        sport: Optional[Sport] = None,
        league: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        min_data_quality: Optional[DataQualityLevel] = None,
        settled_only: bool = False,
    ) -> list[PredictionRecord]:
        """
        Records matching every given filter.

        league is a case-insensitive substring match; start/end bound kickoff
        (inclusive).
        """
        with self._lock:
            records = list(self._records.values())

        results = []
        for record in records:
            if sport is not None and record.sport != sport:
                continue
            if league and league.lower() not in record.league.lower():
                continue
            if start is not None and record.kickoff < start:
                continue
            if end is not None and record.kickoff > end:
                continue
            if settled_only and record.result is None:
                continue
            if min_data_quality is not None and record.data_quality.level.rank < min_data_quality.rank:
                continue
            results.append(record)
        return results

    def stats(self) -> StoreStats:
        with self._lock:
            records = list(self._records.values())

        by_sport: dict = {}
        settled = 0
        for record in records:
            if record.result is not None:
                settled += 1
            by_sport[record.sport.value] = by_sport.get(record.sport.value, 0) + 1

        return StoreStats(
            total=len(records),
            settled=settled,
            pending=len(records) - settled,
            by_sport=by_sport,
        )

    def prune(self, older_than: datetime) -> int:
        """Remove predictions whose kickoff is before older_than. Returns the count removed."""
        with self._lock:
            stale = [k for k, r in self._records.items() if r.kickoff < older_than]
            for key in stale:
                del self._records[key]

        if stale:
            logger.info(f"[PREDICTION-LOG] Pruned {len(stale)} predictions")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
