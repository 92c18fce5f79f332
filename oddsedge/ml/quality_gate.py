"""
Quality Gate (Data-2.5: interpretation and gating).

Reads the Normalizer's raw flags and statistics and turns them into
ordered tiers. Nothing is recomputed from quotes or stats here.

Suppression precedence for the primary edge (first match wins):
  1. |edge| above the extreme threshold  -> SUPPRESSED (likely data issue)
  2. data quality INSUFFICIENT            -> SUPPRESSED
  3. volatility EXTREME                   -> SUPPRESSED
Otherwise HIGH/MEDIUM/LOW by edge size, downgraded one tier for LOW data
quality and one tier for HIGH volatility (never below LOW).

The low-liquidity league filter suppresses independently of the above.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from oddsedge.config import get_settings
from oddsedge.domain import (
    NO_OUTCOME,
    DataCompletenessFlags,
    DataQualityAssessment,
    DataQualityLevel,
    EdgeQuality,
    EdgeResult,
    MarketProbabilities,
    OddsVolatilityStats,
    OutcomeProbabilities,
    VolatilityAssessment,
    VolatilityLevel,
)
from oddsedge.ml.calibration import CalibrationHistory
from oddsedge.ml.league_router import get_league_quality_multiplier, should_filter_league
from oddsedge.ml.metrics import CalibrationMetricsCalculator, MetricsCalculator
from oddsedge.sports import Sport

logger = logging.getLogger(__name__)

# Data quality penalties (score starts at 100)
PENALTY_MIN_GAMES = 30
PENALTY_RECENT_FORM = 15
PENALTY_H2H = 10
PENALTY_BOOKMAKERS = 20
PENALTY_SCORING = 15

# Data quality level floors
DQ_HIGH_SCORE = 80
DQ_MEDIUM_SCORE = 60
DQ_LOW_SCORE = 40

# Suppression reason codes (low-cardinality, safe as metric labels)
REASON_EXTREME_EDGE = "extreme_edge"
REASON_INSUFFICIENT_DATA = "insufficient_data"
REASON_EXTREME_VOLATILITY = "extreme_volatility"
REASON_LEAGUE_FILTER = "league_filter"
REASON_BELOW_MIN_EDGE = "below_min_edge"
REASON_BELOW_MIN_QUALITY = "below_min_quality"

_DOWNGRADE = {
    EdgeQuality.HIGH: EdgeQuality.MEDIUM,
    EdgeQuality.MEDIUM: EdgeQuality.LOW,
    EdgeQuality.LOW: EdgeQuality.LOW,
}


@dataclass(frozen=True)
class QualityGateConfig:
    min_games_played: int = 5
    min_form_length: int = 3
    min_h2h_games: int = 2
    min_bookmakers: int = 2
    volatility_low: float = 0.02
    volatility_medium: float = 0.05
    volatility_high: float = 0.10
    min_edge: float = 0.02
    medium_edge: float = 0.03
    high_edge: float = 0.05
    extreme_edge: float = 0.20
    suppress_on_extreme_edge: bool = True
    suppress_on_insufficient_data: bool = True
    suppress_on_extreme_volatility: bool = True
    filter_women_leagues: bool = True
    calibration_min_samples: int = 20

    @classmethod
    def from_settings(cls, settings=None) -> "QualityGateConfig":
        settings = settings or get_settings()
        return cls(
            min_games_played=settings.DQ_MIN_GAMES_PLAYED,
            min_form_length=settings.DQ_MIN_FORM_LENGTH,
            min_h2h_games=settings.DQ_MIN_H2H_GAMES,
            min_bookmakers=settings.DQ_MIN_BOOKMAKERS,
            volatility_low=settings.VOLATILITY_LOW_THRESHOLD,
            volatility_medium=settings.VOLATILITY_MEDIUM_THRESHOLD,
            volatility_high=settings.VOLATILITY_HIGH_THRESHOLD,
            min_edge=settings.EDGE_MIN_THRESHOLD,
            medium_edge=settings.EDGE_MEDIUM_THRESHOLD,
            high_edge=settings.EDGE_HIGH_THRESHOLD,
            extreme_edge=settings.EDGE_EXTREME_THRESHOLD,
            suppress_on_extreme_edge=settings.SUPPRESS_ON_EXTREME_EDGE,
            suppress_on_insufficient_data=settings.SUPPRESS_ON_INSUFFICIENT_DATA,
            suppress_on_extreme_volatility=settings.SUPPRESS_ON_EXTREME_VOLATILITY,
            filter_women_leagues=settings.LEAGUE_FILTER_WOMEN,
            calibration_min_samples=settings.CALIBRATION_MIN_SAMPLES,
        )


class SuppressionLedger:
    """
    Append-only list of (code, reason) suppression entries.

    There is no way to remove an entry: once any rule suppresses the edge,
    `suppressed` stays True for the rest of the request.
    """

    def __init__(self, entries: tuple[tuple[str, str], ...] = ()):
        self._entries = list(entries)

    def add(self, code: str, reason: str) -> None:
        self._entries.append((code, reason))

    def has(self, code: str) -> bool:
        return any(c == code for c, _ in self._entries)

    @property
    def suppressed(self) -> bool:
        return bool(self._entries)

    @property
    def entries(self) -> tuple[tuple[str, str], ...]:
        return tuple(self._entries)

    @property
    def reasons(self) -> tuple[str, ...]:
        return tuple(reason for _, reason in self._entries)

    @property
    def codes(self) -> tuple[str, ...]:
        seen = []
        for code, _ in self._entries:
            if code not in seen:
                seen.append(code)
        return tuple(seen)


@dataclass(frozen=True)
class CalibrationQuality:
    sport: Sport
    sample_size: int
    brier_score: float
    expected_calibration_error: float
    is_reliable: bool


@dataclass(frozen=True)
class QualityGateResult:
    edge: EdgeResult
    data_quality: DataQualityAssessment
    volatility: VolatilityAssessment
    league_multiplier: float
    league_filtered: bool
    suppression: tuple[tuple[str, str], ...]  # (code, reason) in precedence order

    @property
    def should_suppress(self) -> bool:
        return bool(self.suppression)

    @property
    def suppress_reasons(self) -> tuple[str, ...]:
        return tuple(reason for _, reason in self.suppression)


class QualityGate:
    """
    Interprets raw stats into tiers and decides whether an edge may be shown.

    The metrics calculator and calibration history are injected; the gate
    only reads snapshots of the history.
    """

    def __init__(
        self,
        config: Optional[QualityGateConfig] = None,
        metrics: Optional[MetricsCalculator] = None,
        history: Optional[CalibrationHistory] = None,
    ):
        self.config = config or QualityGateConfig.from_settings()
        self.metrics = metrics or CalibrationMetricsCalculator()
        self.history = history

    # ─────────────────────────────────────────────────────────────
    # Data quality
    # ─────────────────────────────────────────────────────────────

    def interpret_data_quality(self, flags: DataCompletenessFlags) -> DataQualityAssessment:
        cfg = self.config
        issues = []
        score = 100

        has_min_games = (
            flags.home_games_played >= cfg.min_games_played
            and flags.away_games_played >= cfg.min_games_played
        )
        if not has_min_games:
            issues.append(
                f"Insufficient games: {flags.home_games_played}/{flags.away_games_played} "
                f"played (need {cfg.min_games_played})"
            )
            score -= PENALTY_MIN_GAMES

        has_recent_form = (
            flags.home_form_length >= cfg.min_form_length
            and flags.away_form_length >= cfg.min_form_length
        )
        if not has_recent_form:
            issues.append("Limited recent form data")
            score -= PENALTY_RECENT_FORM

        has_h2h = flags.h2h_count >= cfg.min_h2h_games
        if not has_h2h:
            issues.append("No head-to-head history")
            score -= PENALTY_H2H

        has_multiple_bookmakers = flags.bookmaker_count >= cfg.min_bookmakers
        if not has_multiple_bookmakers:
            issues.append(f"Only {flags.bookmaker_count} bookmaker(s) - limited market consensus")
            score -= PENALTY_BOOKMAKERS

        has_scoring_data = flags.has_home_scoring and flags.has_away_scoring
        if not has_scoring_data:
            issues.append("Missing scoring/conceding data")
            score -= PENALTY_SCORING

        if score >= DQ_HIGH_SCORE:
            level = DataQualityLevel.HIGH
        elif score >= DQ_MEDIUM_SCORE:
            level = DataQualityLevel.MEDIUM
        elif score >= DQ_LOW_SCORE:
            level = DataQualityLevel.LOW
        else:
            level = DataQualityLevel.INSUFFICIENT

        return DataQualityAssessment(
            score=max(0, score),
            level=level,
            has_min_games=has_min_games,
            has_recent_form=has_recent_form,
            has_h2h=has_h2h,
            has_multiple_bookmakers=has_multiple_bookmakers,
            has_scoring_data=has_scoring_data,
            issues=tuple(issues),
        )

    # ─────────────────────────────────────────────────────────────
    # Volatility
    # ─────────────────────────────────────────────────────────────

    def interpret_volatility(self, odds_stats: OddsVolatilityStats, form_volatility: float) -> VolatilityAssessment:
        cfg = self.config
        combined = (odds_stats.average_cv + form_volatility) / 2

        if combined < cfg.volatility_low:
            level = VolatilityLevel.LOW
        elif combined < cfg.volatility_medium:
            level = VolatilityLevel.MEDIUM
        elif combined < cfg.volatility_high:
            level = VolatilityLevel.HIGH
        else:
            level = VolatilityLevel.EXTREME

        return VolatilityAssessment(
            odds_cv=odds_stats.average_cv,
            form_volatility=form_volatility,
            combined=combined,
            level=level,
        )

    # ─────────────────────────────────────────────────────────────
    # Edge
    # ─────────────────────────────────────────────────────────────

    @staticmethod
    def calculate_edge(calibrated: OutcomeProbabilities, market: MarketProbabilities) -> dict:
        """Per-outcome calibrated minus vig-free market probability."""
        no_vig = market.implied_no_vig
        edges = {}
        for outcome, value in calibrated.items():
            market_value = no_vig.get(outcome)
            if market_value is not None:
                edges[outcome] = value - market_value
        return edges

    def find_primary_edge(self, edges: dict) -> tuple[str, float]:
        """Largest positive edge, or ('none', 0.0) below the minimum threshold."""
        if not edges:
            return NO_OUTCOME, 0.0
        outcome, value = max(edges.items(), key=lambda kv: kv[1])
        if value < self.config.min_edge:
            return NO_OUTCOME, 0.0
        return outcome, value

    def determine_edge_quality(
        self,
        edge_value: float,
        data_quality: DataQualityAssessment,
        volatility: VolatilityAssessment,
    ) -> tuple[EdgeQuality, list[str]]:
        cfg = self.config
        reasons = []

        if cfg.suppress_on_extreme_edge and abs(edge_value) > cfg.extreme_edge:
            reasons.append(f"Edge {edge_value * 100:.1f}% is suspiciously large - likely data issue")
            return EdgeQuality.SUPPRESSED, reasons

        if cfg.suppress_on_insufficient_data and data_quality.level == DataQualityLevel.INSUFFICIENT:
            reasons.append("Insufficient data to calculate reliable edge")
            return EdgeQuality.SUPPRESSED, reasons

        if cfg.suppress_on_extreme_volatility and volatility.level == VolatilityLevel.EXTREME:
            reasons.append("Market volatility too high for reliable edge calculation")
            return EdgeQuality.SUPPRESSED, reasons

        if edge_value < cfg.min_edge:
            reasons.append("No statistically meaningful edge detected")
            return EdgeQuality.LOW, reasons

        if edge_value >= cfg.high_edge:
            quality = EdgeQuality.HIGH
        elif edge_value >= cfg.medium_edge:
            quality = EdgeQuality.MEDIUM
        else:
            quality = EdgeQuality.LOW

        if data_quality.level == DataQualityLevel.LOW and quality != EdgeQuality.LOW:
            quality = _DOWNGRADE[quality]
            reasons.append("Edge downgraded due to limited data")

        if volatility.level == VolatilityLevel.HIGH and quality != EdgeQuality.LOW:
            quality = _DOWNGRADE[quality]
            reasons.append("Edge downgraded due to high market volatility")

        if quality == EdgeQuality.HIGH:
            reasons.append(f"Strong {edge_value * 100:.1f}% edge with reliable data")
        elif quality == EdgeQuality.MEDIUM:
            reasons.append(f"Moderate {edge_value * 100:.1f}% edge detected")

        return quality, reasons

    def assess_edge(
        self,
        calibrated: OutcomeProbabilities,
        market: MarketProbabilities,
        data_quality: DataQualityAssessment,
        volatility: VolatilityAssessment,
    ) -> EdgeResult:
        edges = self.calculate_edge(calibrated, market)
        outcome, value = self.find_primary_edge(edges)
        quality, reasons = self.determine_edge_quality(value, data_quality, volatility)
        return EdgeResult(
            home=edges["home"],
            away=edges["away"],
            draw=edges.get("draw"),
            outcome=outcome,
            value=value,
            quality=quality,
            reasons=tuple(reasons),
        )

    # ─────────────────────────────────────────────────────────────
    # Complete check
    # ─────────────────────────────────────────────────────────────

    def evaluate(
        self,
        calibrated: OutcomeProbabilities,
        market: MarketProbabilities,
        flags: DataCompletenessFlags,
        odds_stats: OddsVolatilityStats,
        form_volatility: float,
        league: str,
        data_quality: Optional[DataQualityAssessment] = None,
    ) -> QualityGateResult:
        """Data quality, volatility, edge, league filter and suppression in precedence order."""
        data_quality = data_quality or self.interpret_data_quality(flags)
        volatility = self.interpret_volatility(odds_stats, form_volatility)
        edge = self.assess_edge(calibrated, market, data_quality, volatility)

        ledger = SuppressionLedger()
        if edge.quality == EdgeQuality.SUPPRESSED:
            code = self._suppression_code(edge.value, data_quality, volatility)
            for reason in edge.reasons:
                ledger.add(code, reason)

        if data_quality.level == DataQualityLevel.INSUFFICIENT and not ledger.has(REASON_INSUFFICIENT_DATA):
            ledger.add(REASON_INSUFFICIENT_DATA, "Data quality insufficient")

        league_filtered = should_filter_league(league, self.config.filter_women_leagues)
        if league_filtered:
            ledger.add(REASON_LEAGUE_FILTER, "Low-liquidity league")

        if ledger.suppressed:
            logger.info(f"[QUALITY-GATE] Edge suppressed: {', '.join(ledger.codes)}")

        return QualityGateResult(
            edge=edge,
            data_quality=data_quality,
            volatility=volatility,
            league_multiplier=get_league_quality_multiplier(league),
            league_filtered=league_filtered,
            suppression=ledger.entries,
        )

    def _suppression_code(
        self,
        edge_value: float,
        data_quality: DataQualityAssessment,
        volatility: VolatilityAssessment,
    ) -> str:
        cfg = self.config
        if cfg.suppress_on_extreme_edge and abs(edge_value) > cfg.extreme_edge:
            return REASON_EXTREME_EDGE
        if cfg.suppress_on_insufficient_data and data_quality.level == DataQualityLevel.INSUFFICIENT:
            return REASON_INSUFFICIENT_DATA
        return REASON_EXTREME_VOLATILITY

    # ─────────────────────────────────────────────────────────────
    # Calibration quality (reporting only)
    # ─────────────────────────────────────────────────────────────

    def calibration_quality(self, sport: Sport) -> CalibrationQuality:
        """Brier and ECE over a snapshot of the sport's calibration history."""
        samples = self.history.snapshot(sport) if self.history is not None else []
        if len(samples) < self.config.calibration_min_samples:
            return CalibrationQuality(
                sport=sport,
                sample_size=len(samples),
                brier_score=0.0,
                expected_calibration_error=0.0,
                is_reliable=False,
            )

        predicted = [s.predicted for s in samples]
        actual = [s.actual for s in samples]
        return CalibrationQuality(
            sport=sport,
            sample_size=len(samples),
            brier_score=self.metrics.brier_score(predicted, actual),
            expected_calibration_error=self.metrics.expected_calibration_error(predicted, actual),
            is_reliable=True,
        )
