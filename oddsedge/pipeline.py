"""
Pipeline Orchestrator.

Fixed, deterministic sequence:

    detect sport -> Odds Normalizer -> Prediction Model
    -> Situational & Ensemble Adjuster -> Calibrator -> Quality Gate
    -> PipelineOutput assembly -> fire-and-forget prediction log

run() performs no I/O. The only side effects are the background logging
job and telemetry counters, neither of which can alter or fail the output.

Entry points:
- run_pipeline(input): full pipeline
- quick_analysis(...): generic stats synthesized from odds alone
- market_only(...): Odds Normalizer only
- analyze_fixture(...): async, fetches inputs from providers first
"""

import asyncio
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from oddsedge.config import get_settings
from oddsedge.domain import (
    AWAY,
    EVEN,
    HOME,
    BookmakerQuote,
    CalibratedProbabilities,
    DataQualityAssessment,
    DataQualityLevel,
    EdgeQuality,
    ExpectedScores,
    FixtureInfo,
    HeadToHead,
    MarketProbabilities,
    ModelInput,
    OutcomeProbabilities,
    PipelineOutput,
    TeamRecord,
    TrapAssessment,
    VolatilityAssessment,
)
from oddsedge.ml.calibration import CalibrationHistory, ProbabilityCalibrator
from oddsedge.ml.market import (
    MarketConfig,
    calculate_form_volatility,
    calculate_market_probabilities,
    calculate_odds_volatility,
    collect_data_flags,
)
from oddsedge.ml.metrics import CalibrationMetricsCalculator, MetricsCalculator
from oddsedge.ml.persistence import (
    ClosingOdds,
    InMemoryPredictionStore,
    PredictionLogger,
    PredictionRecord,
    generate_prediction_id,
)
from oddsedge.ml.prediction import get_expected_scores, predict_match
from oddsedge.ml.quality_gate import (
    REASON_BELOW_MIN_EDGE,
    REASON_BELOW_MIN_QUALITY,
    CalibrationQuality,
    QualityGate,
    QualityGateConfig,
    SuppressionLedger,
)
from oddsedge.ml.situational import (
    SituationalFactors,
    apply_situational_adjustments,
    blend_with_market,
    evaluate_trap_game,
)
from oddsedge.providers import (
    HeadToHeadProvider,
    OddsProvider,
    SituationalProvider,
    StatsProvider,
    TeamSnapshot,
)
from oddsedge.sports import Sport, detect_sport, get_conviction_cap, has_draw
from oddsedge.telemetry.metrics import (
    record_edge_suppressed,
    record_pipeline_run,
    record_prediction_log_failure,
)

logger = logging.getLogger(__name__)

# Favored / confidence
EVEN_GAP = 0.05
HIGH_CONFIDENCE_PROB = 0.60
MEDIUM_CONFIDENCE_PROB = 0.50

# Conviction (1-10 before the sport cap)
CONVICTION_BASE = {"high": 8, "medium": 6, "low": 4}
CONVICTION_MIN = 1

# quick_analysis defaults: a .500-ish side with average scoring
QUICK_TEAM_RECORD = TeamRecord(played=5, wins=2, draws=1, losses=2, scored=6, conceded=6)
QUICK_HOME_FORM = "WLDWL"
QUICK_AWAY_FORM = "LWDLW"
QUICK_LEAGUE = "Unknown"


@dataclass(frozen=True)
class PipelineInput:
    """Everything one pipeline run needs. sport is a free-text tag."""

    match_id: str
    sport: str
    league: str
    home_team: str
    away_team: str
    home_stats: TeamRecord
    away_stats: TeamRecord
    odds: tuple[BookmakerQuote, ...] = ()
    home_form: str = ""
    away_form: str = ""
    h2h: Optional[HeadToHead] = None
    kickoff: Optional[datetime] = None
    situational: Optional[SituationalFactors] = None
    league_average: Optional[float] = None


@dataclass(frozen=True)
class PipelineConfig:
    calibration_method: str = "hybrid"
    min_edge_to_show: float = 0.02
    min_data_quality_for_edge: DataQualityLevel = DataQualityLevel.LOW
    log_predictions: bool = True
    market: MarketConfig = field(default_factory=MarketConfig)
    gate: QualityGateConfig = field(default_factory=QualityGateConfig)

    @classmethod
    def from_settings(cls, settings=None) -> "PipelineConfig":
        settings = settings or get_settings()
        try:
            min_quality = DataQualityLevel(settings.MIN_DATA_QUALITY_FOR_EDGE.upper())
        except ValueError:
            logger.warning(
                f"[PIPELINE] Unknown MIN_DATA_QUALITY_FOR_EDGE "
                f"{settings.MIN_DATA_QUALITY_FOR_EDGE!r}, using LOW"
            )
            min_quality = DataQualityLevel.LOW
        return cls(
            calibration_method=settings.CALIBRATION_METHOD,
            min_edge_to_show=settings.MIN_EDGE_TO_SHOW,
            min_data_quality_for_edge=min_quality,
            log_predictions=settings.LOG_PREDICTIONS,
            market=MarketConfig.from_settings(settings),
            gate=QualityGateConfig.from_settings(settings),
        )


@dataclass(frozen=True)
class PipelineDetails:
    """Intermediate values, for debugging and the prediction log."""

    market: MarketProbabilities
    raw_probabilities: OutcomeProbabilities
    blended_probabilities: OutcomeProbabilities
    calibrated_probabilities: CalibratedProbabilities
    data_quality: DataQualityAssessment
    volatility: VolatilityAssessment
    expected_scores: Optional[ExpectedScores]


@dataclass(frozen=True)
class PipelineResult:
    """
    Output plus intermediates.

    prediction_id is provisional: it is the id the record was submitted
    with. The logger may store it under a suffixed id on collision
    (`<id>_1`, ...), and the background write may still fail.
    """

    output: PipelineOutput
    details: PipelineDetails
    prediction_id: Optional[str] = None


# ═══════════════════════════════════════════════════════════════
# Output assembly
# ═══════════════════════════════════════════════════════════════


def determine_favored(probs: OutcomeProbabilities) -> str:
    """Top outcome, or 'even' when the top two are within 5 points."""
    ranked = probs.ranked()
    if ranked[0][1] - ranked[1][1] < EVEN_GAP:
        return EVEN
    return ranked[0][0]


def determine_confidence(probs: OutcomeProbabilities, data_quality: DataQualityLevel) -> str:
    max_prob = max(v for _, v in probs.items())
    if max_prob >= HIGH_CONFIDENCE_PROB and data_quality == DataQualityLevel.HIGH:
        return "high"
    if max_prob >= MEDIUM_CONFIDENCE_PROB and data_quality != DataQualityLevel.LOW:
        return "medium"
    return "low"


def determine_conviction(
    sport: Sport,
    confidence: str,
    edge_quality: EdgeQuality,
    suppressed: bool,
    trap: TrapAssessment,
) -> int:
    """Integer conviction from confidence, a clean HIGH edge and the trap adjustment, capped per sport."""
    conviction = CONVICTION_BASE[confidence]
    if edge_quality == EdgeQuality.HIGH and not suppressed:
        conviction += 1
    conviction += trap.conviction_adjustment
    return max(CONVICTION_MIN, min(get_conviction_cap(sport), conviction))


class AccuracyPipeline:
    """
    Composition root for the probability pipeline.

    Owns the calibration history, the prediction logger and the background
    executor for fire-and-forget logging. Tests build one per case with
    fakes injected; applications use get_pipeline().
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        prediction_logger: Optional[PredictionLogger] = None,
        history: Optional[CalibrationHistory] = None,
        metrics: Optional[MetricsCalculator] = None,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        settings = get_settings()
        # Empty stores are falsy (__len__)
        self.config = config if config is not None else PipelineConfig.from_settings(settings)
        self.prediction_logger = prediction_logger if prediction_logger is not None else InMemoryPredictionStore()
        self.history = history if history is not None else CalibrationHistory(settings.CALIBRATION_HISTORY_CAPACITY)
        self.calibrator = ProbabilityCalibrator(self.config.calibration_method)
        self.gate = QualityGate(
            config=self.config.gate,
            metrics=metrics if metrics is not None else CalibrationMetricsCalculator(),
            history=self.history,
        )
        self._owns_executor = executor is None
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="prediction-log")
            if executor is None else executor
        )
        self._pending: Optional[Future] = None

    # ─────────────────────────────────────────────────────────────
    # Run
    # ─────────────────────────────────────────────────────────────

    def run(self, pipeline_input: PipelineInput, log_prediction: Optional[bool] = None) -> PipelineOutput:
        return self.run_detailed(pipeline_input, log_prediction=log_prediction).output

    def run_detailed(
        self,
        pipeline_input: PipelineInput,
        log_prediction: Optional[bool] = None,
        entry: str = "full",
    ) -> PipelineResult:
        start = time.perf_counter()
        inp = pipeline_input

        sport = detect_sport(inp.sport)
        draw = has_draw(sport)

        # Data-1: raw market layer
        market = calculate_market_probabilities(inp.odds, draw, self.config.market)
        flags = collect_data_flags(
            inp.home_stats, inp.away_stats, inp.home_form, inp.away_form, inp.h2h, market.bookmaker_count
        )

        # Model
        model_input = ModelInput(
            sport=sport,
            home_stats=inp.home_stats,
            away_stats=inp.away_stats,
            home_form=inp.home_form,
            away_form=inp.away_form,
            h2h=inp.h2h,
            league_average=inp.league_average,
        )
        raw = predict_match(model_input)
        expected_scores = get_expected_scores(model_input)

        # Situational + ensemble
        situational = apply_situational_adjustments(raw, inp.situational, sport)
        blended = blend_with_market(situational.probabilities, market, sport)

        # Data-2: calibration, fed the quality score from raw flags
        data_quality = self.gate.interpret_data_quality(flags)
        calibrated = self.calibrator.calibrate(blended, sport, data_quality.score)

        # Data-2.5: interpretation and gating
        gate_result = self.gate.evaluate(
            calibrated=calibrated,
            market=market,
            flags=flags,
            odds_stats=calculate_odds_volatility(inp.odds, draw),
            form_volatility=calculate_form_volatility(inp.home_form, inp.away_form),
            league=inp.league,
            data_quality=data_quality,
        )
        edge = gate_result.edge

        ledger = SuppressionLedger(gate_result.suppression)
        if edge.value < self.config.min_edge_to_show:
            ledger.add(REASON_BELOW_MIN_EDGE, "Edge below minimum threshold")
        if data_quality.level.rank < self.config.min_data_quality_for_edge.rank:
            ledger.add(REASON_BELOW_MIN_QUALITY, "Data quality below threshold")

        trap = evaluate_trap_game(
            market,
            inp.home_team,
            inp.away_team,
            inp.home_form,
            inp.away_form,
            inp.home_stats,
            inp.away_stats,
            inp.situational,
        )

        confidence = determine_confidence(calibrated, data_quality.level)
        fixture = FixtureInfo(
            match_id=inp.match_id,
            sport=sport,
            league=inp.league,
            home_team=inp.home_team,
            away_team=inp.away_team,
            kickoff=inp.kickoff,
        )

        output = PipelineOutput(
            fixture=fixture,
            probabilities=calibrated,
            market=market.implied_no_vig,
            edge=edge,
            data_quality=data_quality.level,
            data_quality_score=data_quality.score,
            volatility=gate_result.volatility.level,
            favored=determine_favored(calibrated),
            confidence=confidence,
            suppress_edge=ledger.suppressed,
            suppress_reasons=ledger.reasons,
            market_margin=market.margin,
            bookmaker_count=market.bookmaker_count,
            conviction=determine_conviction(sport, confidence, edge.quality, ledger.suppressed, trap),
            league_multiplier=gate_result.league_multiplier,
            expected_scores=expected_scores,
            situational_factors=situational.notes,
            trap=trap,
        )

        details = PipelineDetails(
            market=market,
            raw_probabilities=raw,
            blended_probabilities=blended,
            calibrated_probabilities=calibrated,
            data_quality=data_quality,
            volatility=gate_result.volatility,
            expected_scores=expected_scores,
        )

        for code in ledger.codes:
            record_edge_suppressed(sport.value, code)

        prediction_id = None
        should_log = self.config.log_predictions if log_prediction is None else log_prediction
        if should_log:
            prediction_id = self._submit_log(output, details)

        duration_ms = (time.perf_counter() - start) * 1000
        record_pipeline_run(sport.value, entry, duration_ms)
        logger.info(
            f"[PIPELINE] {inp.match_id} {sport.value}: favored={output.favored} "
            f"confidence={confidence} edge={edge.outcome}/{edge.value:.3f} {edge.quality.value} "
            f"suppressed={ledger.suppressed} ({duration_ms:.1f}ms)"
        )

        return PipelineResult(output=output, details=details, prediction_id=prediction_id)

    # ─────────────────────────────────────────────────────────────
    # Prediction log (fire-and-forget)
    # ─────────────────────────────────────────────────────────────

    def _build_record(self, output: PipelineOutput, details: PipelineDetails) -> PredictionRecord:
        now = datetime.now(timezone.utc)
        fixture = output.fixture
        return PredictionRecord(
            id=generate_prediction_id(fixture.match_id, now),
            timestamp=now,
            sport=fixture.sport,
            league=fixture.league,
            match_id=fixture.match_id,
            home_team=fixture.home_team,
            away_team=fixture.away_team,
            kickoff=fixture.kickoff or now,
            raw_probabilities=details.raw_probabilities,
            calibrated_probabilities=details.calibrated_probabilities,
            market=details.market,
            edge=output.edge,
            data_quality=details.data_quality,
            volatility=details.volatility,
        )

    def _log_job(self, record: PredictionRecord) -> None:
        try:
            self.prediction_logger.log_prediction(record)
        except Exception as e:
            logger.warning(f"[PREDICTION-LOG] Failed to log {record.id}: {e}")
            record_prediction_log_failure()

    def _submit_log(self, output: PipelineOutput, details: PipelineDetails) -> Optional[str]:
        """Schedule the write and return the submitted (provisional) id, or None if nothing was scheduled."""
        try:
            record = self._build_record(output, details)
            future: Future = self._executor.submit(self._log_job, record)
        except Exception as e:
            # Executor shut down or record construction failed: the response still goes out
            logger.warning(f"[PREDICTION-LOG] Could not schedule log for {output.fixture.match_id}: {e}")
            record_prediction_log_failure()
            return None
        self._pending = future
        return record.id

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for the most recently scheduled log job (used by tests and shutdown)."""
        if self._pending is not None:
            self._pending.result(timeout=timeout)

    # ─────────────────────────────────────────────────────────────
    # Settlement and calibration quality
    # ─────────────────────────────────────────────────────────────

    def settle_prediction(
        self,
        match_id: str,
        home_score: int,
        away_score: int,
        closing_odds: Optional[ClosingOdds] = None,
    ) -> Optional[PredictionRecord]:
        """Settle the logged prediction and feed the realized outcome to the calibration history."""
        settled = self.prediction_logger.settle(match_id, home_score, away_score, closing_odds)
        if settled is None:
            logger.info(f"[PREDICTION-LOG] Nothing to settle for {match_id}")
            return None

        self.history.record_outcome(
            settled.sport,
            settled.calibrated_probabilities,
            settled.result.outcome,
            recorded_at=settled.result.settled_at,
        )
        return settled

    def calibration_quality(self, sport: Sport) -> CalibrationQuality:
        return self.gate.calibration_quality(sport)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)


@lru_cache
def get_pipeline() -> AccuracyPipeline:
    """Process-wide pipeline built from settings."""
    return AccuracyPipeline()


# ═══════════════════════════════════════════════════════════════
# Entry points
# ═══════════════════════════════════════════════════════════════


def run_pipeline(pipeline_input: PipelineInput, pipeline: Optional[AccuracyPipeline] = None) -> PipelineOutput:
    return (pipeline or get_pipeline()).run(pipeline_input)


def quick_analysis(
    sport: str,
    home_team: str,
    away_team: str,
    home_odds,
    away_odds,
    draw_odds=None,
    home_form: Optional[str] = None,
    away_form: Optional[str] = None,
    pipeline: Optional[AccuracyPipeline] = None,
) -> PipelineOutput:
    """
    Analysis from a single set of odds when full stats are unavailable.

    Both sides get the same generic record, so the verdict is driven by
    form and the market. Never logged.
    """
    pipeline_input = PipelineInput(
        match_id=f"quick_{int(time.time() * 1000)}",
        sport=sport,
        league=QUICK_LEAGUE,
        home_team=home_team,
        away_team=away_team,
        home_stats=QUICK_TEAM_RECORD,
        away_stats=QUICK_TEAM_RECORD,
        odds=(BookmakerQuote.from_raw("quick", home_odds, away_odds, draw_odds),),
        home_form=home_form or QUICK_HOME_FORM,
        away_form=away_form or QUICK_AWAY_FORM,
    )
    return (pipeline or get_pipeline()).run_detailed(pipeline_input, log_prediction=False, entry="quick").output


def market_only(home_odds, away_odds, draw_odds=None, config: Optional[MarketConfig] = None) -> MarketProbabilities:
    """Odds Normalizer only: no model, no calibration, no gating."""
    quote = BookmakerQuote.from_raw("market_only", home_odds, away_odds, draw_odds)
    return calculate_market_probabilities([quote], draw_odds is not None, config)


async def analyze_fixture(
    fixture: FixtureInfo,
    stats_provider: StatsProvider,
    odds_provider: OddsProvider,
    h2h_provider: Optional[HeadToHeadProvider] = None,
    situational_provider: Optional[SituationalProvider] = None,
    pipeline: Optional[AccuracyPipeline] = None,
) -> PipelineOutput:
    """
    Fetch inputs from providers, then run the synchronous pipeline.

    Home and away lookups run concurrently. A failed lookup degrades to an
    empty record (or no odds, no H2H, no situational factors), which the
    quality gate then scores accordingly.
    """
    home_result, away_result = await asyncio.gather(
        stats_provider.fetch_team(fixture, HOME),
        stats_provider.fetch_team(fixture, AWAY),
        return_exceptions=True,
    )
    home = _snapshot_or_empty(home_result, fixture, HOME)
    away = _snapshot_or_empty(away_result, fixture, AWAY)

    odds = await _fetch_optional(odds_provider.fetch_odds(fixture), fixture, "odds")
    h2h = await _fetch_optional(h2h_provider.fetch_h2h(fixture), fixture, "h2h") if h2h_provider else None
    factors = (
        await _fetch_optional(situational_provider.fetch_factors(fixture), fixture, "situational")
        if situational_provider else None
    )

    pipeline_input = PipelineInput(
        match_id=fixture.match_id,
        sport=fixture.sport.value,
        league=fixture.league,
        home_team=fixture.home_team,
        away_team=fixture.away_team,
        home_stats=home.record,
        away_stats=away.record,
        odds=tuple(odds or ()),
        home_form=home.form,
        away_form=away.form,
        h2h=h2h,
        kickoff=fixture.kickoff,
        situational=factors,
    )
    return (pipeline or get_pipeline()).run_detailed(pipeline_input, entry="fixture").output


def _snapshot_or_empty(result, fixture: FixtureInfo, side: str) -> TeamSnapshot:
    if isinstance(result, Exception):
        logger.warning(f"[PIPELINE] {side} stats lookup failed for {fixture.match_id}: {result}")
        return TeamSnapshot()
    return result or TeamSnapshot()


async def _fetch_optional(awaitable, fixture: FixtureInfo, what: str):
    try:
        return await awaitable
    except Exception as e:
        logger.warning(f"[PIPELINE] {what} lookup failed for {fixture.match_id}: {e}")
        return None
