"""
Tests for the pipeline orchestrator and its entry points.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from oddsedge.domain import (
    BookmakerQuote,
    DataQualityLevel,
    EdgeQuality,
    FixtureInfo,
    HeadToHead,
    OutcomeProbabilities,
    TeamRecord,
    TrapAssessment,
)
from oddsedge.ml.calibration import CalibrationHistory
from oddsedge.ml.persistence import InMemoryPredictionStore
from oddsedge.ml.situational import SituationalFactors
from oddsedge.pipeline import (
    AccuracyPipeline,
    PipelineConfig,
    PipelineInput,
    analyze_fixture,
    determine_confidence,
    determine_conviction,
    determine_favored,
    market_only,
    quick_analysis,
    run_pipeline,
)
from oddsedge.providers import TeamSnapshot
from oddsedge.sports import Sport, get_conviction_cap

KICKOFF = datetime(2025, 3, 1, 15, 0, tzinfo=timezone.utc)

SOCCER_QUOTES = (
    BookmakerQuote("book_a", 1.85, 4.20, draw_odds=3.60),
    BookmakerQuote("book_b", 1.90, 4.00, draw_odds=3.50),
    BookmakerQuote("book_c", 1.88, 4.10, draw_odds=3.55),
)

SOCCER_INPUT = PipelineInput(
    match_id="epl-1",
    sport="soccer_epl",
    league="Premier League",
    home_team="Arsenal",
    away_team="Chelsea",
    home_stats=TeamRecord(played=20, wins=12, draws=4, losses=4, scored=38, conceded=18),
    away_stats=TeamRecord(played=20, wins=8, draws=6, losses=6, scored=28, conceded=25),
    odds=SOCCER_QUOTES,
    home_form="WWDLW",
    away_form="DLWDD",
    h2h=HeadToHead(total=5, home_wins=3, away_wins=1, draws=1),
    kickoff=KICKOFF,
)

# Complete data, identical quotes and no W<->L swings: volatility stays LOW
CLEAN_SOCCER_INPUT = PipelineInput(
    match_id="epl-2",
    sport="soccer",
    league="Premier League",
    home_team="Arsenal",
    away_team="Chelsea",
    home_stats=TeamRecord(played=20, wins=12, draws=4, losses=4, scored=38, conceded=18),
    away_stats=TeamRecord(played=20, wins=8, draws=6, losses=6, scored=28, conceded=25),
    odds=tuple(BookmakerQuote(b, 1.90, 4.00, draw_odds=3.50) for b in ("a", "b", "c")),
    home_form="WWDWW",
    away_form="DDWDD",
    h2h=HeadToHead(total=5, home_wins=3, away_wins=1, draws=1),
    kickoff=KICKOFF,
)

NBA_INPUT = PipelineInput(
    match_id="nba-1",
    sport="basketball_nba",
    league="NBA",
    home_team="Celtics",
    away_team="Knicks",
    home_stats=TeamRecord(played=30, wins=20, losses=10, scored=3450, conceded=3300),
    away_stats=TeamRecord(played=30, wins=15, losses=15, scored=3330, conceded=3320),
    odds=(BookmakerQuote("book_a", 1.60, 2.40), BookmakerQuote("book_b", 1.62, 2.35)),
    home_form="WWLWW",
    away_form="LWWLW",
    h2h=HeadToHead(total=3, home_wins=2, away_wins=1),
    kickoff=KICKOFF,
)

EMPTY_INPUT = PipelineInput(
    match_id="empty-1",
    sport="nhl",
    league="NHL",
    home_team="Bruins",
    away_team="Rangers",
    home_stats=TeamRecord(),
    away_stats=TeamRecord(),
)


@pytest.fixture
def store():
    return InMemoryPredictionStore()


@pytest.fixture
def pipeline(store):
    p = AccuracyPipeline(
        config=PipelineConfig(),
        prediction_logger=store,
        history=CalibrationHistory(capacity=100),
    )
    yield p
    p.close()


class TestOutputInvariants:
    """Test properties every output must hold."""

    @pytest.mark.parametrize("pipeline_input", [SOCCER_INPUT, CLEAN_SOCCER_INPUT, NBA_INPUT, EMPTY_INPUT])
    def test_probabilities_bounded_and_normalized(self, pipeline, pipeline_input):
        output = pipeline.run(pipeline_input, log_prediction=False)
        assert abs(output.probabilities.total - 1.0) < 1e-9
        for _, p in output.probabilities.items():
            assert 0.01 - 1e-12 <= p <= 0.99 + 1e-12
        assert abs(output.market.total - 1.0) < 1e-9

    @pytest.mark.parametrize("pipeline_input", [SOCCER_INPUT, CLEAN_SOCCER_INPUT, NBA_INPUT, EMPTY_INPUT])
    def test_conviction_within_sport_cap(self, pipeline, pipeline_input):
        output = pipeline.run(pipeline_input, log_prediction=False)
        assert 1 <= output.conviction <= get_conviction_cap(output.fixture.sport)

    @pytest.mark.parametrize("pipeline_input", [SOCCER_INPUT, CLEAN_SOCCER_INPUT, NBA_INPUT, EMPTY_INPUT])
    def test_suppression_matches_reasons(self, pipeline, pipeline_input):
        output = pipeline.run(pipeline_input, log_prediction=False)
        assert output.suppress_edge == bool(output.suppress_reasons)
        if output.edge.quality == EdgeQuality.SUPPRESSED:
            assert output.suppress_edge

    def test_draw_only_for_soccer(self, pipeline):
        soccer = pipeline.run(SOCCER_INPUT, log_prediction=False)
        nba = pipeline.run(NBA_INPUT, log_prediction=False)
        assert soccer.probabilities.draw is not None
        assert soccer.market.draw is not None
        assert soccer.edge.draw is not None
        assert nba.probabilities.draw is None
        assert nba.market.draw is None

    def test_sport_detected_from_tag(self, pipeline):
        assert pipeline.run(SOCCER_INPUT, log_prediction=False).fixture.sport == Sport.SOCCER
        assert pipeline.run(NBA_INPUT, log_prediction=False).fixture.sport == Sport.BASKETBALL
        assert pipeline.run(EMPTY_INPUT, log_prediction=False).fixture.sport == Sport.HOCKEY

    def test_market_fields(self, pipeline):
        output = pipeline.run(NBA_INPUT, log_prediction=False)
        assert output.bookmaker_count == 2
        assert output.market_margin > 0
        assert output.league_multiplier == 1.0
        assert output.expected_scores is not None


class TestDeterminism:
    """Same input, same output."""

    def test_idempotent(self, pipeline):
        first = pipeline.run(SOCCER_INPUT, log_prediction=False)
        second = pipeline.run(SOCCER_INPUT, log_prediction=False)
        assert first == second

    def test_independent_pipelines_agree(self, pipeline, store):
        other = AccuracyPipeline(config=PipelineConfig(), prediction_logger=InMemoryPredictionStore())
        try:
            assert other.run(NBA_INPUT, log_prediction=False) == pipeline.run(NBA_INPUT, log_prediction=False)
        finally:
            other.close()


class TestSuppression:
    """Test edge suppression through the full pipeline."""

    def test_insufficient_data_suppresses(self, pipeline):
        output = pipeline.run(EMPTY_INPUT, log_prediction=False)
        assert output.data_quality == DataQualityLevel.INSUFFICIENT
        assert output.suppress_edge
        assert any("nsufficient" in reason for reason in output.suppress_reasons)
        assert output.bookmaker_count == 0
        assert output.market.method == "neutral"

    def test_clean_fixture_is_not_suppressed(self, store):
        p = AccuracyPipeline(config=PipelineConfig(min_edge_to_show=0.0), prediction_logger=store)
        try:
            output = p.run(CLEAN_SOCCER_INPUT, log_prediction=False)
        finally:
            p.close()
        assert output.data_quality == DataQualityLevel.HIGH
        assert output.data_quality_score == 100
        assert output.volatility.value == "LOW"
        assert not output.suppress_edge
        assert output.suppress_reasons == ()

    def test_below_minimum_edge_is_suppressed(self, pipeline):
        output = pipeline.run(CLEAN_SOCCER_INPUT, log_prediction=False)
        if output.edge.value < 0.02:
            assert "Edge below minimum threshold" in output.suppress_reasons
        else:
            assert "Edge below minimum threshold" not in output.suppress_reasons

    def test_minimum_data_quality(self, store):
        medium = PipelineInput(
            match_id="epl-3",
            sport="soccer",
            league="Premier League",
            home_team="Arsenal",
            away_team="Chelsea",
            home_stats=CLEAN_SOCCER_INPUT.home_stats,
            away_stats=CLEAN_SOCCER_INPUT.away_stats,
            odds=SOCCER_QUOTES[:1],
            home_form="WWDWW",
            away_form="DDWDD",
        )
        p = AccuracyPipeline(
            config=PipelineConfig(min_data_quality_for_edge=DataQualityLevel.HIGH),
            prediction_logger=store,
        )
        try:
            output = p.run(medium, log_prediction=False)
        finally:
            p.close()
        assert output.data_quality == DataQualityLevel.MEDIUM
        assert "Data quality below threshold" in output.suppress_reasons

    def test_filtered_league_suppresses(self, pipeline):
        friendly = PipelineInput(**{**CLEAN_SOCCER_INPUT.__dict__, "league": "Club Friendly"})
        output = pipeline.run(friendly, log_prediction=False)
        assert output.suppress_edge
        assert "Low-liquidity league" in output.suppress_reasons
        assert output.league_multiplier == 0.8


class TestSituationalAndTrap:
    """Test situational notes and the trap flag on the output."""

    def test_situational_notes(self, pipeline):
        with_factors = PipelineInput(
            **{**NBA_INPUT.__dict__, "situational": SituationalFactors(away_back_to_back=True)}
        )
        base = pipeline.run(NBA_INPUT, log_prediction=False)
        adjusted = pipeline.run(with_factors, log_prediction=False)
        assert base.situational_factors == ()
        assert len(adjusted.situational_factors) == 1
        assert adjusted.probabilities.home > base.probabilities.home

    def test_trap_lowers_conviction(self, pipeline):
        heavy = PipelineInput(
            **{
                **NBA_INPUT.__dict__,
                "odds": (BookmakerQuote("book_a", 1.30, 3.60),),
                "home_form": "WWWLLL",
                "situational": SituationalFactors(home_coming_off_emotional_win=True, home_lookahead=True),
            }
        )
        output = pipeline.run(heavy, log_prediction=False)
        assert output.trap.is_trap
        assert output.trap.conviction_adjustment <= -2
        # Best case is high confidence (8) plus a clean HIGH edge (+1)
        assert output.conviction <= 9 + output.trap.conviction_adjustment


class TestHelpers:
    """Test favored, confidence and conviction helpers."""

    def test_favored(self):
        assert determine_favored(OutcomeProbabilities(home=0.52, away=0.48)) == "even"
        assert determine_favored(OutcomeProbabilities(home=0.56, away=0.44)) == "home"
        assert determine_favored(OutcomeProbabilities(home=0.30, draw=0.40, away=0.30)) == "draw"
        assert determine_favored(OutcomeProbabilities(home=0.45, draw=0.25, away=0.30)) == "home"

    def test_confidence(self):
        probs = OutcomeProbabilities(home=0.65, away=0.35)
        assert determine_confidence(probs, DataQualityLevel.HIGH) == "high"
        assert determine_confidence(probs, DataQualityLevel.MEDIUM) == "medium"
        assert determine_confidence(probs, DataQualityLevel.LOW) == "low"
        assert determine_confidence(OutcomeProbabilities(home=0.4, draw=0.3, away=0.3), DataQualityLevel.HIGH) == "low"

    def test_confidence_with_insufficient_data(self):
        # Only LOW blocks medium confidence
        probs = OutcomeProbabilities(home=0.55, away=0.45)
        assert determine_confidence(probs, DataQualityLevel.INSUFFICIENT) == "medium"
        assert determine_confidence(probs, DataQualityLevel.LOW) == "low"
        assert determine_confidence(OutcomeProbabilities(home=0.65, away=0.35), DataQualityLevel.INSUFFICIENT) == "medium"

    def test_conviction(self):
        no_trap = TrapAssessment()
        assert determine_conviction(Sport.AMERICAN_FOOTBALL, "high", EdgeQuality.HIGH, False, no_trap) == 9
        assert determine_conviction(Sport.BASKETBALL, "high", EdgeQuality.HIGH, False, no_trap) == 7
        assert determine_conviction(Sport.HOCKEY, "high", EdgeQuality.HIGH, False, no_trap) == 5
        assert determine_conviction(Sport.AMERICAN_FOOTBALL, "high", EdgeQuality.HIGH, True, no_trap) == 8
        assert determine_conviction(Sport.SOCCER, "medium", EdgeQuality.LOW, False, no_trap) == 6

    def test_conviction_floor(self):
        trap = TrapAssessment(is_trap=True, conviction_adjustment=-3)
        assert determine_conviction(Sport.SOCCER, "low", EdgeQuality.LOW, True, trap) == 1


class TestPredictionLogging:
    """Test fire-and-forget logging and settlement."""

    def test_logged_in_background(self, pipeline, store):
        result = pipeline.run_detailed(SOCCER_INPUT)
        pipeline.flush(timeout=5)
        assert result.prediction_id is not None
        record = store.get(result.prediction_id)
        assert record is not None
        assert record.match_id == "epl-1"
        assert record.kickoff == KICKOFF
        assert record.calibrated_probabilities == result.output.probabilities

    def test_empty_collaborators_are_kept(self):
        store = InMemoryPredictionStore()
        history = CalibrationHistory(capacity=10)
        p = AccuracyPipeline(config=PipelineConfig(), prediction_logger=store, history=history)
        try:
            assert p.prediction_logger is store
            assert p.history is history
            assert p.gate.history is history
            for _ in range(3):
                p.run(SOCCER_INPUT)
            p.flush(timeout=5)
        finally:
            p.close()
        assert len(store) == 3

    def test_prediction_id_is_provisional(self, pipeline, store):
        first = pipeline.run_detailed(SOCCER_INPUT)
        second = pipeline.run_detailed(SOCCER_INPUT)
        pipeline.flush(timeout=5)

        stored_ids = [r.id for r in store.for_match("epl-1")]
        assert len(stored_ids) == 2
        # A same-millisecond collision stores the second record under "<id>_1"
        assert stored_ids[0] == first.prediction_id
        assert stored_ids[1].startswith(second.prediction_id)

    def test_log_disabled_per_call(self, pipeline, store):
        result = pipeline.run_detailed(SOCCER_INPUT, log_prediction=False)
        assert result.prediction_id is None
        assert len(store) == 0

    def test_logger_failure_does_not_fail_run(self):
        class FailingLogger:
            def log_prediction(self, record):
                raise RuntimeError("database unavailable")

            def settle(self, match_id, home_score, away_score, closing_odds=None):
                return None

        p = AccuracyPipeline(config=PipelineConfig(), prediction_logger=FailingLogger())
        try:
            reference = p.run(SOCCER_INPUT, log_prediction=False)
            output = p.run(SOCCER_INPUT)
            p.flush(timeout=5)
        finally:
            p.close()
        assert output == reference

    def test_stopped_executor_does_not_fail_run(self, store):
        executor = ThreadPoolExecutor(max_workers=1)
        executor.shutdown()
        p = AccuracyPipeline(config=PipelineConfig(), prediction_logger=store, executor=executor)
        result = p.run_detailed(SOCCER_INPUT)
        assert result.prediction_id is None
        assert result.output.fixture.match_id == "epl-1"

    def test_settlement_feeds_calibration_history(self, pipeline):
        pipeline.run(SOCCER_INPUT)
        pipeline.flush(timeout=5)
        settled = pipeline.settle_prediction("epl-1", 2, 1)
        assert settled is not None
        assert settled.result.outcome == "home"
        assert pipeline.history.size(Sport.SOCCER) == 3

        quality = pipeline.calibration_quality(Sport.SOCCER)
        assert quality.sample_size == 3
        assert not quality.is_reliable

    def test_settle_unknown_match(self, pipeline):
        assert pipeline.settle_prediction("nope", 1, 0) is None
        assert pipeline.history.size(Sport.SOCCER) == 0


class TestEntryPoints:
    """Test run_pipeline, quick_analysis and market_only."""

    def test_run_pipeline(self, pipeline):
        output = run_pipeline(SOCCER_INPUT, pipeline=pipeline)
        assert output.fixture.home_team == "Arsenal"

    def test_quick_analysis_soccer(self, pipeline, store):
        output = quick_analysis("soccer", "Arsenal", "Chelsea", 1.90, 4.00, 3.50, pipeline=pipeline)
        assert output.fixture.league == "Unknown"
        assert output.fixture.match_id.startswith("quick_")
        assert output.bookmaker_count == 1
        assert output.probabilities.draw is not None
        assert len(store) == 0

    def test_quick_analysis_american_odds(self, pipeline):
        output = quick_analysis("nba", "Celtics", "Knicks", -150, "+130", pipeline=pipeline)
        assert output.fixture.sport == Sport.BASKETBALL
        assert output.market.home > output.market.away
        assert output.probabilities.draw is None

    def test_quick_analysis_custom_form(self, pipeline):
        output = quick_analysis(
            "hockey", "Bruins", "Rangers", 2.0, 2.0,
            home_form="WWWWW", away_form="LLLLL", pipeline=pipeline,
        )
        assert output.probabilities.home > output.probabilities.away

    def test_market_only_two_way(self):
        market = market_only(1.91, 2.00)
        assert abs(market.margin - 0.0236) < 1e-3
        assert abs(market.implied_no_vig.home - 0.5115) < 1e-3
        assert market.implied_no_vig.draw is None

    def test_market_only_three_way(self):
        market = market_only("11/10", "5/2", "9/4")
        assert market.implied_no_vig.draw is not None
        assert abs(market.implied_no_vig.total - 1.0) < 1e-10
        assert market.bookmaker_count == 1


# ═══════════════════════════════════════════════════════════════
# analyze_fixture with fake providers
# ═══════════════════════════════════════════════════════════════

NBA_FIXTURE = FixtureInfo(
    match_id="nba-42",
    sport=Sport.BASKETBALL,
    league="NBA",
    home_team="Celtics",
    away_team="Knicks",
    kickoff=KICKOFF,
)


class FakeStats:
    def __init__(self, fail_side=None):
        self.fail_side = fail_side

    async def fetch_team(self, fixture, side):
        if side == self.fail_side:
            raise RuntimeError("stats provider down")
        return TeamSnapshot(
            record=TeamRecord(played=30, wins=18, losses=12, scored=3400, conceded=3330),
            form="WWLWW",
        )


class FakeOdds:
    async def fetch_odds(self, fixture):
        return [BookmakerQuote("book_a", 1.70, 2.20), BookmakerQuote("book_b", 1.72, 2.15)]


class FailingOdds:
    async def fetch_odds(self, fixture):
        raise TimeoutError("odds feed timed out")


class FakeH2H:
    async def fetch_h2h(self, fixture):
        return HeadToHead(total=4, home_wins=2, away_wins=2)


class FakeSituational:
    async def fetch_factors(self, fixture):
        return SituationalFactors(away_back_to_back=True)


class TestAnalyzeFixture:
    """Test the async provider edge."""

    @pytest.mark.asyncio
    async def test_full_providers(self, pipeline, store):
        output = await analyze_fixture(
            NBA_FIXTURE, FakeStats(), FakeOdds(), FakeH2H(), FakeSituational(), pipeline=pipeline,
        )
        pipeline.flush(timeout=5)
        assert output.fixture.match_id == "nba-42"
        assert output.bookmaker_count == 2
        assert output.data_quality == DataQualityLevel.HIGH
        assert len(output.situational_factors) == 1
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_failed_stats_side_degrades(self, pipeline):
        output = await analyze_fixture(NBA_FIXTURE, FakeStats(fail_side="away"), FakeOdds(), pipeline=pipeline)
        assert output.data_quality_score < 100
        assert output.fixture.away_team == "Knicks"
        assert abs(output.probabilities.total - 1.0) < 1e-9

    @pytest.mark.asyncio
    async def test_failed_odds_gives_neutral_market(self, pipeline):
        output = await analyze_fixture(NBA_FIXTURE, FakeStats(), FailingOdds(), FakeH2H(), pipeline=pipeline)
        assert output.bookmaker_count == 0
        assert output.market.method == "neutral"
        assert output.market_margin == 0.0
