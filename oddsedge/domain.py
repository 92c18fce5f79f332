"""
Value types shared by every stage of the probability pipeline.

All types are frozen dataclasses: each stage builds a new value from the
previous one and nothing is edited in place. PipelineOutput is the only
artifact handed to the narrative boundary.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional

from oddsedge.ml.devig import to_decimal_odds
from oddsedge.sports import Sport

HOME = "home"
DRAW = "draw"
AWAY = "away"
NO_OUTCOME = "none"
EVEN = "even"


# ═══════════════════════════════════════════════════════════════
# Ordinal tiers
# ═══════════════════════════════════════════════════════════════


class DataQualityLevel(str, Enum):
    INSUFFICIENT = "INSUFFICIENT"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _DATA_QUALITY_ORDER.index(self)


_DATA_QUALITY_ORDER = [
    DataQualityLevel.INSUFFICIENT,
    DataQualityLevel.LOW,
    DataQualityLevel.MEDIUM,
    DataQualityLevel.HIGH,
]


class VolatilityLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class EdgeQuality(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    SUPPRESSED = "SUPPRESSED"


# ═══════════════════════════════════════════════════════════════
# Inputs
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class BookmakerQuote:
    """Decimal odds from one bookmaker for one fixture."""

    bookmaker: str
    home_odds: Optional[float]
    away_odds: Optional[float]
    draw_odds: Optional[float] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def from_raw(
        cls,
        bookmaker: str,
        home,
        away,
        draw=None,
        timestamp: Optional[datetime] = None,
    ) -> "BookmakerQuote":
        """Build a quote from decimal, American or fractional notation."""
        return cls(
            bookmaker=bookmaker,
            home_odds=to_decimal_odds(home),
            away_odds=to_decimal_odds(away),
            draw_odds=to_decimal_odds(draw) if draw is not None else None,
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class TeamRecord:
    """Season record for one side. scored/conceded are None when the provider has no scoring data."""

    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    scored: Optional[int] = None
    conceded: Optional[int] = None

    @property
    def win_rate(self) -> float:
        return self.wins / self.played if self.played > 0 else 0.0

    @property
    def has_scoring_data(self) -> bool:
        return self.scored is not None and self.conceded is not None and self.scored > 0


@dataclass(frozen=True)
class HeadToHead:
    total: int = 0
    home_wins: int = 0
    away_wins: int = 0
    draws: int = 0


@dataclass(frozen=True)
class ModelInput:
    """
    Everything the prediction model sees.

    Form strings are result codes (W/D/L) ordered oldest to newest.
    """

    sport: Sport
    home_stats: TeamRecord
    away_stats: TeamRecord
    home_form: str = ""
    away_form: str = ""
    h2h: Optional[HeadToHead] = None
    league_average: Optional[float] = None


# ═══════════════════════════════════════════════════════════════
# Probability triples
# ═══════════════════════════════════════════════════════════════


def _bounded_normalize(values: list[float], lower: float, upper: float) -> list[float]:
    """Scale values to sum to 1 while keeping each inside [lower, upper]."""
    values = [min(upper, max(lower, v)) for v in values]
    for _ in range(len(values) + 1):
        total = sum(values)
        if abs(total - 1.0) < 1e-12:
            break
        if total > 1.0:
            free = [i for i, v in enumerate(values) if v > lower]
        else:
            free = [i for i, v in enumerate(values) if v < upper]
        if not free:
            break
        free_sum = sum(values[i] for i in free)
        if free_sum <= 0:
            break
        scale = (1.0 - (total - free_sum)) / free_sum
        for i in free:
            values[i] = min(upper, max(lower, values[i] * scale))
    return values


@dataclass(frozen=True)
class OutcomeProbabilities:
    """A {home, away, optional draw} probability triple tagged with the method that produced it."""

    home: float
    away: float
    draw: Optional[float] = None
    method: str = ""

    @property
    def has_draw(self) -> bool:
        return self.draw is not None

    @property
    def total(self) -> float:
        return self.home + self.away + (self.draw or 0.0)

    def items(self) -> Iterator[tuple[str, float]]:
        """(outcome, probability) pairs in home/draw/away order."""
        yield HOME, self.home
        if self.draw is not None:
            yield DRAW, self.draw
        yield AWAY, self.away

    def get(self, outcome: str) -> Optional[float]:
        return {HOME: self.home, DRAW: self.draw, AWAY: self.away}.get(outcome)

    def with_values(self, values: dict, method: Optional[str] = None) -> "OutcomeProbabilities":
        return replace(
            self,
            home=values[HOME],
            away=values[AWAY],
            draw=values.get(DRAW) if self.draw is not None else None,
            method=self.method if method is None else method,
        )

    def normalized(self, method: Optional[str] = None) -> "OutcomeProbabilities":
        total = self.total
        if total <= 0:
            n = 3 if self.draw is not None else 2
            return self.with_values({k: 1.0 / n for k, _ in self.items()}, method)
        return self.with_values({k: v / total for k, v in self.items()}, method)

    def bounded(self, lower: float, upper: float, method: Optional[str] = None) -> "OutcomeProbabilities":
        """Normalize to 1 with every outcome clamped to [lower, upper]."""
        keys = [k for k, _ in self.items()]
        values = _bounded_normalize([v for _, v in self.items()], lower, upper)
        return self.with_values(dict(zip(keys, values)), method)

    def ranked(self) -> list[tuple[str, float]]:
        return sorted(self.items(), key=lambda kv: kv[1], reverse=True)


@dataclass(frozen=True)
class OutcomeOdds:
    home: float
    away: float
    draw: Optional[float] = None


@dataclass(frozen=True)
class ConfidenceInterval:
    lower: float
    upper: float


@dataclass(frozen=True)
class OutcomeIntervals:
    home: ConfidenceInterval
    away: ConfidenceInterval
    draw: Optional[ConfidenceInterval] = None


@dataclass(frozen=True)
class CalibratedProbabilities(OutcomeProbabilities):
    confidence_intervals: Optional[OutcomeIntervals] = None


@dataclass(frozen=True)
class ExpectedScores:
    home: float
    away: float


# ═══════════════════════════════════════════════════════════════
# Normalizer output (raw, uninterpreted)
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class MarketProbabilities:
    implied_raw: OutcomeProbabilities  # Sum > 1 (includes margin)
    implied_no_vig: OutcomeProbabilities  # Sum = 1
    margin: float
    bookmaker_count: int
    consensus_odds: OutcomeOdds
    vig_method: str = "proportional"
    consensus_method: str = "median"


@dataclass(frozen=True)
class OddsVolatilityStats:
    """Population std and coefficient of variation of each outcome's odds across bookmakers."""

    home_std: float = 0.0
    away_std: float = 0.0
    draw_std: Optional[float] = None
    home_cv: float = 0.0
    away_cv: float = 0.0
    draw_cv: Optional[float] = None
    average_cv: float = 0.0
    bookmaker_count: int = 0


@dataclass(frozen=True)
class DataCompletenessFlags:
    home_games_played: int
    away_games_played: int
    home_form_length: int
    away_form_length: int
    h2h_count: int
    bookmaker_count: int
    has_home_scoring: bool
    has_away_scoring: bool


# ═══════════════════════════════════════════════════════════════
# Quality gate output (interpretation)
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class DataQualityAssessment:
    score: int
    level: DataQualityLevel
    has_min_games: bool
    has_recent_form: bool
    has_h2h: bool
    has_multiple_bookmakers: bool
    has_scoring_data: bool
    issues: tuple[str, ...] = ()


@dataclass(frozen=True)
class VolatilityAssessment:
    odds_cv: float
    form_volatility: float
    combined: float
    level: VolatilityLevel


@dataclass(frozen=True)
class EdgeResult:
    """Per-outcome edge (calibrated minus vig-free market) and the primary edge."""

    home: float
    away: float
    draw: Optional[float]
    outcome: str  # home | away | draw | none
    value: float
    quality: EdgeQuality
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class TrapAssessment:
    is_trap: bool = False
    warning: Optional[str] = None
    conviction_adjustment: int = 0
    factors: tuple[str, ...] = ()


# ═══════════════════════════════════════════════════════════════
# Pipeline output
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class FixtureInfo:
    match_id: str
    sport: Sport
    league: str
    home_team: str
    away_team: str
    kickoff: Optional[datetime] = None


@dataclass(frozen=True)
class PipelineOutput:
    """The single artifact exposed outside the core. Read-only by construction."""

    fixture: FixtureInfo
    probabilities: CalibratedProbabilities
    market: OutcomeProbabilities  # Vig-free market probabilities
    edge: EdgeResult
    data_quality: DataQualityLevel
    data_quality_score: int
    volatility: VolatilityLevel
    favored: str  # home | away | draw | even
    confidence: str  # high | medium | low
    suppress_edge: bool
    suppress_reasons: tuple[str, ...]
    market_margin: float
    bookmaker_count: int
    conviction: int
    league_multiplier: float = 1.0
    expected_scores: Optional[ExpectedScores] = None
    situational_factors: tuple[str, ...] = ()
    trap: TrapAssessment = field(default_factory=TrapAssessment)
