"""
Legacy response adapter.

One pure function maps the canonical PipelineOutput (plus an optional
narrative) onto the flattened story/headlines/signals/marketIntel shape
older consumers read. Keys are camelCase where those consumers expect
them. No probability math beyond display rounding.

Derivation rules:
- story.favored: "even" -> "draw", otherwise the favored outcome
- story.confidence: high -> strong, low -> slight, medium -> moderate
- story.narrative: narrative game flow, else "{home} hosts {away} in this fixture."
- headlines[0].text: "{team} shows +X.X% edge" when the edge is a side and > 3%,
  else "{home} vs {away}: Evenly matched"; favors "neutral" when even;
  viral when edge quality is HIGH
- universalSignals.clarity_score: 85/65/45/25 for HIGH/MEDIUM/LOW/INSUFFICIENT
- marketIntel.hasValue: edge > 3% and not suppressed
- marketIntel.marketVerdict: > 5% "{team} +X.X% Value", > 3% "Slight Value", else "Fair Price"
- probabilities, impliedProbabilities, valueGaps: percent rounded to 0.1
"""

import math
from typing import Optional

from oddsedge.domain import AWAY, EVEN, HOME, NO_OUTCOME, DataQualityLevel, PipelineOutput, VolatilityLevel
from oddsedge.llm.brief import outcome_label
from oddsedge.llm.narrative_generator import NarrativeGenerator, NarrativeResult

HEADLINE_ICON = "📊"
VALUE_EDGE = 0.03
STRONG_VALUE_EDGE = 0.05

LEGACY_CONFIDENCE = {"high": "strong", "medium": "moderate", "low": "slight"}

CLARITY_SCORES = {
    DataQualityLevel.HIGH: 85,
    DataQualityLevel.MEDIUM: 65,
    DataQualityLevel.LOW: 45,
    DataQualityLevel.INSUFFICIENT: 25,
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _pct1(value: float) -> float:
    """Probability as a percentage rounded to one decimal."""
    return _round_half_up(value * 1000) / 10


def _triple_pct(home: float, away: float, draw: Optional[float]) -> dict:
    result = {"home": _pct1(home), "away": _pct1(away)}
    if draw is not None:
        result["draw"] = _pct1(draw)
    return result


def pipeline_to_legacy_format(output: PipelineOutput, narrative: Optional[NarrativeResult] = None) -> dict:
    home = output.fixture.home_team
    away = output.fixture.away_team
    edge = output.edge
    probs = output.probabilities

    edge_team = outcome_label(output, edge.outcome) if edge.outcome in (HOME, AWAY) else None
    has_edge_size = edge.value > VALUE_EDGE
    direction = EVEN if edge.outcome == NO_OUTCOME else edge.outcome

    story = {
        "favored": "draw" if output.favored == EVEN else output.favored,
        "confidence": LEGACY_CONFIDENCE.get(output.confidence, "moderate"),
        "narrative": (narrative.game_flow if narrative and narrative.game_flow
                      else f"{home} hosts {away} in this fixture."),
        "snapshot": list(narrative.snapshot) if narrative else [],
        "riskFactors": list(narrative.risk_factors) if narrative else [],
    }

    headline_text = (
        f"{edge_team} shows +{edge.value * 100:.1f}% edge"
        if edge_team and has_edge_size
        else f"{home} vs {away}: Evenly matched"
    )
    headlines = [{
        "icon": HEADLINE_ICON,
        "text": headline_text,
        "favors": "neutral" if output.favored == EVEN else output.favored,
        "viral": edge.quality.value == "HIGH",
    }]

    if output.data_quality == DataQualityLevel.HIGH:
        form = "Strong form data"
    elif output.data_quality == DataQualityLevel.LOW:
        form = "Limited form data"
    else:
        form = "Moderate form data"

    if output.volatility == VolatilityLevel.LOW:
        tempo = "Controlled"
    elif output.volatility == VolatilityLevel.HIGH:
        tempo = "High"
    else:
        tempo = "Medium"

    if edge.outcome == HOME:
        efficiency = "Home offense"
    elif edge.outcome == AWAY:
        efficiency = "Away offense"
    else:
        efficiency = "Balanced"

    edge_points = _round_half_up(edge.value * 100)
    direction_word = {HOME: "Home", AWAY: "Away"}.get(direction, direction.capitalize())
    strength_edge = f"{direction_word} +{edge_points}%" if has_edge_size else "Even"
    edge_prob = probs.get(edge.outcome) if edge.outcome in (HOME, AWAY) else 0.5
    clarity = CLARITY_SCORES[output.data_quality]

    universal_signals = {
        "form": form,
        "strength_edge": strength_edge,
        "tempo": tempo,
        "efficiency_edge": efficiency,
        "availability_impact": "Low Impact",
        "confidence": output.confidence,
        "clarity_score": clarity,
        "display": {
            "edge": {
                "direction": direction,
                "percentage": _round_half_up(edge_prob * 100),
                "label": (
                    f"{outcome_label(output, edge.outcome)} +{edge_points}%"
                    if has_edge_size else "Even match"
                ),
            },
        },
    }

    signals = {
        "formLabel": form,
        "strengthEdgeLabel": strength_edge,
        "strengthEdgeDirection": direction,
        "tempoLabel": tempo,
        "efficiencyLabel": efficiency,
        "availabilityLabel": "Low Impact",
    }

    if edge.value > STRONG_VALUE_EDGE:
        verdict = f"{edge_team or 'N/A'} +{edge.value * 100:.1f}% Value"
    elif has_edge_size:
        verdict = "Slight Value"
    else:
        verdict = "Fair Price"

    market_intel = {
        "hasValue": has_edge_size and not output.suppress_edge,
        "valueOutcome": None if edge.outcome == NO_OUTCOME else edge.outcome,
        "valuePercentage": edge.value * 100,
        "marketVerdict": verdict,
        "marketMargin": output.market_margin * 100,
        "signalQuality": clarity,
        "probabilities": _triple_pct(probs.home, probs.away, probs.draw),
        "impliedProbabilities": _triple_pct(output.market.home, output.market.away, output.market.draw),
        "valueGaps": _triple_pct(edge.home, edge.away, edge.draw),
    }

    return {
        "story": story,
        "headlines": headlines,
        "universalSignals": universal_signals,
        "signals": signals,
        "marketIntel": market_intel,
    }


async def run_accuracy_analysis(
    output: PipelineOutput,
    generator: NarrativeGenerator,
    additional_context: str = "",
) -> dict:
    """Narrative (LLM or fallback) for a pipeline output, mapped to the legacy shape."""
    narrative = await generator.generate(output, additional_context)
    return pipeline_to_legacy_format(output, narrative)
