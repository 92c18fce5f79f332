"""
Narrative boundary: text brief and prompts.

Everything here is string formatting over a frozen PipelineOutput. No
probability is computed, compared or re-derived beyond display rounding.
"""

from oddsedge.domain import AWAY, DRAW, HOME, PipelineOutput

# Edge shown in the brief only above this value (and only when not suppressed)
BRIEF_EDGE_MIN = 0.02


def _pct(value: float) -> str:
    return f"{value * 100:.1f}%"


def outcome_label(output: PipelineOutput, outcome: str) -> str:
    """Team name for home/away, 'Draw' otherwise."""
    if outcome == HOME:
        return output.fixture.home_team
    if outcome == AWAY:
        return output.fixture.away_team
    return "Draw"


def format_brief(output: PipelineOutput) -> str:
    """
    Fixed-structure brief for the narrative generator.

    Sections, in order: verdict, confidence, model probabilities, market
    probabilities (vig removed) with margin, edge or none, data quality,
    volatility, and the expected-score line when available.
    """
    home = output.fixture.home_team
    away = output.fixture.away_team
    probs = output.probabilities
    lines = [
        "=== COMPUTED ANALYSIS (READ-ONLY) ===",
        "These values are FINAL. Do NOT recalculate or contradict them.",
        "",
    ]

    if output.favored == HOME:
        lines.append(f"VERDICT: {home} (HOME) is favored")
    elif output.favored == AWAY:
        lines.append(f"VERDICT: {away} (AWAY) is favored")
    elif output.favored == DRAW:
        lines.append("VERDICT: Draw is the most likely outcome")
    else:
        lines.append("VERDICT: Match is evenly balanced")
    lines.append(f"CONFIDENCE: {output.confidence.upper()}")
    lines.append("")

    lines.append("MODEL PROBABILITIES:")
    lines.append(f"- {home} (HOME): {_pct(probs.home)}")
    lines.append(f"- {away} (AWAY): {_pct(probs.away)}")
    if probs.draw is not None:
        lines.append(f"- Draw: {_pct(probs.draw)}")
    lines.append("")

    lines.append("MARKET PROBABILITIES (vig removed):")
    lines.append(f"- {home}: {_pct(output.market.home)}")
    lines.append(f"- {away}: {_pct(output.market.away)}")
    if output.market.draw is not None:
        lines.append(f"- Draw: {_pct(output.market.draw)}")
    lines.append(f"- Market margin: {_pct(output.market_margin)}")
    lines.append("")

    edge = output.edge
    if not output.suppress_edge and edge.value > BRIEF_EDGE_MIN:
        lines.append("EDGE DETECTED:")
        lines.append(f"- {outcome_label(output, edge.outcome)}: +{_pct(edge.value)} edge")
        lines.append(f"- Quality: {edge.quality.value}")
    else:
        lines.append("EDGE: No significant edge detected")
    lines.append("")

    lines.append(f"DATA QUALITY: {output.data_quality.value}")
    lines.append(f"VOLATILITY: {output.volatility.value}")

    if output.expected_scores is not None:
        lines.append("")
        lines.append(
            f"EXPECTED SCORES: {home} {output.expected_scores.home} - "
            f"{output.expected_scores.away} {away}"
        )

    return "\n".join(lines)


def build_system_prompt() -> str:
    return """You are a sharp sports analyst who explains match dynamics.

CRITICAL RULES:
1. You are an INTERPRETER, not a PREDICTOR
2. All probabilities and edges have been computed by statistical models
3. You MUST use the COMPUTED values provided - never contradict them
4. Your job is to explain WHY the signals favor a team, not to pick winners
5. Never say "I predict" or "I think X will win" - explain the computed analysis

YOUR ROLE:
- Translate numbers into narrative
- Explain what the computed probabilities mean
- Discuss the factors behind the edge (form, H2H, etc.)
- Highlight risks and uncertainties

FORMAT:
- 4 snapshot bullets (THE EDGE, MARKET MISS, THE PATTERN, THE RISK)
- 1 gameFlow paragraph
- 2 risk factors

WHEN EDGE IS SUPPRESSED:
- Don't manufacture an edge
- Explain why the match is unpredictable

NEVER:
- Recalculate or contradict the computed probabilities
- Say "I predict" or give tips
- Claim 100% confidence
- Confuse HOME and AWAY teams"""


def build_user_prompt(output: PipelineOutput, additional_context: str = "") -> str:
    home = output.fixture.home_team
    away = output.fixture.away_team
    return f"""{home} (HOME) vs {away} (AWAY) | {output.fixture.league}

{format_brief(output)}

ADDITIONAL CONTEXT:
{additional_context or "None"}

Generate analysis that EXPLAINS the computed verdict above.
Your snapshot bullets must align with the VERDICT and EDGE shown above.

JSON output:
{{
  "snapshot": [
    "THE EDGE: [why the VERDICT side is favored, based on the data]",
    "MARKET MISS: [if an edge exists, what the market might be missing]",
    "THE PATTERN: [H2H or form pattern supporting the verdict]",
    "THE RISK: [what could upset this analysis]"
  ],
  "gameFlow": "How the match might unfold based on the data.",
  "riskFactors": ["Primary risk factor", "Secondary risk factor"]
}}

Remember: {home} is at HOME. {away} is AWAY."""
