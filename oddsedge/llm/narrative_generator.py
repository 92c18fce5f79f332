"""
Pre-match narrative generator using Gemini.

Sends the read-only brief, parses and validates the JSON reply, and falls
back to a deterministic template narrative on any failure. generate()
never raises: a narrative problem must not take down a response that
already holds valid numbers.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from oddsedge.config import get_settings
from oddsedge.domain import DRAW, DataQualityLevel, PipelineOutput, VolatilityLevel
from oddsedge.llm.brief import build_system_prompt, build_user_prompt, outcome_label
from oddsedge.llm.gemini_client import GeminiClient, GeminiError
from oddsedge.telemetry.metrics import record_narrative_request

logger = logging.getLogger(__name__)

MAX_SNAPSHOT_BULLETS = 4
MAX_RISK_FACTORS = 2

# Fallback template thresholds
FALLBACK_EDGE_MIN = 0.02
FALLBACK_MARKET_MISS_MIN = 0.03
DEFAULT_EXPECTED_HOME = 1.2
DEFAULT_EXPECTED_AWAY = 1.0


@dataclass
class NarrativeResult:
    """Result from narrative generation."""

    status: str  # ok, error, invalid, disabled
    snapshot: list = field(default_factory=list)
    game_flow: str = ""
    risk_factors: list = field(default_factory=list)
    source: str = "llm"  # llm | fallback
    error: Optional[str] = None
    exec_ms: int = 0
    tokens_in: int = 0
    tokens_out: int = 0


def parse_json_response(text: str) -> Optional[dict]:
    """
    Parse JSON from LLM response.

    Handles markdown code fences and leading/trailing prose around the
    object.

    Args:
        text: Raw text from LLM.

    Returns:
        Parsed dict or None if invalid.
    """
    text = (text or "").strip()

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    start = text.find("{")
    if start < 0:
        logger.warning("No JSON object found in response")
        return None

    # Find the matching closing brace (handle nested objects and strings)
    depth = 0
    end = -1
    in_string = False
    escaped = False
    for i, char in enumerate(text[start:], start):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                end = i + 1
                break

    if end < 0:
        end = text.rfind("}") + 1

    try:
        parsed = json.loads(text[start:end])
    except json.JSONDecodeError as e:
        logger.warning(f"JSON parse failed: {e}")
        return None

    return parsed if isinstance(parsed, dict) else None


def validate_narrative_json(data: dict) -> Optional[str]:
    """
    Check the reply shape.

    Returns None when valid, otherwise a short description of the problem.
    """
    snapshot = data.get("snapshot")
    if not isinstance(snapshot, list) or not snapshot:
        return "snapshot must be a non-empty list"
    if len(snapshot) > MAX_SNAPSHOT_BULLETS:
        return f"snapshot has {len(snapshot)} bullets (max {MAX_SNAPSHOT_BULLETS})"
    if not all(isinstance(s, str) and s.strip() for s in snapshot):
        return "snapshot bullets must be non-empty strings"

    game_flow = data.get("gameFlow")
    if not isinstance(game_flow, str) or not game_flow.strip():
        return "gameFlow must be a non-empty string"

    risk_factors = data.get("riskFactors", [])
    if not isinstance(risk_factors, list):
        return "riskFactors must be a list"
    if len(risk_factors) > MAX_RISK_FACTORS:
        return f"riskFactors has {len(risk_factors)} entries (max {MAX_RISK_FACTORS})"
    if not all(isinstance(r, str) for r in risk_factors):
        return "riskFactors must be strings"

    return None


def generate_fallback_narrative(
    output: PipelineOutput,
    status: str = "ok",
    error: Optional[str] = None,
) -> NarrativeResult:
    """Deterministic template narrative built only from PipelineOutput fields."""
    home = output.fixture.home_team
    away = output.fixture.away_team
    edge = output.edge
    snapshot = []

    if edge.value > FALLBACK_EDGE_MIN and not output.suppress_edge:
        snapshot.append(
            f"THE EDGE: {outcome_label(output, edge.outcome)} shows a {edge.value * 100:.1f}% edge "
            f"based on form and efficiency metrics."
        )
    else:
        snapshot.append("THE EDGE: No clear edge detected. This match is balanced.")

    market_value = output.market.get(edge.outcome)
    model_value = output.probabilities.get(edge.outcome)
    if (
        edge.value > FALLBACK_MARKET_MISS_MIN
        and not output.suppress_edge
        and market_value is not None
        and model_value is not None
    ):
        label = "the draw" if edge.outcome == DRAW else outcome_label(output, edge.outcome)
        snapshot.append(
            f"MARKET MISS: Market implies {market_value * 100:.0f}% for {label}, "
            f"model calculates {model_value * 100:.0f}%."
        )
    else:
        snapshot.append("MARKET MISS: Odds appear fairly priced. No significant market inefficiency.")

    snapshot.append(
        f"THE PATTERN: Data quality is {output.data_quality.value}. "
        f"{output.volatility.value} volatility in recent form."
    )

    if output.data_quality == DataQualityLevel.LOW or output.volatility == VolatilityLevel.HIGH:
        snapshot.append("THE RISK: Limited data and high volatility make this unpredictable.")
    else:
        snapshot.append("THE RISK: Form can change quickly. Past performance doesn't guarantee future results.")

    scores = output.expected_scores
    expected_home = scores.home if scores else DEFAULT_EXPECTED_HOME
    expected_away = scores.away if scores else DEFAULT_EXPECTED_AWAY
    game_flow = (
        f"Expected scoring suggests {home} {expected_home:.1f} - {expected_away:.1f} {away}. "
        f"Model confidence is {output.confidence} based on {output.data_quality.value} data quality."
    )

    risk_factors = [
        output.suppress_reasons[0] if output.suppress_reasons else "Form can change rapidly",
        "Historical patterns may not repeat",
    ]

    return NarrativeResult(
        status=status,
        snapshot=snapshot,
        game_flow=game_flow,
        risk_factors=risk_factors,
        source="fallback",
        error=error,
    )


class NarrativeGenerator:
    """Generates pre-match narratives with Gemini, falling back to the template."""

    def __init__(self, settings=None, client: Optional[GeminiClient] = None):
        self.settings = settings or get_settings()
        self.enabled = self.settings.NARRATIVE_LLM_ENABLED
        self.client = client if client is not None else GeminiClient(self.settings)

    async def close(self):
        """Close resources."""
        await self.client.close()

    def _fallback(self, output: PipelineOutput, status: str, error: Optional[str] = None) -> NarrativeResult:
        record_narrative_request(status)
        if error:
            logger.warning(f"[NARRATIVE] {output.fixture.match_id}: {status} ({error}), using fallback")
        return generate_fallback_narrative(output, status=status, error=error)

    async def generate(self, output: PipelineOutput, additional_context: str = "") -> NarrativeResult:
        """
        Narrative for a pipeline output.

        Args:
            output: Frozen pipeline output (never modified).
            additional_context: Free text appended to the prompt.

        Returns:
            NarrativeResult. source is "fallback" whenever the LLM reply
            was not used.
        """
        if not self.enabled:
            return self._fallback(output, "disabled")

        try:
            result = await self.client.generate(
                build_user_prompt(output, additional_context),
                system_instruction=build_system_prompt(),
                json_response=True,
            )
        except GeminiError as e:
            return self._fallback(output, "error", str(e))
        except Exception as e:
            logger.error(f"[NARRATIVE] Unexpected error for {output.fixture.match_id}: {e}")
            return self._fallback(output, "error", str(e)[:500])

        if result.status != "COMPLETED":
            return self._fallback(output, "error", result.error or result.status)

        parsed = parse_json_response(result.text)
        if parsed is None:
            return self._fallback(output, "invalid", "JSON parse failed")

        problem = validate_narrative_json(parsed)
        if problem:
            return self._fallback(output, "invalid", problem)

        record_narrative_request("ok")
        logger.info(
            f"[NARRATIVE] {output.fixture.match_id}: ok "
            f"(tokens_in={result.tokens_in}, tokens_out={result.tokens_out}, {result.exec_ms}ms)"
        )
        return NarrativeResult(
            status="ok",
            snapshot=list(parsed["snapshot"]),
            game_flow=parsed["gameFlow"],
            risk_factors=list(parsed.get("riskFactors", [])),
            source="llm",
            exec_ms=result.exec_ms,
            tokens_in=result.tokens_in,
            tokens_out=result.tokens_out,
        )
