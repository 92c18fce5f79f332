"""
Prometheus metrics for the probability pipeline.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block or fail the main flow)

=============================================================================
CARDINALITY CONTROL
=============================================================================

ALLOWED LABELS (bounded sets):
- sport:   "soccer", "basketball", "american_football", "hockey"
- entry:   "full", "quick", "fixture"
- reason:  "extreme_edge", "insufficient_data", "extreme_volatility",
           "league_filter", "below_min_edge", "below_min_quality"
- rule:    "missing_odds", "home_nan_or_inf", "draw_too_low", ...
- status:  "ok", "error", "invalid", "disabled"

FORBIDDEN AS LABELS:
- match_id, team names, league names, bookmaker names
- Error messages, raw payloads

For debugging specific matches, use logs, not metric labels.
=============================================================================
"""

import logging

from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

logger = logging.getLogger(__name__)

# =============================================================================
# PIPELINE METRICS
# =============================================================================

pipeline_runs_total = Counter(
    "oddsedge_pipeline_runs_total",
    "Total pipeline runs",
    ["sport", "entry"],
)

pipeline_duration_ms = Histogram(
    "oddsedge_pipeline_duration_ms",
    "Synchronous pipeline duration in milliseconds",
    ["sport"],
    buckets=[0.5, 1, 2, 5, 10, 25, 50, 100, 250],
)

edge_suppressed_total = Counter(
    "oddsedge_edge_suppressed_total",
    "Edges suppressed by the quality gate or orchestrator",
    ["sport", "reason"],
)

# =============================================================================
# MARKET INTEGRITY METRICS
# =============================================================================

odds_quotes_rejected_total = Counter(
    "oddsedge_odds_quotes_rejected_total",
    "Bookmaker quotes dropped before consensus",
    ["rule"],
)

# =============================================================================
# COLLABORATOR METRICS
# =============================================================================

prediction_log_failures_total = Counter(
    "oddsedge_prediction_log_failures_total",
    "Prediction logging calls that raised (swallowed, response unaffected)",
    [],
)

narrative_requests_total = Counter(
    "oddsedge_narrative_requests_total",
    "Narrative generation attempts by status",
    ["status"],
)


# =============================================================================
# HELPERS
# =============================================================================


def record_pipeline_run(sport: str, entry: str, duration_ms: float) -> None:
    """Record a completed pipeline run."""
    try:
        pipeline_runs_total.labels(sport=sport, entry=entry).inc()
        pipeline_duration_ms.labels(sport=sport).observe(duration_ms)
    except Exception as e:
        logger.warning(f"Failed to record pipeline run metric: {e}")


def record_edge_suppressed(sport: str, reason: str) -> None:
    try:
        edge_suppressed_total.labels(sport=sport, reason=reason).inc()
    except Exception as e:
        logger.warning(f"Failed to record suppression metric: {e}")


def record_quote_rejected(rule: str) -> None:
    """Record a quote dropped by the validator."""
    try:
        odds_quotes_rejected_total.labels(rule=rule).inc()
    except Exception as e:
        logger.warning(f"Failed to record rejected quote metric: {e}")


def record_prediction_log_failure() -> None:
    try:
        prediction_log_failures_total.inc()
    except Exception as e:
        logger.warning(f"Failed to record prediction log failure metric: {e}")


def record_narrative_request(status: str) -> None:
    """
    Record a narrative generation attempt.

    Args:
        status: "ok", "error", "invalid", "disabled"
    """
    try:
        narrative_requests_total.labels(status=status).inc()
    except Exception as e:
        logger.warning(f"Failed to record narrative metric: {e}")


def get_metrics_text() -> tuple[bytes, str]:
    """Exposition payload and content type for a /metrics endpoint."""
    return generate_latest(), CONTENT_TYPE_LATEST
