"""
Pipeline telemetry.

Prometheus counters for pipeline runs, edge suppression, rejected odds
quotes, prediction-log failures and narrative requests.
"""

from oddsedge.telemetry.metrics import (
    edge_suppressed_total,
    narrative_requests_total,
    odds_quotes_rejected_total,
    pipeline_duration_ms,
    pipeline_runs_total,
    prediction_log_failures_total,
)

__all__ = [
    "pipeline_runs_total",
    "pipeline_duration_ms",
    "edge_suppressed_total",
    "odds_quotes_rejected_total",
    "prediction_log_failures_total",
    "narrative_requests_total",
]
