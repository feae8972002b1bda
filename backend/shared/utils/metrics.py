"""
Metrics for the settlement services.
Prometheus counters, histograms and gauges shared by the worker and the API.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "se_provider_requests_total",
    "Total provider HTTP requests",
    ["provider", "endpoint", "status"],
)
CACHE_LOOKUPS = Counter(
    "se_fixture_cache_lookups_total",
    "Fixture cache lookups by kind and result (hit, miss, stale)",
    ["kind", "result"],
)
MATCH_ATTEMPTS = Counter(
    "se_match_attempts_total",
    "Fixture matching attempts by result (matched, no_match)",
    ["result"],
)
SETTLEMENT_OUTCOMES = Counter(
    "se_settlement_outcomes_total",
    "Terminal outcomes written to the prediction store",
    ["result"],
)
LIVE_PREVIEWS = Counter(
    "se_live_previews_total",
    "Provisional outcomes computed for in-progress fixtures",
    ["result"],
)
CYCLE_ERRORS = Counter(
    "se_cycle_errors_total",
    "Errors isolated during settlement cycles",
    ["stage"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "se_provider_latency_seconds",
    "Provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
CYCLE_DURATION = Histogram(
    "se_cycle_duration_seconds",
    "Wall time of one settlement cycle",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
PENDING_PREDICTIONS = Gauge(
    "se_pending_predictions",
    "Non-terminal predictions examined in the last cycle",
)
FIXTURE_CACHE_ENTRIES = Gauge(
    "se_fixture_cache_entries",
    "Entries held by the fixture cache after the last prune",
)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
