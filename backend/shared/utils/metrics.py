"""
Metrics collection for the Live Ticker service.
Prometheus counters, histograms and gauges for the engine and its adapters.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
JOBS_ENQUEUED = Counter(
    "lt_jobs_enqueued_total",
    "Jobs placed on the shared queue",
    ["kind", "source"],
)
JOBS_EXECUTED = Counter(
    "lt_jobs_executed_total",
    "Jobs finished by a worker",
    ["kind", "outcome"],
)
EVENTS_PROCESSED = Counter(
    "lt_events_processed_total",
    "New (previously unseen) events handled by the event processor",
    ["route"],
)
DELIVERIES = Counter(
    "lt_deliveries_total",
    "Messages handed to the delivery channel",
    ["kind", "outcome"],
)
RECAP_FLUSHES = Counter(
    "lt_recap_flushes_total",
    "Recap messages flushed",
    ["trigger"],
)
PERSISTENCE_ERRORS = Counter(
    "lt_persistence_errors_total",
    "Failed reads/writes of state files",
    ["store", "op"],
)
PROVIDER_REQUESTS = Counter(
    "lt_provider_requests_total",
    "Upstream HTTP requests",
    ["provider", "status"],
)

# ── Histograms ──────────────────────────────────────────────────────────
JOB_DURATION = Histogram(
    "lt_job_duration_seconds",
    "Wall time of a single job execution",
    ["kind"],
    buckets=(0.5, 1, 2.5, 5, 10, 20, 30, 60, 90),
)
PROVIDER_LATENCY = Histogram(
    "lt_provider_latency_seconds",
    "Upstream request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
ACTIVE_WORKERS = Gauge(
    "lt_active_workers",
    "Workers currently executing a job",
)
QUEUE_DEPTH = Gauge(
    "lt_queue_depth",
    "Jobs waiting on the shared queue",
)
TICKERS = Gauge(
    "lt_tickers",
    "Tickers held by the registry",
    ["status"],
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
