"""
Metrics collection for Edit Watch.
Wraps prometheus_client; instruments are module-level and shared per process.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
FEED_REQUESTS = Counter(
    "ew_feed_requests_total",
    "Total upstream feed HTTP requests",
    ["resource", "status"],
)
SYNC_RESULTS = Counter(
    "ew_sync_actions_total",
    "Actions reconciled by the sync engine, by outcome",
    ["outcome"],
)
SIGNIFICANT_EDITS = Counter(
    "ew_significant_edits_total",
    "Edits that passed the classifier and were recorded for review",
)
DISCARDED_EDITS = Counter(
    "ew_discarded_edits_total",
    "Observed changes that were not recorded, by reason",
    ["reason"],
)
POLL_ERRORS = Counter(
    "ew_poll_errors_total",
    "Per-game poll failures in the monitor loop",
    ["kind"],
)
MONITOR_CYCLES = Counter(
    "ew_monitor_cycles_total",
    "Completed monitor cycles",
)

# ── Histograms ──────────────────────────────────────────────────────────
FEED_LATENCY = Histogram(
    "ew_feed_latency_seconds",
    "Upstream feed request latency in seconds",
    ["resource"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)
SYNC_DURATION = Histogram(
    "ew_sync_duration_seconds",
    "Time to reconcile one game's play-by-play",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
MONITORED_GAMES = Gauge(
    "ew_monitored_games",
    "Games polled in the most recent monitor cycle",
)
POLL_INTERVAL = Gauge(
    "ew_poll_interval_seconds",
    "Sleep chosen after the most recent monitor cycle",
)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        target = histogram.labels(**labels) if labels else histogram
        target.observe(elapsed)


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
