"""Prometheus metrics for the analysis engine."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

NETWORK_ATTEMPTS = Counter(
    "glowcheck_network_attempts_total",
    "Outbound request attempts by outcome",
    labelnames=("outcome",),
)

NETWORK_LATENCY = Histogram(
    "glowcheck_network_latency_ms",
    "Latency of a logical outbound request in milliseconds, retries included",
    buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000),
)

DEDUP_JOINS = Counter(
    "glowcheck_dedup_joins_total",
    "Callers that joined an already in-flight request",
)

DEDUP_IN_FLIGHT = Gauge(
    "glowcheck_dedup_in_flight",
    "Distinct request keys currently in flight",
)

CACHE_LOOKUPS = Counter(
    "glowcheck_cache_lookups_total",
    "Result cache lookups by result",
    labelnames=("result",),
)

ANALYSES = Counter(
    "glowcheck_analyses_total",
    "Analysis calls by kind and outcome",
    labelnames=("kind", "outcome"),
)

FALLBACK_RESULTS = Counter(
    "glowcheck_fallback_results_total",
    "Synthesized fallback results served instead of an upstream analysis",
    labelnames=("kind",),
)


def render_latest() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(), CONTENT_TYPE_LATEST


__all__ = [
    "ANALYSES",
    "CACHE_LOOKUPS",
    "DEDUP_IN_FLIGHT",
    "DEDUP_JOINS",
    "FALLBACK_RESULTS",
    "NETWORK_ATTEMPTS",
    "NETWORK_LATENCY",
    "render_latest",
]
