# core/metrics.py

import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

# ----------------------------
# Request Counters
# ----------------------------

GATEWAY_REQUESTS = Counter(
    "gateway_requests_total",
    "Total gateway requests by terminal state",
    ["provider", "task", "status"]  # status: completed, failed, cancelled
)

GATEWAY_RETRIES = Counter(
    "gateway_retries_total",
    "Total retried attempts",
    ["provider", "reason"]  # reason: retryable_network, retryable_rate_limit, retryable_server
)

# ----------------------------
# Latency Histograms
# ----------------------------

GATEWAY_LATENCY = Histogram(
    "gateway_request_latency_seconds",
    "One-shot gateway request latency",
    ["provider"]
)

# ----------------------------
# Stream Metrics
# ----------------------------

STREAM_REQUESTS = Counter(
    "gateway_stream_requests_total",
    "Total streaming requests",
    ["provider", "status"]  # status: started, completed, failed, cancelled
)

STREAM_LATENCY = Histogram(
    "gateway_stream_latency_seconds",
    "End-to-end streaming latency (seconds)",
    ["provider"]
)

# ----------------------------
# Repair Pipeline
# ----------------------------

REPAIR_OUTCOMES = Counter(
    "gateway_repair_total",
    "Structured output parses by winning repair strategy",
    ["strategy"]
)


# ----------------------------
# Helper Functions
# ----------------------------

def record_request(provider: str, task: str, status: str) -> None:
    GATEWAY_REQUESTS.labels(provider=provider, task=task, status=status).inc()


def record_retry(provider: str, reason: str) -> None:
    GATEWAY_RETRIES.labels(provider=provider, reason=reason).inc()


def record_latency(provider: str, duration_sec: float) -> None:
    GATEWAY_LATENCY.labels(provider=provider).observe(duration_sec)


def record_stream_start(provider: str) -> None:
    """Record the start of a streaming request."""
    STREAM_REQUESTS.labels(provider=provider, status="started").inc()


def record_stream_end(provider: str, status: str, duration_sec: float) -> None:
    """Record how a stream ended (completed, failed, cancelled) and its duration."""
    STREAM_REQUESTS.labels(provider=provider, status=status).inc()
    STREAM_LATENCY.labels(provider=provider).observe(duration_sec)


def record_repair(strategy: str) -> None:
    REPAIR_OUTCOMES.labels(strategy=strategy).inc()
