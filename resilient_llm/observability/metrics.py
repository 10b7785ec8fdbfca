"""Prometheus metrics for the extraction-and-retry pipeline.

Counters are exported for an external scraper to aggregate; the pipeline
never reads them back.

Usage:
    from resilient_llm.observability.metrics import AI_CALLS_TOTAL

    AI_CALLS_TOTAL.labels(function="analyze-resume", status="success").inc()

Exposed via /metrics on the HTTP adapter.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Private registry avoids clashes with the default one and keeps tests isolated
REGISTRY = CollectorRegistry(auto_describe=True)

AI_CALLS_TOTAL = Counter(
    name="resilient_llm_ai_calls_total",
    documentation="Completed AI calls",
    labelnames=["function", "status"],  # success, failed
    registry=REGISTRY,
)

AI_TOKENS_TOTAL = Counter(
    name="resilient_llm_ai_tokens_total",
    documentation="Tokens consumed by AI calls",
    labelnames=["model", "type"],  # input, output
    registry=REGISTRY,
)

AI_COST_USD_TOTAL = Counter(
    name="resilient_llm_ai_cost_usd_total",
    documentation="Cost of AI calls in USD",
    labelnames=["model"],
    registry=REGISTRY,
)

RETRY_ATTEMPTS = Counter(
    name="resilient_llm_retry_attempts_total",
    documentation="Retries scheduled after a classified failure",
    labelnames=["error_code"],
    registry=REGISTRY,
)

RATE_LIMIT_REJECTIONS = Counter(
    name="resilient_llm_rate_limit_rejections_total",
    documentation="Calls rejected by the rate limiter",
    labelnames=["operation"],
    registry=REGISTRY,
)

EXTRACTION_FAILURES = Counter(
    name="resilient_llm_extraction_failures_total",
    documentation="Handler results whose JSON could not be extracted",
    labelnames=["function"],
    registry=REGISTRY,
)

REQUESTS_TOTAL = Counter(
    name="resilient_llm_requests_total",
    documentation="Requests handled by the orchestrator",
    labelnames=["function", "code"],  # OK or an ErrorCode
    registry=REGISTRY,
)

CIRCUIT_STATE = Gauge(
    name="resilient_llm_circuit_state",
    documentation="Circuit breaker state (0=closed, 1=half_open, 2=open)",
    labelnames=["name"],
    registry=REGISTRY,
)

AI_CALL_DURATION = Histogram(
    name="resilient_llm_ai_call_duration_seconds",
    documentation="Latency of AI calls",
    labelnames=["model"],
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 45.0, 90.0),
    registry=REGISTRY,
)


def get_metrics_text() -> bytes:
    """Render all metrics in Prometheus exposition format."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST


def reset_metrics() -> None:
    """Clear labelled children of every metric (for tests)."""
    for metric in (
        AI_CALLS_TOTAL,
        AI_TOKENS_TOTAL,
        AI_COST_USD_TOTAL,
        RETRY_ATTEMPTS,
        RATE_LIMIT_REJECTIONS,
        EXTRACTION_FAILURES,
        REQUESTS_TOTAL,
        CIRCUIT_STATE,
        AI_CALL_DURATION,
    ):
        metric.clear()
